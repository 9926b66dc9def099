"""
Generadores de variables aleatorias para el muestreador.

Todas las funciones reciben el generador de forma explícita: cada cadena
posee su propio ``np.random.Generator`` y nunca se usa el estado global de
``np.random``. Con la misma semilla y la misma secuencia de llamadas la salida
es idéntica.
"""

import numpy as np


def set_seed(seed: int) -> np.random.Generator:
    """Crea el generador (Mersenne Twister) de una cadena a partir de su semilla."""
    return np.random.Generator(np.random.MT19937(int(seed)))


def runif_0_1(rng: np.random.Generator) -> float:
    """Uniform(0, 1)"""
    return float(rng.random())


def rnorm_(mu: float, sd: float, rng: np.random.Generator) -> float:
    """Normal(mu, sd²), con sd >= 0"""
    return float(rng.normal(mu, sd))


def rgamma_(shape: float, rate: float, rng: np.random.Generator) -> float:
    """Gamma(shape, rate) con media shape/rate"""
    return float(rng.gamma(shape, 1.0 / rate))


def rdirichlet(alpha, rng: np.random.Generator) -> np.ndarray:
    """
    Dirichlet(alpha_1, ..., alpha_K) normalizando K gammas independientes.
    """
    alpha = np.asarray(alpha, dtype=float)
    sample = np.array([rgamma_(a, 1.0, rng) for a in alpha])
    return sample / sample.sum()


def rmvnorm(mean, covariance, rng: np.random.Generator) -> np.ndarray:
    """
    Normal multivariada N(mean, covariance) usando el factor de Cholesky inferior.

    Raises
    ------
    np.linalg.LinAlgError
        Si la covarianza no es definida positiva.
    """
    mean = np.asarray(mean, dtype=float)
    L = np.linalg.cholesky(np.asarray(covariance, dtype=float))
    Z = rng.normal(0.0, 1.0, size=mean.shape[0])
    return mean + L @ Z


def numeric_sample(probs, rng: np.random.Generator) -> int:
    """
    Muestrea un índice por inversión de la CDF acumulada de ``probs``.

    Si por redondeo la suma acumulada no alcanza el uniforme se devuelve el
    último índice.
    """
    cumulative = np.cumsum(probs)
    u = runif_0_1(rng)
    idx = int(np.searchsorted(cumulative, u, side="left"))
    return min(idx, len(cumulative) - 1)


def numeric_sample_rows(probs: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """
    Igual que ``numeric_sample`` para cada fila de una matriz (n, G) de
    probabilidades. Se consume un uniforme por fila, en orden.
    """
    cumulative = np.cumsum(probs, axis=1)
    u = rng.random(probs.shape[0])
    idx = (cumulative < u[:, None]).sum(axis=1)
    return np.minimum(idx, probs.shape[1] - 1)
