import numpy as np
from dataclasses import dataclass

from model_lnm.utils.rng_utils import set_seed


@dataclass
class SurvivalData:
    X:      np.ndarray   # (n, k), primera columna = intercepto
    t:      np.ndarray   # tiempos observados (> 0)
    delta:  np.ndarray   # 1 evento observado, 0 censurado
    groups: np.ndarray   # componente verdadera de cada observación
    y:      np.ndarray   # log(t)


def simulate_y(X, beta, phi, delta, groups, starting_seed):
    """
    Simula log-tiempos dada la asignación de grupos.

    Para cada observación se genera y_i ~ N(x_iᵗ beta_g, 1/phi_g). Si la
    observación es censurada (delta_i = 0) se vuelve a muestrear de la misma
    normal hasta obtener un valor menor: el tiempo de censura es anterior al
    evento no observado.

    Parameters
    ----------
    X : np.ndarray
        Matriz de diseño (n, k)
    beta : np.ndarray
        Coeficientes (G, k)
    phi : np.ndarray
        Precisiones (G,)
    delta : np.ndarray
        Indicador de evento (n,)
    groups : np.ndarray
        Grupo de cada observación, en 0..G-1
    starting_seed : int

    Returns
    -------
    np.ndarray
        Log-tiempos observados (n,)
    """
    rng = set_seed(starting_seed)

    X = np.asarray(X, dtype=float)
    beta = np.atleast_2d(np.asarray(beta, dtype=float))
    sd = 1.0 / np.sqrt(np.asarray(phi, dtype=float))
    means = X @ beta.T

    n = X.shape[0]
    out = np.empty(n)
    for i in range(n):
        g = groups[i]
        out[i] = rng.normal(means[i, g], sd[g])

        if delta[i] == 0:
            y_c = out[i]
            while y_c >= out[i]:
                y_c = rng.normal(means[i, g], sd[g])
            out[i] = y_c

    return out


def simulate_survival_data(n, eta, beta, phi, censoring_rate=0.0, seed=0):
    """
    Genera un conjunto de datos de supervivencia de una mezcla lognormal.

    El diseño tiene intercepto y k-1 covariables N(0, 1); los grupos se
    muestrean con pesos ``eta`` y cada observación es censurada de forma
    independiente con probabilidad ``censoring_rate``.

    Parameters
    ----------
    n : int
        Número de observaciones
    eta : array-like
        Pesos de la mezcla (G,)
    beta : array-like
        Coeficientes (G, k)
    phi : array-like
        Precisiones (G,)
    censoring_rate : float
        Probabilidad de censura, en [0, 1]
    seed : int

    Returns
    -------
    SurvivalData
    """
    eta = np.asarray(eta, dtype=float)
    beta = np.atleast_2d(np.asarray(beta, dtype=float))
    phi = np.asarray(phi, dtype=float)

    G, k = beta.shape
    if eta.shape[0] != G or phi.shape[0] != G:
        raise ValueError("eta, beta y phi deben tener el mismo número de componentes")
    if not np.isclose(eta.sum(), 1.0) or np.any(eta < 0):
        raise ValueError("eta debe ser un vector de probabilidades")
    if not 0.0 <= censoring_rate <= 1.0:
        raise ValueError("censoring_rate debe estar en [0, 1]")

    rng = set_seed(seed)

    X = np.column_stack([np.ones(n), rng.normal(0.0, 1.0, size=(n, k - 1))])
    groups = rng.choice(G, size=n, p=eta)
    delta = (rng.random(n) >= censoring_rate).astype(int)

    # Semilla derivada para la parte de los tiempos
    y = simulate_y(X, beta, phi, delta, groups, int(rng.integers(0, 2**31 - 1)))

    return SurvivalData(X=X, t=np.exp(y), delta=delta, groups=groups, y=y)
