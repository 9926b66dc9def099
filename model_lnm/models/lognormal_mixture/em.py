"""
Algoritmo EM para la mezcla de regresiones lognormales con censura a derecha.

Se usa para encontrar valores cercanos al MLE con los que arrancar el
muestreador de Gibbs. Los tiempos censurados se reemplazan por la esperanza
condicional de una normal truncada (E-step) y los parámetros se actualizan por
mínimos cuadrados ponderados (M-step).

El resultado tiene dos variantes:

- ``EMTrace``: traza completa por iteración + log-verosimilitud final.
- ``EMState``: estado final compacto (uso interno como warm-start).
"""

import logging
from dataclasses import dataclass
from typing import Union

import numpy as np
from scipy.special import logsumexp
from scipy.stats import norm

from model_lnm.utils.linalg_utils import regularize, repl
from model_lnm.utils.rng_utils import rdirichlet, rgamma_, rnorm_, set_seed
from model_lnm.utils.validation import validate_data, validate_em_settings

logger = logging.getLogger(__name__)

# Denominador mínimo cuando Φ(alpha) se redondea a 1
SURVIVAL_FLOOR = 1e-4
# Probabilidad usada en lugar de 0 en la log-verosimilitud
LOGLIK_FLOOR = 1e-5
# Cota superior de la precisión antes de re-muestrearla de la previa
PHI_CEILING = 1e5
PHI_PRIOR = (0.5, 0.5)
EM_LOG_EVERY = 20


@dataclass
class EMTrace:
    """Traza (Niter, G·(k+2)) con columnas (eta_g, beta_g, phi_g) por grupo"""
    trace: np.ndarray
    loglik: float


@dataclass
class EMState:
    """Estado final del EM usado para iniciar el muestreador de Gibbs"""
    eta: np.ndarray
    beta: np.ndarray
    phi: np.ndarray
    W: np.ndarray
    z: np.ndarray
    loglik: float


EMResult = Union[EMTrace, EMState]


def compute_W(y, X, eta, beta, sd):
    """
    Matriz de responsabilidades W (n, G).

    Las filas cuyas densidades son todas 0 reciben la uniforme 1/G.
    """
    G = eta.shape[0]
    dens = eta * norm.pdf(y[:, None], loc=X @ beta.T, scale=sd)
    denom = dens.sum(axis=1, keepdims=True)
    safe = np.where(denom > 0, denom, 1.0)
    return np.where(denom > 0, dens / safe, 1.0 / G)


def _mills_ratio(alpha):
    """φ(alpha) / S(alpha), con denominador SURVIVAL_FLOOR si Φ(alpha) == 1"""
    denom = np.where(norm.cdf(alpha) < 1.0, norm.sf(alpha), SURVIVAL_FLOOR)
    return norm.pdf(alpha) / denom


def expected_value_truncnorm(alpha, mean, sigma):
    """E[Y | Y > y] para Y ~ N(mean, sigma²), con alpha = (y - mean) / sigma"""
    return mean + sigma * _mills_ratio(alpha)


def augment_em(y, censored_indexes, sd, W, means):
    """
    Variable latente z del E-step.

    Para cada observación censurada z_i es el promedio, ponderado por W, de
    las esperanzas de la normal truncada de cada grupo.
    """
    out = y.copy()
    if censored_indexes.size == 0:
        return out

    y_c = y[censored_indexes, None]
    means_c = means[censored_indexes]
    alpha = (y_c - means_c) / sd
    expected = expected_value_truncnorm(alpha, means_c, sd)
    out[censored_indexes] = np.sum(W[censored_indexes] * expected, axis=1)
    return out


def sample_initial_values_em(G, k, rng):
    """Valores iniciales del EM muestreados de previas difusas"""
    eta = rdirichlet(repl(rgamma_(1.0, 1.0, rng), G), rng)
    phi = np.zeros(G)
    beta = np.zeros((G, k))

    for g in range(G):
        phi[g] = rgamma_(0.1, 0.1, rng)
        for c in range(k):
            beta[g, c] = rnorm_(0.0, 20.0, rng)

    return eta, beta, phi


def update_beta_g(colg, X, z):
    """
    Mínimos cuadrados ponderados para beta_g:
    (Xᵗ diag(w) X) beta_g = Xᵗ diag(w) z
    """
    S = X.T @ (colg[:, None] * X)
    return np.linalg.solve(regularize(S), X.T @ (colg * z))


def update_phi_g(colg, censored_indexes, X, y, z, sd_g, beta_g, rng):
    """
    Precisión del grupo g: suma de pesos sobre la suma ponderada de residuos
    al cuadrado, más la corrección de varianza de la normal truncada para las
    observaciones censuradas.
    """
    var_g = sd_g ** 2
    quant = float(np.square(z - X @ beta_g) @ colg)

    if censored_indexes.size > 0:
        alpha = (y[censored_indexes] - X[censored_indexes] @ beta_g) / sd_g
        ratio = _mills_ratio(alpha)
        correction = 1.0 + alpha * ratio - np.square(ratio)
        quant += float(np.sum(colg[censored_indexes] * var_g * correction))

    if quant == 0.0:
        phi_g = rgamma_(*PHI_PRIOR, rng)
    else:
        phi_g = colg.sum() / quant

    if not np.isfinite(phi_g) or phi_g > PHI_CEILING or phi_g <= 0:
        logger.debug("phi fuera de rango (%s), se re-muestrea de la previa", phi_g)
        phi_g = rgamma_(*PHI_PRIOR, rng)

    return phi_g


def update_em_parameters(eta, beta, phi, W, X, y, z, censored_indexes, sd, rng):
    """M-step: actualiza eta, beta y phi in place, grupo por grupo"""
    n, G = W.shape

    for g in range(G):
        colg = W[:, g]

        eta[g] = colg.sum() / n
        if np.any(eta == 0.0):
            # grupo sin observaciones
            eta[:] = rdirichlet(repl(1.0, G), rng)

        beta[g] = update_beta_g(colg, X, z)
        phi[g] = update_phi_g(colg, censored_indexes, X, y, z, sd[g], beta[g], rng)


def loglik_em(eta, sd, W, z, means, censored):
    """
    Log-verosimilitud ponderada por W. Las censuradas aportan la supervivencia
    y las observadas la densidad; las probabilidades nulas se reemplazan por
    LOGLIK_FLOOR.
    """
    z_col = z[:, None]
    dens = np.where(
        censored[:, None],
        eta * norm.sf((z_col - means) / sd),
        eta * norm.pdf(z_col, loc=means, scale=sd),
    )
    dens = np.where(dens == 0.0, LOGLIK_FLOOR, dens)
    return float(np.sum(W * np.log(dens)))


def em_step(eta, beta, phi, W, X, y, censored_indexes, rng):
    """
    Una iteración del EM: E-step con las responsabilidades ``W`` de la
    iteración anterior y M-step in place sobre eta, beta y phi.
    Devuelve las nuevas responsabilidades.
    """
    means = X @ beta.T
    sd = 1.0 / np.sqrt(phi)
    z = augment_em(y, censored_indexes, sd, W, means)
    W = compute_W(z, X, eta, beta, sd)
    update_em_parameters(eta, beta, phi, W, X, y, z, censored_indexes, sd, rng)
    return W


def mixture_loglik(eta, beta, phi, y, X, delta):
    """
    Log-verosimilitud observada de la mezcla:
    sum_i log sum_g eta_g f_g(y_i), con f_g la densidad si delta_i = 1 y la
    supervivencia si delta_i = 0.

    A diferencia de ``loglik_em`` no está ponderada por W; sin censura el EM
    no la hace decrecer.
    """
    means = X @ beta.T
    sd = 1.0 / np.sqrt(phi)
    y_col = y[:, None]
    log_f = np.where(
        (delta == 1)[:, None],
        norm.logpdf(y_col, loc=means, scale=sd),
        norm.logsf(y_col, loc=means, scale=sd),
    )
    return float(np.sum(logsumexp(np.log(eta) + log_f, axis=1)))


def em_trace_row(eta, beta, phi):
    return np.concatenate(
        [np.concatenate(([eta[g]], beta[g], [phi[g]])) for g in range(eta.shape[0])]
    )


def fit_em(Niter, G, t, delta, X, rng, better_initial_values=False, N_em=0,
           Niter_em=0, internal=False, show_output=False) -> EMResult:
    """
    Ejecuta ``Niter`` iteraciones del EM.

    En la iteración 0 se inicializan los parámetros: con
    ``better_initial_values`` se corren ``N_em`` EM cortos de ``Niter_em``
    iteraciones y se conserva el de mayor log-verosimilitud; si no, se
    muestrean de previas difusas.

    Parameters
    ----------
    Niter : int
        Iteraciones del EM (>= 1)
    G : int
        Número de componentes
    t, delta, X : np.ndarray
        Tiempos, indicador de evento y matriz de diseño (ya validados)
    rng : np.random.Generator
        Generador de la cadena
    internal : bool
        Si True devuelve ``EMState``; si no ``EMTrace``

    Returns
    -------
    EMTrace o EMState
    """
    n, k = X.shape
    y = np.log(t)
    censored = delta == 0
    censored_indexes = np.flatnonzero(censored)
    trace = np.zeros((Niter, G * (k + 2)))

    for it in range(Niter):
        if it == 0:
            if better_initial_values:
                best = None
                for _ in range(N_em):
                    params = fit_em(Niter_em, G, t, delta, X, rng, internal=True)
                    if best is None:
                        best = params
                        if show_output:
                            logger.info("Initial LogLik: %.4f", best.loglik)
                    elif params.loglik > best.loglik:
                        if show_output:
                            logger.info("Previous maximum: %.4f | New maximum: %.4f",
                                        best.loglik, params.loglik)
                        best = params

                eta = best.eta.copy()
                beta = best.beta.copy()
                phi = best.phi.copy()
                W = best.W.copy()
                if show_output:
                    logger.info("Starting EM with better initial values")
            else:
                eta, beta, phi = sample_initial_values_em(G, k, rng)
                W = compute_W(y, X, eta, beta, 1.0 / np.sqrt(phi))
        else:
            W = em_step(eta, beta, phi, W, X, y, censored_indexes, rng)

            if show_output and (it + 1) % EM_LOG_EVERY == 0:
                logger.info("EM Iter: %d | %d", it + 1, Niter)

        trace[it] = em_trace_row(eta, beta, phi)

    means = X @ beta.T
    sd = 1.0 / np.sqrt(phi)
    loglik = loglik_em(eta, sd, compute_W(y, X, eta, beta, sd), y, means, censored)

    if internal:
        z = augment_em(y, censored_indexes, sd, W, means)
        return EMState(eta=eta, beta=beta, phi=phi, W=W, z=z, loglik=loglik)

    return EMTrace(trace=trace, loglik=loglik)


def lognormal_mixture_em(Niter, G, t, delta, X, starting_seed,
                         better_initial_values=False, N_em=0, Niter_em=0,
                         show_output=False) -> EMTrace:
    """
    Ajusta la mezcla solo con EM, con su propio generador sembrado en
    ``starting_seed``. Devuelve la traza completa y la log-verosimilitud.
    """
    t, delta, X = validate_data(t, delta, X)
    validate_em_settings(Niter, G, better_initial_values, N_em, Niter_em)

    rng = set_seed(starting_seed)
    return fit_em(int(Niter), int(G), t, delta, X, rng,
                  better_initial_values=better_initial_values, N_em=int(N_em),
                  Niter_em=int(Niter_em), internal=False, show_output=show_output)
