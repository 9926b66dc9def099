"""
Variables latentes del modelo de mezcla lognormal con censura.

- Asignación de grupos z_i (con o sin data augmentation).
- Simulación de los tiempos censurados (data augmentation de Gibbs).
- Reparación de grupos con muy pocas observaciones.
"""

import logging

import numpy as np
from scipy.stats import norm

from model_lnm.utils.rng_utils import numeric_sample, numeric_sample_rows, runif_0_1

logger = logging.getLogger(__name__)

# Intentos máximos del muestreo por rechazo antes de usar 1.01 * y_i
MAX_AUGMENT_ATTEMPTS = 10_000
AUGMENT_FALLBACK_FACTOR = 1.01
_AUGMENT_BLOCK = 64

# Tamaño mínimo de grupo garantizado tras la reparación
MIN_GROUP_SIZE = 5
MAX_REPAIR_ATTEMPTS = 10_000


def survival(y, mu, sd):
    """S(y) = P(Y > y) con Y ~ N(mu, sd²)"""
    return norm.sf(y, loc=mu, scale=sd)


def sample_groups(G, y, eta, sd, data_augmentation, means, delta, rng):
    """
    Muestrea el grupo latente de cada observación.

    Con data augmentation (o para observaciones no censuradas) el peso del
    grupo g es eta_g · φ(y_i; μ_ig, sd_g). Para observaciones censuradas sin
    augmentation se usa la probabilidad de supervivencia eta_g · S(y_i).
    Si todos los pesos de una fila son 0 se usa la uniforme 1/G.

    Parameters
    ----------
    G : int
        Número de componentes
    y : np.ndarray
        Log-tiempos (aumentados o no), shape (n,)
    eta, sd : np.ndarray
        Pesos y desviaciones estándar, shape (G,)
    data_augmentation : bool
        Si ``y`` ya contiene los tiempos censurados simulados
    means : np.ndarray
        Medias X·β_gᵗ, shape (n, G)
    delta : np.ndarray
        Indicador de evento (1 observado, 0 censurado)
    rng : np.random.Generator

    Returns
    -------
    np.ndarray
        Nuevos grupos, enteros en [0, G)
    """
    y_col = y[:, None]
    probs = eta * norm.pdf(y_col, loc=means, scale=sd)

    if not data_augmentation:
        censored = delta == 0
        probs[censored] = eta * survival(y_col[censored], means[censored], sd)

    denom = probs.sum(axis=1, keepdims=True)
    probs = np.where(denom == 0, 1.0 / G, probs / np.where(denom == 0, 1.0, denom))

    return numeric_sample_rows(probs, rng)


def sample_groups_start(n, eta, rng):
    """Grupos iniciales muestreados directamente de eta"""
    return np.array([numeric_sample(eta, rng) for _ in range(n)], dtype=int)


def sample_groups_from_W(W):
    """Asigna cada observación al grupo de mayor responsabilidad"""
    return np.argmax(W, axis=1).astype(int)


def groups_table(G, groups):
    """Número de observaciones en cada grupo"""
    return np.bincount(groups, minlength=G).astype(int)


def _truncated_draw(y_i, mean, sd, rng):
    """
    Muestreo por rechazo de N(mean, sd²) condicionado a superar y_i.
    Devuelve None si se agotan los intentos.
    """
    attempts = 0
    while attempts < MAX_AUGMENT_ATTEMPTS:
        size = min(_AUGMENT_BLOCK, MAX_AUGMENT_ATTEMPTS - attempts)
        draws = rng.normal(mean, sd, size=size)
        accepted = np.flatnonzero(draws > y_i)
        if accepted.size > 0:
            return float(draws[accepted[0]])
        attempts += size
    return None


def augment(y, groups, delta, sd, means, rng):
    """
    Simula el log-tiempo verdadero de cada observación censurada.

    Se muestrea N(μ_i,z_i, sd_z_i²) truncada en (y_i, ∞) por rechazo. Tras
    MAX_AUGMENT_ATTEMPTS intentos fallidos se usa 1.01 · y_i, que es una
    aproximación acotada y no una muestra exacta.
    """
    out = y.copy()
    censored_indexes = np.flatnonzero(delta == 0)

    for i in censored_indexes:
        g = groups[i]
        draw = _truncated_draw(y[i], means[i, g], sd[g], rng)
        if draw is None:
            logger.debug("Augmentation sin éxito para la observación %d, se usa 1.01*y", i)
            draw = AUGMENT_FALLBACK_FACTOR * y[i]
        out[i] = draw

    return out


def avoid_group_with_zero_allocation(n_groups, groups, G, N, rng):
    """
    Garantiza (en lo posible) al menos MIN_GROUP_SIZE observaciones por grupo.

    Para cada grupo deficitario se elige una observación al azar; si su grupo
    actual tiene más de MIN_GROUP_SIZE miembros se reasigna. Se detiene al
    completar el grupo o tras MAX_REPAIR_ATTEMPTS intentos. ``groups`` y
    ``n_groups`` se modifican in place y se devuelven.
    """
    for g in range(G):
        if n_groups[g] >= MIN_GROUP_SIZE:
            continue

        attempts = 0
        while n_groups[g] < MIN_GROUP_SIZE and attempts < MAX_REPAIR_ATTEMPTS:
            idx = min(int(runif_0_1(rng) * N), N - 1)
            donor = groups[idx]
            if donor != g and n_groups[donor] > MIN_GROUP_SIZE:
                groups[idx] = g
                n_groups[donor] -= 1
                n_groups[g] += 1
            attempts += 1

        if n_groups[g] < MIN_GROUP_SIZE:
            logger.debug("Grupo %d quedó con %d observaciones tras la reparación", g, n_groups[g])

    return n_groups, groups
