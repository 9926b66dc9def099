"""
Ejecución de varias cadenas independientes en paralelo.

Cada cadena tiene su propio generador, sembrado con su semilla, por lo que
el resultado no depende del backend ni del orden de ejecución.
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from os import cpu_count
from typing import List, Optional

import numpy as np
from joblib import Parallel, delayed

from model_lnm.models.lognormal_mixture.gibbs import LognormalMixtureGibbs
from model_lnm.utils.validation import validate_data, validate_gibbs_settings, validate_seeds

logger = logging.getLogger(__name__)


@dataclass
class GibbsConfig:
    Niter:                 int  = 2000
    em_iter:               int  = 200
    G:                     int  = 2
    n_chains:              int  = 1
    starting_seed:         List[int] = field(default_factory=lambda: [10])
    show_output:           bool = False
    better_initial_values: bool = False
    N_em:                  int  = 0
    Niter_em:              int  = 0
    data_augmentation:     bool = False
    n_jobs:       Optional[int] = None

    @classmethod
    def from_config(cls, config: dict) -> "GibbsConfig":
        """Construye la configuración desde la sección ``sampler`` de config.yaml"""
        try:
            section = config["sampler"]
        except KeyError as e:
            raise KeyError("Configuración incompleta: no se encontró 'sampler' en config.yaml") from e

        known = {f.name for f in fields(cls)}
        unknown = set(section) - known
        if unknown:
            raise ValueError(f"Claves desconocidas en sampler: {sorted(unknown)}")

        return cls(**section)

    def as_kwargs(self) -> dict:
        return asdict(self)


def _run_single_chain(Niter, chain_kwargs):
    return LognormalMixtureGibbs(**chain_kwargs).run(Niter)


def lognormal_mixture_gibbs(Niter, em_iter, G, t, delta, X, starting_seed,
                            show_output=False, n_chains=1,
                            better_initial_values=False, N_em=0, Niter_em=0,
                            data_augmentation=False, n_jobs=None, backend="loky",
                            should_stop=None):
    """
    Ajusta la mezcla de regresiones lognormales con ``n_chains`` cadenas.

    Parameters
    ----------
    Niter : int
        Iteraciones MCMC por cadena
    em_iter : int
        Iteraciones del EM de arranque (0 lo desactiva)
    G : int
        Número de componentes
    t, delta, X : array-like
        Tiempos (> 0), indicador de evento (1 observado, 0 censurado) y
        matriz de diseño (N, k)
    starting_seed : array-like
        Una semilla por cadena
    better_initial_values, N_em, Niter_em :
        Búsqueda de valores iniciales del EM con ``N_em`` reinicios de
        ``Niter_em`` iteraciones
    data_augmentation : bool
        True: augmentation + actualizaciones conjugadas.
        False: Metropolis-Hastings adaptativo con la verosimilitud censurada.
    n_jobs : int, optional
        Procesos de joblib; por defecto min(n_chains, cpu_count())
    backend : str
        Backend de joblib. ``should_stop`` debe poder enviarse al worker,
        en la práctica requiere ``backend="threading"``.

    Returns
    -------
    np.ndarray
        Arreglo (Niter, G·(k+2), n_chains)
    """
    t, delta, X = validate_data(t, delta, X)
    validate_gibbs_settings(Niter, G, em_iter, better_initial_values, N_em, Niter_em)
    seeds = validate_seeds(starting_seed, n_chains)

    if n_jobs is None:
        n_jobs = min(len(seeds), cpu_count() or 1)

    if show_output:
        logger.info("Running %d chains with joblib (backend: %s, n_jobs=%d)",
                    len(seeds), backend, n_jobs)

    traces = Parallel(n_jobs=n_jobs, backend=backend, batch_size=1)(
        delayed(_run_single_chain)(
            int(Niter),
            dict(t=t, delta=delta, X=X, G=G, starting_seed=seed, em_iter=em_iter,
                 better_initial_values=better_initial_values, N_em=N_em,
                 Niter_em=Niter_em, data_augmentation=data_augmentation,
                 show_output=show_output, chain_num=i + 1, should_stop=should_stop),
        )
        for i, seed in enumerate(seeds)
    )

    return np.stack(traces, axis=2)


def trace_column_names(G, k, layout="gibbs"):
    """
    Nombres de las columnas de la traza.

    ``layout="gibbs"``: (beta_g_0..beta_g_{k-1}, phi_g, eta_g) por grupo.
    ``layout="em"``: (eta_g, beta_g_0..beta_g_{k-1}, phi_g) por grupo.
    """
    if layout not in ("gibbs", "em"):
        raise ValueError(f"layout debe ser 'gibbs' o 'em', no '{layout}'")

    names = []
    for g in range(G):
        betas = [f"beta_{g}_{c}" for c in range(k)]
        if layout == "gibbs":
            names.extend(betas + [f"phi_{g}", f"eta_{g}"])
        else:
            names.extend([f"eta_{g}"] + betas + [f"phi_{g}"])
    return names
