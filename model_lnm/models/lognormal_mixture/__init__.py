"""
Lognormal mixture v1

Mezcla finita de regresiones lognormales con censura a derecha.
EM para valores iniciales + Gibbs / Metropolis-within-Gibbs en varias cadenas.
"""

from .chains import GibbsConfig, lognormal_mixture_gibbs, trace_column_names
from .em import EMState, EMTrace, fit_em, lognormal_mixture_em, mixture_loglik
from .gibbs import (
    AdaptiveProposal,
    LognormalMixtureGibbs,
    SamplingCancelled,
    lognormal_mixture_gibbs_chain,
)

__all__ = [
    "lognormal_mixture_gibbs",
    "trace_column_names",
    "GibbsConfig",
    "lognormal_mixture_gibbs_chain",
    "lognormal_mixture_em",
    "fit_em",
    "mixture_loglik",
    "EMTrace",
    "EMState",
    "LognormalMixtureGibbs",
    "AdaptiveProposal",
    "SamplingCancelled",
]
