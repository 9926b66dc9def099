"""
model_lnm

Mezcla finita de regresiones lognormales para datos de supervivencia con
censura a derecha.
"""

from model_lnm.models.lognormal_mixture import (
    EMState,
    EMTrace,
    GibbsConfig,
    SamplingCancelled,
    lognormal_mixture_em,
    lognormal_mixture_gibbs,
    trace_column_names,
)

__all__ = [
    "lognormal_mixture_gibbs",
    "lognormal_mixture_em",
    "trace_column_names",
    "GibbsConfig",
    "EMTrace",
    "EMState",
    "SamplingCancelled",
]
