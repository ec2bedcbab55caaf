"""SVA: Surrogate Variable Analysis.

This module estimates surrogate variables representing unknown batch effects
or other unwanted variation with the iteratively re-weighted algorithm.

Matrix API:
    >>> import deferential_sva.sva as sva
    >>> res = sva.irwsva_build(dat, mod, n_sv=2)
    >>> res.surrogate_variables, res.pprob_gamma, res.pprob_b

SummarizedExperiment API:
    >>> se_sva = sva.sva(se, mod=design, assay="log_expr")
    >>> sv_df = sva.get_sv(se_sva)
"""

from .irwsva import (
    IRWState,
    SVAResult,
    estimate_surrogate_variables,
    initial_state,
    irw_step,
    irwsva_build,
    nested_models,
    posterior_probabilities,
    reweight,
    weight_and_center,
)
from .f_pvalue import f_pvalue
from .edge_lfdr import edge_lfdr, estimate_pi0
from .num_sv import num_sv
from .sva_func import sva
from .get_sv import get_sv

__all__ = [
    # Core algorithm
    "irwsva_build",
    "estimate_surrogate_variables",
    "IRWState",
    "SVAResult",
    "initial_state",
    "irw_step",
    "nested_models",
    "posterior_probabilities",
    "reweight",
    "weight_and_center",
    # Statistics
    "f_pvalue",
    "edge_lfdr",
    "estimate_pi0",
    "num_sv",
    # SummarizedExperiment API
    "sva",
    "get_sv",
]
