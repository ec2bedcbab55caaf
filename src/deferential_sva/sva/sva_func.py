"""
Perform Surrogate Variable Analysis on a SummarizedExperiment.

This module provides a functional interface for SVA.
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Any, Optional
import logging
import warnings

import numpy as np
import pandas as pd

from .checks import check_se, check_assay_exists, check_mod
from .irwsva import irwsva_build
from .num_sv import num_sv, top_variance_rows
from .utils import as_matrix

if TYPE_CHECKING:
    from summarizedexperiment import SummarizedExperiment

logger = logging.getLogger(__name__)


def sva(
    se: "SummarizedExperiment",
    mod: pd.DataFrame,
    assay: str = "cpm",
    mod0: Optional[pd.DataFrame] = None,
    n_sv: Optional[int] = None,
    B: int = 5,
    vfilter: Optional[int] = None,
    seed: Optional[int] = None,
    **kwargs: Any,
) -> "SummarizedExperiment":
    """
    Perform Surrogate Variable Analysis.

    Identifies and estimates surrogate variables representing unknown batch
    effects or other unwanted variation with iteratively re-weighted SVA.

    Results are stored in the returned SummarizedExperiment:
    - Surrogate variable matrix → metadata["sva$sv"] (numpy array)
    - n.sv (number of surrogate variables) → metadata["sva$n.sv"]
    - pprob.gam (posterior prob of latent-structure association) → row_data["sva$pprob.gam"]
    - pprob.b (posterior prob of association with mod) → row_data["sva$pprob.b"]

    Use `get_sv()` to extract the surrogate variables as a DataFrame.

    Args:
        se: Input SummarizedExperiment with expression data.
        mod: Full model matrix (samples × covariates) including biological variables.
        assay: Expression assay name (should be continuous). Default: "cpm".
        mod0: Null model matrix (intercept only by default).
        n_sv: Number of surrogate variables. If None, estimated with `num_sv`.
        B: Number of iterations. Default: 5.
        vfilter: Number of most variable features to use. Features outside
            the filter get NaN posterior probabilities. Default: None (all).
        seed: Seed for the permutations of `num_sv`. Default: None.
        **kwargs: Forwarded to `irwsva_build` (tol, callback, n_jobs).

    Returns:
        New SummarizedExperiment with SVA results in metadata and row_data.

    Example:
        >>> import deferential_sva.sva as sva
        >>> import pandas as pd
        >>> design = pd.DataFrame({'Intercept': [1]*6, 'Cond': [0,0,0,1,1,1]})
        >>> se_sva = sva.sva(se, mod=design, assay="log_expr", n_sv=1)
        >>> sv_df = sva.get_sv(se_sva)
    """
    check_se(se)
    check_assay_exists(se, assay)
    n_features, n_samples = se.shape
    check_mod(mod, n_samples)
    if mod0 is not None:
        check_mod(mod0, n_samples)
        mod0 = as_matrix(mod0, "mod0")

    dat = as_matrix(se.assay(assay), assay)
    mod_np = as_matrix(mod, "mod")

    rows = np.arange(n_features)
    if vfilter is not None:
        rows = top_variance_rows(dat, vfilter)
        dat = dat[rows]

    if n_sv is None:
        n_sv = num_sv(dat, mod_np, seed=seed)
        logger.info("Using %d estimated surrogate variable(s)", n_sv)

    pprob_gam = np.full(n_features, np.nan)
    pprob_b = np.full(n_features, np.nan)
    if n_sv == 0:
        warnings.warn("No significant surrogate variables", UserWarning, stacklevel=2)
        sv_np = np.empty((n_samples, 0))
        n_sv_result = 0
    else:
        res = irwsva_build(dat, mod_np, mod0, n_sv=n_sv, B=B, **kwargs)
        sv_np = res.surrogate_variables
        n_sv_result = res.n_sv
        pprob_gam[rows] = res.pprob_gamma
        pprob_b[rows] = res.pprob_b

    new_metadata = dict(se.metadata)
    new_metadata["sva$sv"] = sv_np
    new_metadata["sva$n.sv"] = n_sv_result

    row_data = se.get_row_data()
    if row_data is None:
        from biocframe import BiocFrame
        row_data = BiocFrame({}, number_of_rows=n_features)
    if n_sv_result > 0:
        row_data = row_data.set_column("sva$pprob.gam", pprob_gam)
        row_data = row_data.set_column("sva$pprob.b", pprob_b)

    return se.set_row_data(row_data).set_metadata(new_metadata)
