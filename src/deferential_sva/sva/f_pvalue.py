"""
Per-feature F-test p-values for two nested linear models.

This module provides the parametric F-test used to compare a full and a null
model row by row, fitted by ordinary least squares on every feature at once.
"""

from __future__ import annotations
from typing import Any
import numpy as np
from scipy import stats

from .checks import check_samples
from .utils import as_matrix, residualize
from ..exceptions import DimensionMismatchError

# Residual sums of squares below this fraction of a row's total sum of
# squares are treated as zero.
_EXACT_FIT_TOL = 1e-20


def f_pvalue(dat: Any, mod: Any, mod0: Any) -> np.ndarray:
    """
    Compute F-test p-values comparing ``mod`` against the nested ``mod0``.

    For every feature (row of ``dat``) the residual sums of squares under
    both models give ``F = ((rss0 - rss1) / (df1 - df0)) / (rss1 / (n - df1))``
    and the p-value is the upper tail of the F distribution with
    ``(df1 - df0, n - df1)`` degrees of freedom.

    Args:
        dat: Data matrix (features x samples).
        mod: Full model matrix (samples x df1).
        mod0: Null model matrix (samples x df0), nested in ``mod``.

    Returns:
        Array of p-values of length ``dat.shape[0]``, all within [0, 1].

    Raises:
        DimensionMismatchError: If the row counts disagree or ``df0 < df1 < n``
            does not hold.
        DegenerateModelError: If either model is rank deficient.

    Example:
        >>> p = f_pvalue(dat, mod, mod[:, [0]])
    """
    dat = as_matrix(dat, "dat")
    mod = as_matrix(mod, "mod")
    mod0 = as_matrix(mod0, "mod0")
    check_samples(dat, mod, "mod")
    check_samples(dat, mod0, "mod0")

    n = dat.shape[1]
    df1 = mod.shape[1]
    df0 = mod0.shape[1]
    if not df0 < df1 < n:
        raise DimensionMismatchError(
            f"F-test needs df0 < df1 < n, got df0={df0}, df1={df1}, n={n}"
        )

    resid = residualize(dat, mod, "mod")
    rss1 = np.sum(resid * resid, axis=1)
    resid0 = residualize(dat, mod0, "mod0")
    rss0 = np.sum(resid0 * resid0, axis=1)

    with np.errstate(divide="ignore", invalid="ignore"):
        fstats = ((rss0 - rss1) / (df1 - df0)) / (rss1 / (n - df1))
    p = stats.f.sf(fstats, df1 - df0, n - df1)

    # Fits exact up to rounding: the F statistic is noise over noise.
    tiny = _EXACT_FIT_TOL * np.sum(dat * dat, axis=1)
    exact1 = rss1 <= tiny
    exact0 = rss0 <= tiny
    p = np.where(exact1 & ~exact0, 0.0, p)
    p = np.where(exact1 & exact0, 1.0, p)
    p = np.where(np.isnan(p), 1.0, p)
    return np.clip(p, 0.0, 1.0)
