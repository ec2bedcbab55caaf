"""
Estimate the number of surrogate variables by permutation.

Implements the Buja-Eyuboglu approach: the share of residual variance carried
by each singular value is compared with the same share after independently
permuting every feature's residuals, which destroys the sample-to-sample
correlation structure.
"""

from __future__ import annotations
from typing import Any, Optional
import logging
import math

import numpy as np

from .checks import check_finite, check_positive_int, check_samples
from .utils import as_matrix, hat_inverse

logger = logging.getLogger(__name__)


def _variance_shares(res: np.ndarray, ndf: int) -> np.ndarray:
    d = np.linalg.svd(res, compute_uv=False)[:ndf]
    d2 = d ** 2
    total = d2.sum()
    if total == 0:
        return np.zeros(ndf)
    return d2 / total


def top_variance_rows(dat: np.ndarray, vfilter: int) -> np.ndarray:
    """Indices of the ``vfilter`` rows with the largest variance, in row order."""
    if vfilter < 1 or vfilter > dat.shape[0]:
        raise ValueError(
            f"`vfilter` must be between 1 and the number of features "
            f"({dat.shape[0]}), got {vfilter}"
        )
    variances = dat.var(axis=1, ddof=1)
    keep = np.argsort(variances, kind="stable")[::-1][:vfilter]
    return np.sort(keep)


def num_sv(
    dat: Any,
    mod: Any,
    method: str = "be",
    vfilter: Optional[int] = None,
    B: int = 20,
    sv_sig: float = 0.10,
    seed: Optional[int] = None,
) -> int:
    """
    Estimate the number of surrogate variables to use.

    Args:
        dat: Data matrix (features x samples).
        mod: Full model matrix (samples x covariates).
        method: Estimation method, only "be" (permutation) is supported.
        vfilter: Use only the ``vfilter`` most variable features. Default: None.
        B: Number of permutations. Default: 20.
        sv_sig: Significance threshold for a singular value. Default: 0.10.
        seed: Seed for the permutation generator. Default: None.

    Returns:
        Estimated number of surrogate variables (possibly 0).

    Raises:
        ValueError: If ``method`` is unknown or arguments are out of range.
        DegenerateModelError: If ``mod`` is rank deficient.

    Example:
        >>> n_sv = num_sv(dat, mod, seed=1)
    """
    if method != "be":
        raise ValueError(f"Unknown method '{method}'; only 'be' is supported")
    check_positive_int(B, "B")
    if not 0 < sv_sig < 1:
        raise ValueError(f"`sv_sig` must lie in (0, 1), got {sv_sig}")

    dat = as_matrix(dat, "dat")
    mod = as_matrix(mod, "mod")
    check_finite(dat, "dat")
    check_samples(dat, mod, "mod")
    if vfilter is not None:
        dat = dat[top_variance_rows(dat, vfilter)]

    m, n = dat.shape
    hat = mod @ hat_inverse(mod, "mod") @ mod.T
    res = dat - dat @ hat
    ndf = min(m, n) - math.ceil(round(float(np.trace(hat)), 8))
    if ndf <= 0:
        return 0

    dstat = _variance_shares(res, ndf)
    dstat0 = np.zeros((B, ndf))
    rng = np.random.default_rng(seed)
    for i in range(B):
        res0 = rng.permuted(res, axis=1)
        res0 = res0 - res0 @ hat
        dstat0[i] = _variance_shares(res0, ndf)

    psv = np.mean(dstat0 >= dstat[np.newaxis, :], axis=0)
    psv = np.maximum.accumulate(psv)
    nsv = int(np.sum(psv <= sv_sig))
    logger.info("Estimated %d surrogate variable(s) from %d permutations", nsv, B)
    return nsv
