"""
Local false discovery rate estimation from p-values.

The null proportion is estimated from the flat right tail of the p-value
distribution; the density of the transformed p-values is estimated with a
Gaussian kernel, smoothed with a cubic smoothing spline and compared with the
theoretical null density.
"""

from __future__ import annotations
from typing import Any
import numpy as np
from scipy import stats
from scipy.interpolate import make_smoothing_spline

_GRID_POINTS = 512
_GRID_CUT = 3.0
_CHUNK = 4096


def _check_pvalues(p: Any) -> np.ndarray:
    p = np.asarray(p, dtype=float)
    if p.ndim != 1:
        raise ValueError(f"p-values must be a 1-dimensional array, got {p.ndim} dimensions")
    if p.size < 2:
        raise ValueError(f"Need at least 2 p-values, got {p.size}")
    if np.any(np.isnan(p)) or np.any(p < 0) or np.any(p > 1):
        raise ValueError("p-values must lie within [0, 1] and contain no NaN")
    return p


def estimate_pi0(p: Any, lambda_: float = 0.8) -> float:
    """Estimate the proportion of true nulls from p-values above ``lambda_``."""
    p = np.asarray(p, dtype=float)
    if not 0 <= lambda_ < 1:
        raise ValueError(f"`lambda_` must lie in [0, 1), got {lambda_}")
    pi0 = np.mean(p >= lambda_) / (1 - lambda_)
    return float(min(pi0, 1.0))


def nrd0_bandwidth(x: np.ndarray) -> float:
    """Silverman's rule-of-thumb bandwidth with fallbacks for zero spread."""
    hi = float(np.std(x, ddof=1))
    q75, q25 = np.percentile(x, [75, 25])
    lo = min(hi, (q75 - q25) / 1.34)
    if not lo:
        lo = hi or abs(float(x[0])) or 1.0
    return 0.9 * lo * x.size ** (-0.2)


def kernel_density(x: np.ndarray, bw: float, n_grid: int = _GRID_POINTS):
    """Gaussian kernel density of ``x`` on an evenly spaced grid.

    Written out instead of using ``scipy.stats.gaussian_kde`` so the grid,
    the cut of 3 bandwidths and the nrd0 bandwidth (including its fallbacks
    for zero spread, where ``gaussian_kde`` fails on a singular covariance)
    match R's ``density()``.

    Returns:
        Tuple of (grid, density).
    """
    grid = np.linspace(x.min() - _GRID_CUT * bw, x.max() + _GRID_CUT * bw, n_grid)
    dens = np.zeros(n_grid)
    for start in range(0, x.size, _CHUNK):
        block = x[start:start + _CHUNK]
        dens += stats.norm.pdf((grid[None, :] - block[:, None]) / bw).sum(axis=0)
    return grid, dens / (x.size * bw)


def edge_lfdr(
    p: Any,
    trunc: bool = True,
    monotone: bool = True,
    transf: str = "probit",
    adj: float = 1.5,
    eps: float = 1e-8,
    lambda_: float = 0.8,
) -> np.ndarray:
    """
    Estimate local false discovery rates for a vector of p-values.

    Args:
        p: P-values, one per feature.
        trunc: Truncate estimates above 1 to 1. Default: True.
        monotone: Force estimates to be non-decreasing in the p-value.
            Default: True.
        transf: Transformation of the p-values before density estimation,
            "probit" (default) or "logit".
        adj: Multiplier applied to the kernel bandwidth. Default: 1.5.
        eps: P-values are clipped to [eps, 1 - eps] before transforming.
        lambda_: Tuning parameter of the null proportion estimate.
            Default: 0.8.

    Returns:
        Array of local FDR estimates, the posterior probability that each
        feature is null. Values are not clamped below 0; a degenerate density
        estimate can still produce out-of-range values.

    Raises:
        ValueError: If ``p`` is not a 1-D vector of at least two values in
            [0, 1], or ``transf`` is unknown.

    Example:
        >>> lfdr = edge_lfdr(f_pvalue(dat, mod, mod0))
        >>> pprob = 1 - lfdr
    """
    p = _check_pvalues(p)
    pi0 = estimate_pi0(p, lambda_)

    p_clip = np.clip(p, eps, 1 - eps)
    if transf == "probit":
        x = stats.norm.ppf(p_clip)
    elif transf == "logit":
        x = np.log(p_clip / (1 - p_clip))
    else:
        raise ValueError(f"Unknown transformation '{transf}', use 'probit' or 'logit'")

    grid, dens = kernel_density(x, nrd0_bandwidth(x) * adj)
    spline = make_smoothing_spline(grid, dens)
    y = spline(x)

    with np.errstate(divide="ignore", invalid="ignore"):
        if transf == "probit":
            lfdr = pi0 * stats.norm.pdf(x) / y
        else:
            dx = np.exp(x) / (1 + np.exp(x)) ** 2
            lfdr = pi0 * dx / y
        if trunc:
            lfdr[lfdr > 1] = 1.0

    if monotone:
        order = np.argsort(p, kind="stable")
        lfdr_sorted = np.fmax.accumulate(lfdr[order])
        lfdr = np.empty_like(lfdr_sorted)
        lfdr[order] = lfdr_sorted
    return lfdr
