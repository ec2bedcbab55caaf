"""
Iteratively re-weighted surrogate variable analysis.

The algorithm seeds candidate surrogate directions from the residuals of the
full model, then alternates between

1. two nested-model F-tests per feature (association with the variable of
   interest given the candidates, and association with the candidates alone),
   turned into posterior probabilities with local FDR, and
2. re-weighting every feature by ``pprob_gamma * (1 - pprob_b)``, centering
   and re-extracting the leading eigenvectors.

The loop is written as a fold, ``state_{i+1} = irw_step(state_i, ...)``, so a
single step can be run on an injected state.
"""

from __future__ import annotations
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple
import logging
import warnings

import numpy as np
import pandas as pd

from .checks import (
    check_finite,
    check_n_sv,
    check_nested,
    check_positive_int,
    check_samples,
)
from .edge_lfdr import edge_lfdr, estimate_pi0
from .f_pvalue import f_pvalue
from .utils import as_matrix, residualize, sorted_eigh
from ..exceptions import (
    DegenerateFDRWarning,
    DimensionMismatchError,
    InsufficientRankWarning,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IRWState:
    """Snapshot of the iteration after ``iteration`` steps.

    Attributes:
        iteration: Number of completed re-weighting steps (0 for the seed).
        eigenvectors: n x n eigenvectors ordered by descending eigenvalue;
            the leading ``n_sv`` columns are the current candidates.
        pprob_gamma: Posterior probability that each feature is affected by
            latent structure (``None`` for the seed state).
        pprob_b: Posterior probability that each feature is affected by the
            variable of interest (``None`` for the seed state).
        weighted: The re-weighted, row-centered data matrix of this step.
    """
    iteration: int
    eigenvectors: np.ndarray
    pprob_gamma: Optional[np.ndarray] = None
    pprob_b: Optional[np.ndarray] = None
    weighted: Optional[np.ndarray] = None


@dataclass
class SVAResult:
    """Container for surrogate variable estimates.

    Attributes:
        surrogate_variables: n x n_sv matrix, one surrogate variable per column.
        pprob_gamma: Final posterior probabilities of latent-structure association.
        pprob_b: Final posterior probabilities of association with the model.
        n_sv: Number of surrogate variables produced.
        n_sv_requested: Number of surrogate variables requested; larger than
            ``n_sv`` when the residuals did not have enough rank.
        iterations: Number of re-weighting iterations that were run.
        converged: Whether early stopping triggered, ``None`` if it was off.
    """
    surrogate_variables: np.ndarray
    pprob_gamma: np.ndarray
    pprob_b: np.ndarray
    n_sv: int
    n_sv_requested: int
    iterations: int
    converged: Optional[bool] = None

    def to_frame(self, sample_names: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """Return the surrogate variables as a DataFrame with SV1, SV2, ... columns."""
        columns = [f"SV{i + 1}" for i in range(self.surrogate_variables.shape[1])]
        index = list(sample_names) if sample_names is not None else None
        return pd.DataFrame(self.surrogate_variables, index=index, columns=columns)


# =============================================================================
# Residualizer
# =============================================================================

def initial_state(dat: np.ndarray, mod: np.ndarray, n_sv: int) -> Tuple[IRWState, int]:
    """Seed the iteration from the eigenvectors of the full-model residuals.

    Returns:
        Tuple of (seed state, number of usable surrogate directions).

    Raises:
        DegenerateModelError: If ``mod`` is rank deficient.
        DimensionMismatchError: If the residuals carry no variation at all.
    """
    resid = residualize(dat, mod, "mod")
    _, vecs = sorted_eigh(resid.T @ resid)
    rank = int(np.linalg.matrix_rank(resid))
    if rank == 0:
        raise DimensionMismatchError(
            f"Residuals of data with shape {dat.shape} on the full model "
            f"(shape {mod.shape}) have rank 0; no surrogate variables can be estimated"
        )
    if n_sv > rank:
        warnings.warn(
            f"Requested n_sv={n_sv} but the residual eigenspectrum has rank "
            f"{rank}; estimating {rank} surrogate variables",
            InsufficientRankWarning,
            stacklevel=3,
        )
        n_sv = rank
    return IRWState(iteration=0, eigenvectors=vecs), n_sv


# =============================================================================
# Re-weighting engine
# =============================================================================

def nested_models(
    mod: np.ndarray,
    mod0: np.ndarray,
    sv: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Build the model pairs of the b-test and the gamma-test.

    Returns:
        Tuple ``(mod_b, mod0_b, mod_gam, mod0_gam)`` where the b-test compares
        ``[mod | sv]`` with ``[mod0 | sv]`` and the gamma-test compares
        ``[mod0 | sv]`` with ``mod0``.
    """
    mod_b = np.column_stack([mod, sv])
    mod0_b = np.column_stack([mod0, sv])
    mod_gam = np.column_stack([mod0, sv])
    mod0_gam = mod0.copy()
    return mod_b, mod0_b, mod_gam, mod0_gam


def posterior_probabilities(p: np.ndarray) -> np.ndarray:
    """Turn p-values into ``1 - lfdr``, clamped into [0, 1].

    Non-finite local FDR estimates are replaced by the null proportion
    estimate; if the estimator fails outright every feature gets it.
    """
    try:
        lfdr = edge_lfdr(p)
    except (ValueError, np.linalg.LinAlgError, FloatingPointError) as err:
        pi0 = estimate_pi0(p)
        warnings.warn(
            f"Local FDR estimation failed ({err}); using the null proportion "
            f"estimate {pi0:.3g} for all {np.size(p)} features",
            DegenerateFDRWarning,
            stacklevel=2,
        )
        return np.full(np.size(p), 1.0 - pi0)

    bad = ~np.isfinite(lfdr) | (lfdr < 0) | (lfdr > 1)
    if bad.any():
        warnings.warn(
            f"Local FDR estimates for {int(bad.sum())} of {lfdr.size} features "
            f"were non-finite or outside [0, 1] and have been clamped",
            DegenerateFDRWarning,
            stacklevel=2,
        )
        lfdr = np.where(np.isfinite(lfdr), lfdr, estimate_pi0(p))
        lfdr = np.clip(lfdr, 0.0, 1.0)
    return 1.0 - lfdr


def _test_posterior(dat: np.ndarray, mod: np.ndarray, mod0: np.ndarray) -> np.ndarray:
    return posterior_probabilities(f_pvalue(dat, mod, mod0))


def reweight(
    dat: np.ndarray,
    mod: np.ndarray,
    mod0: np.ndarray,
    sv: np.ndarray,
    executor: Optional[Executor] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Compute ``(pprob_gamma, pprob_b)`` for the candidate directions ``sv``.

    Both tests use the same candidates. When an executor is given the two
    tests are submitted concurrently and the call waits for both.
    """
    mod_b, mod0_b, mod_gam, mod0_gam = nested_models(mod, mod0, sv)
    if executor is None:
        pprob_b = _test_posterior(dat, mod_b, mod0_b)
        pprob_gam = _test_posterior(dat, mod_gam, mod0_gam)
    else:
        fut_b = executor.submit(_test_posterior, dat, mod_b, mod0_b)
        fut_gam = executor.submit(_test_posterior, dat, mod_gam, mod0_gam)
        pprob_b = fut_b.result()
        pprob_gam = fut_gam.result()
    return pprob_gam, pprob_b


# =============================================================================
# Spectral updater
# =============================================================================

def weight_and_center(dat: np.ndarray, pprob: np.ndarray) -> np.ndarray:
    """Scale each feature (row) by its weight, then subtract each row's mean."""
    dats = dat * pprob[:, np.newaxis]
    return dats - dats.mean(axis=1, keepdims=True)


def irw_step(
    state: IRWState,
    dat: np.ndarray,
    mod: np.ndarray,
    mod0: np.ndarray,
    n_sv: int,
    executor: Optional[Executor] = None,
) -> IRWState:
    """Run one re-weighting step and return the next state."""
    sv = state.eigenvectors[:, :n_sv]
    pprob_gam, pprob_b = reweight(dat, mod, mod0, sv, executor)
    dats = weight_and_center(dat, pprob_gam * (1 - pprob_b))
    _, vecs = sorted_eigh(dats.T @ dats)
    return IRWState(
        iteration=state.iteration + 1,
        eigenvectors=vecs,
        pprob_gamma=pprob_gam,
        pprob_b=pprob_b,
        weighted=dats,
    )


def final_surrogates(state: IRWState, n_sv: int) -> np.ndarray:
    """Leading right-singular vectors of the last re-weighted matrix."""
    _, _, vt = np.linalg.svd(state.weighted, full_matrices=False)
    return vt[:n_sv].T.copy()


def _max_change(prev: IRWState, new: IRWState) -> float:
    if prev.pprob_gamma is None:
        return np.inf
    return float(max(
        np.max(np.abs(new.pprob_gamma - prev.pprob_gamma)),
        np.max(np.abs(new.pprob_b - prev.pprob_b)),
    ))


# =============================================================================
# Orchestrator
# =============================================================================

def irwsva_build(
    dat: Any,
    mod: Any,
    mod0: Any = None,
    n_sv: int = 1,
    B: int = 5,
    *,
    tol: Optional[float] = None,
    callback: Optional[Callable[[int, IRWState], None]] = None,
    n_jobs: int = 1,
) -> SVAResult:
    """
    Estimate surrogate variables with iteratively re-weighted SVA.

    As a by-product the posterior probabilities of each feature being driven
    by latent structure (``pprob_gamma``) and by the model (``pprob_b``) are
    returned; features with high ``pprob_gamma`` and low ``pprob_b`` behave
    like empirical controls.

    Args:
        dat: Data matrix (features x samples), ndarray or DataFrame.
        mod: Full model matrix (samples x k1) including the variables of interest.
        mod0: Null model matrix (samples x k0) nested in ``mod``. Default: a
            single column of ones.
        n_sv: Number of surrogate variables to estimate. Default: 1.
        B: Number of iterations. Default: 5.
        tol: Optional early-stopping tolerance on the largest change in the
            posterior probabilities between iterations. Default: None, which
            always runs ``B`` iterations.
        callback: Called as ``callback(iteration, state)`` after every iteration.
        n_jobs: Run the two F-tests of an iteration on this many threads.
            Default: 1.

    Returns:
        SVAResult with surrogate variables and posterior probabilities.

    Raises:
        DimensionMismatchError: On inconsistent shapes, a null model not nested
            in the full model, or an infeasible ``n_sv``.
        DegenerateModelError: If the full or null model is rank deficient.

    Example:
        >>> res = irwsva_build(dat, mod, n_sv=2, B=5)
        >>> res.to_frame(sample_names)
    """
    dat = as_matrix(dat, "dat")
    mod = as_matrix(mod, "mod")
    n = dat.shape[1]
    mod0 = np.ones((n, 1)) if mod0 is None else as_matrix(mod0, "mod0")

    check_finite(dat, "dat")
    check_samples(dat, mod, "mod")
    check_samples(dat, mod0, "mod0")
    check_positive_int(B, "B")
    check_positive_int(n_jobs, "n_jobs")
    if tol is not None and not tol > 0:
        raise ValueError(f"`tol` must be a positive number or None, got {tol!r}")
    check_n_sv(n_sv, n, mod.shape[1])
    check_nested(mod, mod0)

    n_sv_requested = int(n_sv)
    logger.info(
        "Estimating %d surrogate variable(s) from %d features x %d samples, %d iterations",
        n_sv_requested, dat.shape[0], n, B,
    )
    state, n_sv = initial_state(dat, mod, n_sv_requested)

    converged = False if tol is not None else None
    executor = ThreadPoolExecutor(max_workers=2) if n_jobs > 1 else None
    try:
        for i in range(1, B + 1):
            new_state = irw_step(state, dat, mod, mod0, n_sv, executor)
            delta = _max_change(state, new_state)
            state = new_state
            logger.debug("Iteration %d of %d, max posterior change %.3g", i, B, delta)
            if callback is not None:
                callback(i, state)
            if tol is not None and delta < tol:
                converged = True
                logger.debug("Posterior probabilities converged after %d iterations", i)
                break
    finally:
        if executor is not None:
            executor.shutdown(wait=True)

    return SVAResult(
        surrogate_variables=final_surrogates(state, n_sv),
        pprob_gamma=state.pprob_gamma,
        pprob_b=state.pprob_b,
        n_sv=n_sv,
        n_sv_requested=n_sv_requested,
        iterations=state.iteration,
        converged=converged,
    )


def estimate_surrogate_variables(
    data: Any,
    full_model: Any,
    null_model: Any = None,
    n_sv: int = 1,
    iterations: int = 5,
    **kwargs: Any,
) -> SVAResult:
    """Descriptive-name entry point for :func:`irwsva_build`.

    Keyword arguments (``tol``, ``callback``, ``n_jobs``) are forwarded.
    """
    return irwsva_build(data, full_model, null_model, n_sv=n_sv, B=iterations, **kwargs)
