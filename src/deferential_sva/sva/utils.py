"""
Linear-algebra helpers shared by the sva module.

Provides matrix coercion from pandas/numpy inputs, hat-matrix residuals and a
symmetric eigendecomposition ordered by descending eigenvalue.
"""

from __future__ import annotations
from typing import Any, Tuple
import numpy as np
import pandas as pd

from ..exceptions import DegenerateModelError


def as_matrix(x: Any, name: str = "x") -> np.ndarray:
    """Coerce a DataFrame, Series or array-like to a 2-D float array.

    One-dimensional input is treated as a single column (e.g. an intercept-only
    null model passed as a vector).
    """
    if isinstance(x, (pd.DataFrame, pd.Series)):
        x = x.to_numpy()
    arr = np.asarray(x, dtype=float)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise ValueError(f"`{name}` must be 2-dimensional, got {arr.ndim} dimensions")
    return arr


def model_rank(mod: np.ndarray) -> int:
    """Numerical column rank of a model matrix."""
    if mod.shape[1] == 0:
        return 0
    return int(np.linalg.matrix_rank(mod))


def hat_inverse(mod: np.ndarray, name: str = "mod") -> np.ndarray:
    """Return ``(X^T X)^{-1}``, raising if X is not of full column rank."""
    rank = model_rank(mod)
    if rank < mod.shape[1]:
        raise DegenerateModelError(
            f"Model matrix `{name}` with shape {mod.shape} has rank {rank}; "
            f"its columns must be linearly independent"
        )
    try:
        return np.linalg.inv(mod.T @ mod)
    except np.linalg.LinAlgError as err:
        raise DegenerateModelError(
            f"X^T X is singular for model matrix `{name}` with shape {mod.shape}"
        ) from err


def residualize(dat: np.ndarray, mod: np.ndarray, name: str = "mod") -> np.ndarray:
    """Project the rows of ``dat`` onto the orthogonal complement of ``mod``.

    Computes ``dat (I - X (X^T X)^{-1} X^T)`` without forming the n x n
    identity. ``dat`` is features x samples, ``mod`` is samples x covariates.

    Raises:
        DegenerateModelError: If ``mod`` is rank deficient.
    """
    xtx_inv = hat_inverse(mod, name)
    return dat - ((dat @ mod) @ xtx_inv) @ mod.T


def sorted_eigh(sym: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Eigendecomposition of a symmetric matrix, eigenvalues descending.

    Returns:
        Tuple of (eigenvalues, eigenvectors) with eigenvectors in columns.
    """
    vals, vecs = np.linalg.eigh(sym)
    order = np.argsort(vals)[::-1]
    return vals[order], vecs[:, order]

