"""
Input validation utilities for sva functions.

Provides centralized checks for data/model matrix shapes, model nesting and
SummarizedExperiment-like containers.
"""

from __future__ import annotations
from typing import Any, Optional
import numpy as np
import pandas as pd

from ..exceptions import DimensionMismatchError
from .utils import hat_inverse


def check_se(se: Any, name: str = "se") -> None:
    """Check that input is a SummarizedExperiment-like object.

    Accepts any object with assays and assay_names attributes
    (duck typing for SE, RSE, SCE).
    """
    required_attrs = ["assays", "assay_names"]
    for attr in required_attrs:
        if not hasattr(se, attr):
            raise TypeError(
                f"Expected `{name}` to be a SummarizedExperiment-like object "
                f"(SE, RSE or SCE), "
                f"got {type(se).__name__} which lacks '{attr}'"
            )


def check_assay_exists(se: Any, assay: str) -> None:
    """Check that the specified assay exists in the SummarizedExperiment."""
    if assay not in se.assay_names:
        available = list(se.assay_names)
        raise KeyError(
            f"Assay '{assay}' not found. Available assays: {available}"
        )


def check_mod(mod: Any, n_samples: Optional[int] = None) -> None:
    """Check that mod is a valid pandas DataFrame."""
    if not isinstance(mod, pd.DataFrame):
        raise TypeError(
            f"Expected `mod` to be a pandas DataFrame, "
            f"got {type(mod).__name__}"
        )
    if n_samples is not None and len(mod) != n_samples:
        raise ValueError(
            f"Model matrix has {len(mod)} rows but expected {n_samples} samples"
        )


def check_samples(dat: np.ndarray, mod: np.ndarray, name: str = "mod") -> None:
    """Check that a model matrix has one row per sample (column of ``dat``)."""
    if mod.shape[0] != dat.shape[1]:
        raise DimensionMismatchError(
            f"Data matrix has {dat.shape[1]} samples (shape {dat.shape}) but "
            f"`{name}` has {mod.shape[0]} rows (shape {mod.shape})"
        )


def check_finite(dat: np.ndarray, name: str = "dat") -> None:
    """Check that a matrix holds no NaN or infinite values."""
    if not np.all(np.isfinite(dat)):
        raise ValueError(f"`{name}` contains missing or non-finite values")


def check_nested(mod: np.ndarray, mod0: np.ndarray, tol: float = 1e-8) -> None:
    """Check that the null model is nested in the full model.

    The null model must be of full column rank, have fewer columns than the
    full model, and its column space must lie inside the full model's.
    """
    if mod0.shape[0] != mod.shape[0]:
        raise DimensionMismatchError(
            f"Null model has {mod0.shape[0]} rows but full model has {mod.shape[0]}"
        )
    if mod0.shape[1] >= mod.shape[1]:
        raise DimensionMismatchError(
            f"Null model must have fewer columns than the full model, got "
            f"mod0 shape {mod0.shape} and mod shape {mod.shape}"
        )
    hat_inverse(mod0, "mod0")
    xtx_inv = hat_inverse(mod, "mod")
    outside = mod0 - mod @ (xtx_inv @ (mod.T @ mod0))
    scale = max(float(np.linalg.norm(mod0)), 1.0)
    if float(np.linalg.norm(outside)) > tol * scale:
        raise DimensionMismatchError(
            f"Null model (shape {mod0.shape}) is not nested in the column "
            f"space of the full model (shape {mod.shape})"
        )


def check_n_sv(n_sv: Any, n_samples: int, n_mod: int) -> None:
    """Check that ``n_sv`` leaves residual degrees of freedom for the F-tests."""
    if isinstance(n_sv, bool) or not isinstance(n_sv, (int, np.integer)):
        raise TypeError(f"`n_sv` must be an integer, got {type(n_sv).__name__}")
    if n_sv < 1:
        raise DimensionMismatchError(
            f"`n_sv` must be at least 1, got {n_sv}; with no surrogate "
            f"variables the gamma test compares the null model with itself"
        )
    if n_mod + n_sv >= n_samples:
        raise DimensionMismatchError(
            f"Full model with {n_mod} columns plus n_sv={n_sv} surrogate "
            f"variables leaves no residual degrees of freedom for "
            f"{n_samples} samples"
        )


def check_positive_int(value: Any, name: str) -> None:
    """Check that a tuning argument is a positive integer."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
        raise ValueError(f"`{name}` must be a positive integer, got {value!r}")
