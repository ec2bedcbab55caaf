"""deferential_sva: surrogate variable analysis in pure Python.

This package estimates surrogate variables (latent confounders such as batch
effects) with the iteratively re-weighted SVA algorithm, using numpy and
scipy instead of an R backend. The ``sva`` submodule is loaded lazily.

Usage:
    >>> import deferential_sva as ds
    >>> res = ds.sva.irwsva_build(dat, mod, n_sv=2)
    >>> res.surrogate_variables.shape
    (12, 2)
"""

from __future__ import annotations

import importlib

from .exceptions import (
    DegenerateModelError,
    DimensionMismatchError,
    DegenerateFDRWarning,
    InsufficientRankWarning,
)

__all__ = [
    "DegenerateModelError",
    "DimensionMismatchError",
    "DegenerateFDRWarning",
    "InsufficientRankWarning",
    # Lazy-loaded submodules
    "sva",
]

_LAZY_SUBMODULES = {"sva"}


def __getattr__(name: str):
    """Lazy loading of submodules per PEP 562."""
    if name in _LAZY_SUBMODULES:
        module = importlib.import_module(f".{name}", __name__)
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    """Include lazy submodules in dir() output."""
    return list(__all__)
