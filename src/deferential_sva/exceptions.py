"""
Errors and warnings raised by surrogate variable estimation.

Fatal problems with the caller's inputs are raised as exceptions before any
iteration runs. Numerical degeneracies inside the iteration loop are reported
as warnings and absorbed, so a single bad feature does not abort a run.
"""


class DegenerateModelError(ValueError):
    """A model matrix is rank deficient, so ``X^T X`` cannot be inverted."""


class DimensionMismatchError(ValueError):
    """Matrix shapes, model nesting or the requested ``n_sv`` are inconsistent."""


class DegenerateFDRWarning(RuntimeWarning):
    """Local FDR estimates were non-finite or outside [0, 1] and were clamped."""


class InsufficientRankWarning(RuntimeWarning):
    """Fewer residual directions are available than surrogate variables requested."""
