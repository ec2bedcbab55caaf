"""
Extract surrogate variables from a SummarizedExperiment.

This module provides a functional interface to retrieve SVA results.
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Union
import numpy as np
import pandas as pd

from .checks import check_se

if TYPE_CHECKING:
    from summarizedexperiment import SummarizedExperiment


def get_sv(
    se: "SummarizedExperiment",
    key: str = "sva$sv",
    as_pandas: bool = True
) -> Union[np.ndarray, pd.DataFrame]:
    """
    Extract surrogate variables from metadata.

    Args:
        se: SummarizedExperiment with SVA results.
        key: Metadata key where SV matrix is stored. Default: "sva$sv".
        as_pandas: If True, return as DataFrame with column_names as index
            and SV1, SV2, ... as columns. Default: True.

    Returns:
        Surrogate variable matrix as numpy array or pandas DataFrame.
        If no SVs were found (n.sv=0), returns an empty array/DataFrame.

    Raises:
        TypeError: If se is not SummarizedExperiment-like.
        KeyError: If the key is not found in metadata.

    Example:
        >>> import deferential_sva.sva as sva
        >>> se_sva = sva.sva(se, mod=design, n_sv=2)
        >>> sv_df = sva.get_sv(se_sva)
        >>> sv_np = sva.get_sv(se_sva, as_pandas=False)
    """
    check_se(se)

    metadata = dict(se.metadata)
    if key not in metadata:
        raise KeyError(f"Key '{key}' not found in metadata. Run sva() first.")

    sv_np = np.asarray(metadata[key])
    if sv_np.ndim == 1:
        sv_np = sv_np.reshape(-1, 1)

    if not as_pandas:
        return sv_np

    column_names = se.column_names
    index = list(column_names) if column_names is not None else list(range(sv_np.shape[0]))
    columns = [f"SV{i + 1}" for i in range(sv_np.shape[1])]

    return pd.DataFrame(sv_np, index=index, columns=columns)
