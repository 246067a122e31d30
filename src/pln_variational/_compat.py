"""Input compatibility layer for pandas and optional Polars support.

The optimizers work on dense float64 NumPy arrays.  Callers commonly
hold their count tables as ``pandas.DataFrame`` objects (samples as
rows, species or genes as columns), so every public entry point routes
its array arguments through :func:`_ensure_float_array`, which strips
the labels and returns a float array of the requested dimensionality.

Polars is **not** a required dependency.  When it is installed, Polars
DataFrames, LazyFrames and Series are converted too.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd

# Polars is optional; detect it at import time.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _to_numpy(obj: Any) -> np.ndarray:
    """Strip labels from pandas / Polars containers."""
    if isinstance(obj, (pd.DataFrame, pd.Series)):
        return obj.to_numpy()

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_numpy()
        if isinstance(obj, (pl.DataFrame, pl.Series)):
            return obj.to_numpy()

    if isinstance(obj, (np.ndarray, list, tuple)) or np.isscalar(obj):
        return np.asarray(obj)

    raise TypeError(
        "expected an array, a pandas DataFrame/Series"
        + (" or a Polars DataFrame/LazyFrame/Series" if _HAS_POLARS else "")
        + f", got {type(obj).__name__}."
    )


def _ensure_float_array(obj: Any, *, name: str = "input", ndim: int = 2) -> np.ndarray:
    """Convert *obj* to a float64 NumPy array with *ndim* dimensions.

    Accepted types:
        * ``numpy.ndarray``, nested lists / tuples.
        * ``pandas.DataFrame`` / ``pandas.Series``.
        * ``polars.DataFrame`` / ``polars.Series`` / ``polars.LazyFrame``
          (when Polars is installed).

    Args:
        obj: Array-like input.
        name: Label used in error messages (e.g. ``"Y"`` or ``"w"``).
        ndim: Required number of dimensions (1 or 2).

    Returns:
        A float64 array.  A new array is only allocated when the input
        is not already a float64 ndarray.

    Raises:
        TypeError: If *obj* is not a recognised array type or holds
            non-numeric data.
        ValueError: If the dimensionality does not match *ndim*.
    """
    try:
        arr = _to_numpy(obj)
    except TypeError as exc:
        raise TypeError(f"'{name}': {exc}") from None

    try:
        arr = np.asarray(arr, dtype=np.float64)
    except (TypeError, ValueError):
        raise TypeError(f"'{name}' must hold numeric values.") from None

    if arr.ndim != ndim:
        raise ValueError(
            f"'{name}' must be {ndim}-dimensional, got shape {arr.shape}."
        )
    return arr
