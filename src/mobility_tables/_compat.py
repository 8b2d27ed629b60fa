"""Boundary conversion for contingency tables.

The modelling code builds its design matrices from pandas categoricals,
so every public entry point that takes a table funnels it through
:func:`ensure_frame`.  Polars frames are accepted as a convenience and
converted once at the boundary; Polars ``Enum`` / ``Categorical``
columns arrive as pandas categoricals and keep their level order.

Polars is **not** a required dependency.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    TableLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    TableLike: TypeAlias = pd.DataFrame

try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def ensure_frame(obj: TableLike, *, name: str = "table") -> pd.DataFrame:
    """Return *obj* as a :class:`pandas.DataFrame`.

    Args:
        obj: pandas DataFrame, Polars DataFrame or Polars LazyFrame.
        name: Label used in error messages.

    Raises:
        TypeError: If *obj* is none of the accepted types.
    """
    if isinstance(obj, pd.DataFrame):
        return obj
    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            obj = obj.collect()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()
    accepted = "a pandas DataFrame" + (
        " or Polars DataFrame/LazyFrame" if _HAS_POLARS else ""
    )
    raise TypeError(f"'{name}' must be {accepted}, got {type(obj).__name__}.")
