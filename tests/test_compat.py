"""Tests for the table boundary conversion."""

import pandas as pd
import pytest

from mobility_tables._compat import ensure_frame
from mobility_tables.tables import validate_table


class TestEnsureFrame:
    def test_pandas_passthrough(self):
        df = pd.DataFrame({"a": [1, 2]})
        assert ensure_frame(df) is df

    def test_rejects_other_types(self):
        with pytest.raises(TypeError, match="'table' must be"):
            ensure_frame([[1, 2], [3, 4]])

    def test_custom_name_in_message(self):
        with pytest.raises(TypeError, match="'predictions' must be"):
            ensure_frame({"a": [1]}, name="predictions")


class TestPolars:
    def test_polars_dataframe_and_lazyframe(self, small_table):
        pl = pytest.importorskip("polars")
        pytest.importorskip("pyarrow")
        plain = small_table.astype({"origin": str, "destination": str, "country": str})
        eager = pl.from_pandas(plain)
        for obj in (eager, eager.lazy()):
            out = validate_table(obj)
            assert isinstance(out, pd.DataFrame)
            assert out["freq"].sum() == pytest.approx(small_table["freq"].sum())
