"""Tests for the margin-free decomposition of log predictions."""

import itertools

import numpy as np
import pandas as pd
import pytest

from mobility_tables.decomposition import (
    MarginDecomposition,
    ReferenceLevels,
    decompose_margins,
    decompose_models,
    margin_free_table,
)
from mobility_tables.models import ModelKind

NAMES = ["origin", "destination", "country"]

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


def _series(values, levels):
    index = pd.MultiIndex.from_product(levels, names=NAMES)
    return pd.Series(values, index=index, dtype=float)


@pytest.fixture()
def worked_example():
    """2 × 2 × 2 table with reference (r, r, r), see the hand calculation below."""
    levels = [["r", "A"], ["r", "B"], ["r", "Y"]]
    values = {
        ("r", "r", "r"): 0.0,
        ("A", "r", "r"): 1.0,
        ("r", "B", "r"): 2.0,
        ("r", "r", "Y"): 3.0,
        ("A", "r", "Y"): 5.0,
        ("r", "B", "Y"): 6.0,
    }
    index = pd.MultiIndex.from_product(levels, names=NAMES)
    return pd.Series([values.get(k, 0.0) for k in index], index=index)


@pytest.fixture()
def random_predictions():
    rng = np.random.default_rng(0)
    levels = [["o1", "o2", "o3"], ["d1", "d2", "d3", "d4"], ["c1", "c2"]]
    return _series(rng.normal(size=3 * 4 * 2), levels)


# ------------------------------------------------------------------ #
# Worked example
# ------------------------------------------------------------------ #


class TestWorkedExample:
    def test_components(self, worked_example):
        dec = decompose_margins(worked_example)
        assert dec.reference == ReferenceLevels("r", "r", "r")
        assert dec.intercept == 0.0
        assert dec.margin_origin["A"] == pytest.approx(1.0)
        assert dec.margin_destination["B"] == pytest.approx(2.0)
        assert dec.margin_country["Y"] == pytest.approx(3.0)
        assert dec.margin_country_origin[("Y", "A")] == pytest.approx(1.0)
        assert dec.margin_country_destination[("Y", "B")] == pytest.approx(1.0)

    def test_margin_free(self, worked_example):
        dec = decompose_margins(worked_example)
        assert dec.margin_free[("A", "B", "Y")] == pytest.approx(-8.0)
        # In the reference country only the one-way margins apply.
        assert dec.margin_free[("A", "B", "r")] == pytest.approx(-3.0)
        assert np.allclose(dec.margin_free.xs("r", level="origin"), 0.0)
        assert np.allclose(dec.margin_free.xs("r", level="destination"), 0.0)

    def test_margin_free_table(self, worked_example):
        dec = decompose_margins(worked_example)
        table = margin_free_table(dec, "Y")
        assert list(table.index) == ["r", "A"]
        assert list(table.columns) == ["r", "B"]
        assert table.loc["A", "B"] == pytest.approx(-8.0)

    def test_unknown_country(self, worked_example):
        dec = decompose_margins(worked_example)
        with pytest.raises(ValueError, match="Unknown country"):
            margin_free_table(dec, "Z")


# ------------------------------------------------------------------ #
# Invariants
# ------------------------------------------------------------------ #


class TestInvariants:
    @pytest.mark.parametrize(
        "reference",
        list(itertools.product(["o1", "o3"], ["d1", "d4"], ["c1", "c2"])),
    )
    def test_reference_cell_is_zero(self, random_predictions, reference):
        dec = decompose_margins(random_predictions, reference)
        assert dec.margin_free[reference] == pytest.approx(0.0, abs=1e-12)

    def test_boundary_zeros(self, random_predictions):
        dec = decompose_margins(random_predictions, {"origin": "o2", "country": "c2"})
        r_o, r_d, r_c = dec.reference.as_tuple()
        assert (r_o, r_d, r_c) == ("o2", "d1", "c2")
        co, cd = dec.margin_country_origin, dec.margin_country_destination
        assert np.all(co.xs(r_c, level="country") == 0.0)
        assert np.all(co.xs(r_o, level="origin") == 0.0)
        assert np.all(cd.xs(r_c, level="country") == 0.0)
        assert np.all(cd.xs(r_d, level="destination") == 0.0)

    def test_margin_free_vanishes_on_reference_rows(self, random_predictions):
        dec = decompose_margins(random_predictions)
        free = dec.margin_free
        assert np.allclose(free.xs("o1", level="origin"), 0.0)
        assert np.allclose(free.xs("d1", level="destination"), 0.0)

    def test_round_trip(self, random_predictions):
        dec = decompose_margins(random_predictions)
        back = dec.reconstruct()
        assert np.max(np.abs(back.to_numpy() - dec.predictions.to_numpy())) < 1e-9

    def test_is_log_odds_ratio(self, random_predictions):
        dec = decompose_margins(random_predictions)
        eta = random_predictions
        o, d, c = "o3", "d2", "c2"
        lor = eta[(o, d, c)] - eta[(o, "d1", c)] - eta[("o1", d, c)] + eta[("o1", "d1", c)]
        assert dec.margin_free[(o, d, c)] == pytest.approx(lor)

    def test_pure(self, random_predictions):
        first = decompose_margins(random_predictions).margin_free.copy()
        decompose_margins(random_predictions, ("o2", "d2", "c2"))
        again = decompose_margins(random_predictions).margin_free
        pd.testing.assert_series_equal(first, again)

    def test_to_frame_columns(self, random_predictions):
        frame = decompose_margins(random_predictions).to_frame()
        assert list(frame.columns) == [
            "prediction",
            "intercept",
            "margin_country",
            "margin_origin",
            "margin_destination",
            "margin_country_origin",
            "margin_country_destination",
            "margin_free",
        ]
        assert len(frame) == 24

    def test_shape_and_to_dict(self, random_predictions):
        dec = decompose_margins(random_predictions)
        assert dec.shape == (3, 4, 2)
        d = dec.to_dict()
        assert d["reference"] == {"origin": "o1", "destination": "d1", "country": "c1"}
        assert isinstance(d["margin_free"], list)


# ------------------------------------------------------------------ #
# Input handling
# ------------------------------------------------------------------ #


class TestInputs:
    def test_accepts_long_dataframe(self, random_predictions):
        frame = random_predictions.rename("eta").reset_index()
        dec = decompose_margins(frame, value="eta")
        pd.testing.assert_series_equal(
            dec.margin_free, decompose_margins(random_predictions).margin_free
        )

    def test_dataframe_needs_value(self, random_predictions):
        frame = random_predictions.rename("eta").reset_index()
        with pytest.raises(ValueError, match="value column"):
            decompose_margins(frame)

    def test_reordered_index_levels(self, random_predictions):
        shuffled = random_predictions.reorder_levels(["country", "origin", "destination"])
        dec = decompose_margins(shuffled)
        assert dec.margin_free.index.names == NAMES

    def test_wrong_index_names(self, random_predictions):
        bad = random_predictions.copy()
        bad.index = bad.index.set_names(["a", "b", "c"])
        with pytest.raises(ValueError, match="must be named"):
            decompose_margins(bad)

    def test_incomplete(self, random_predictions):
        with pytest.raises(ValueError, match="incomplete"):
            decompose_margins(random_predictions.iloc[1:])

    def test_non_finite(self, random_predictions):
        bad = random_predictions.copy()
        bad.iloc[3] = np.inf
        with pytest.raises(ValueError, match="non-finite"):
            decompose_margins(bad)

    def test_unknown_reference_level(self, random_predictions):
        with pytest.raises(ValueError, match="not one of the levels"):
            decompose_margins(random_predictions, ("o1", "d1", "nowhere"))

    def test_unknown_reference_dimension(self, random_predictions):
        with pytest.raises(ValueError, match="Unknown reference dimension"):
            decompose_margins(random_predictions, {"year": 1990})

    def test_bad_reference_type(self, random_predictions):
        with pytest.raises(TypeError):
            decompose_margins(random_predictions, ["o1", "d1", "c1"])


# ------------------------------------------------------------------ #
# decompose_models
# ------------------------------------------------------------------ #


class TestDecomposeModels:
    def test_shared_shape_and_reference(self, random_predictions):
        other = random_predictions * 0.5 + 1.0
        out = decompose_models(
            {ModelKind.CONSTANT_ASSOCIATION: random_predictions, ModelKind.UNIDIFF: other}
        )
        assert list(out) == [ModelKind.CONSTANT_ASSOCIATION, ModelKind.UNIDIFF]
        a, b = out.values()
        assert isinstance(a, MarginDecomposition)
        assert a.shape == b.shape
        assert a.reference == b.reference
        assert a.to_frame().index.equals(b.to_frame().index)
        # Scaling every prediction scales the association.
        assert np.allclose(b.margin_free, 0.5 * a.margin_free)

    def test_row_order_follows_first_model(self, random_predictions):
        reordered = random_predictions.iloc[::-1]
        out = decompose_models({"a": random_predictions, "b": reordered})
        a, b = out["a"], out["b"]
        assert a.levels == b.levels
        assert a.margin_free.index.equals(b.margin_free.index)
        for country in a.levels["country"]:
            pd.testing.assert_frame_equal(
                margin_free_table(a, country), margin_free_table(b, country)
            )

    def test_level_mismatch(self, random_predictions):
        levels = [["o1", "o2", "oX"], ["d1", "d2", "d3", "d4"], ["c1", "c2"]]
        other = _series(np.zeros(24), levels)
        with pytest.raises(ValueError, match="origin levels"):
            decompose_models({"a": random_predictions, "b": other})
