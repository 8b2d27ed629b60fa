"""Tests for the analyze_mobility_table() pipeline."""

import numpy as np
import pytest

from mobility_tables import analyze_mobility_table
from mobility_tables._results import MobilityAnalysis
from mobility_tables.analysis import DEFAULT_MODELS
from mobility_tables.decomposition import ReferenceLevels
from mobility_tables.models import ModelKind, UnidiffModel


@pytest.fixture(scope="module")
def analysis(small_table):
    return analyze_mobility_table(small_table)


class TestAnalyze:
    def test_result(self, analysis):
        assert isinstance(analysis, MobilityAnalysis)
        assert list(analysis.fits) == list(DEFAULT_MODELS)
        assert list(analysis.decompositions) == list(DEFAULT_MODELS)
        assert list(analysis.comparison.index) == [f.model for f in analysis.fits.values()]

    def test_default_reference(self, analysis):
        assert analysis.reference == ReferenceLevels("A", "A", "X")
        for dec in analysis.decompositions.values():
            assert dec.reference == analysis.reference

    def test_decompositions_share_shape(self, analysis):
        shapes = {dec.shape for dec in analysis.decompositions.values()}
        assert shapes == {(4, 4, 3)}

    def test_conditional_independence_has_no_association(self, analysis):
        dec = analysis.decompositions[ModelKind.CONDITIONAL_INDEPENDENCE]
        assert np.allclose(dec.margin_free, 0.0, atol=1e-6)

    def test_constant_association_is_common(self, analysis):
        dec = analysis.decompositions[ModelKind.CONSTANT_ASSOCIATION]
        layers = [dec.margin_free.xs(c, level="country").to_numpy() for c in ("X", "Y", "Z")]
        assert np.allclose(layers[0], layers[1], atol=1e-6)
        assert np.allclose(layers[0], layers[2], atol=1e-6)

    def test_unidiff_layers_are_scaled(self, analysis):
        fit = analysis.fits[ModelKind.UNIDIFF]
        dec = analysis.decompositions[ModelKind.UNIDIFF]
        scale = fit.extra["layer_scale"]
        base = dec.margin_free.xs("X", level="country").to_numpy()
        other = dec.margin_free.xs("Z", level="country").to_numpy()
        assert np.allclose(other, scale["Z"] * base, atol=1e-5)

    def test_custom_reference_and_models(self, small_table):
        result = analyze_mobility_table(
            small_table,
            models=["constant_association", UnidiffModel(max_iter=200)],
            reference={"country": "Z"},
        )
        assert list(result.fits) == [ModelKind.CONSTANT_ASSOCIATION, ModelKind.UNIDIFF]
        assert result.reference.country == "Z"
        dec = result.decompositions[ModelKind.UNIDIFF]
        assert dec.margin_free[("A", "A", "Z")] == 0.0

    def test_to_dict(self, analysis):
        d = analysis.to_dict()
        assert "decompositions" not in d
        assert d["reference"] == {"origin": "A", "destination": "A", "country": "X"}
        assert set(d["fits"]) == {k.value for k in DEFAULT_MODELS}

    def test_empty_models(self, small_table):
        with pytest.raises(ValueError, match="At least one model"):
            analyze_mobility_table(small_table, models=[])

    def test_duplicate_model(self, small_table):
        with pytest.raises(ValueError, match="more than once"):
            analyze_mobility_table(small_table, models=["saturated", ModelKind.SATURATED])

    def test_bad_reference(self, small_table):
        with pytest.raises(ValueError, match="not one of the levels"):
            analyze_mobility_table(small_table, models=["saturated"], reference=("A", "A", "Q"))
