"""Tests for the figure builders (Agg backend, see conftest)."""

import numpy as np
import pandas as pd
import pytest
from matplotlib.figure import Figure

from mobility_tables import _config
from mobility_tables._results import LassoPath
from mobility_tables.decomposition import decompose_models
from mobility_tables.models import ModelKind
from mobility_tables.plotting import (
    plot_group_sd_curve,
    plot_lasso_path,
    plot_margin_free_heatmaps,
)


@pytest.fixture()
def output_dir(tmp_path):
    _config.set_output_dir(tmp_path)
    yield tmp_path
    _config.set_output_dir(None)


@pytest.fixture()
def decompositions():
    rng = np.random.default_rng(1)
    index = pd.MultiIndex.from_product(
        [["a", "b", "c"], ["a", "b", "c"], ["X", "Y"]],
        names=["origin", "destination", "country"],
    )
    return decompose_models(
        {
            ModelKind.CONSTANT_ASSOCIATION: pd.Series(rng.normal(size=18), index=index),
            ModelKind.UNIDIFF: pd.Series(rng.normal(size=18), index=index),
        }
    )


class TestHeatmaps:
    def test_grid_shape(self, decompositions):
        fig = plot_margin_free_heatmaps(decompositions, annotate=True)
        assert isinstance(fig, Figure)
        # 2 models × 2 countries plus the colour bar
        assert len(fig.axes) == 5

    def test_bare_name_goes_to_output_dir(self, decompositions, output_dir):
        plot_margin_free_heatmaps(decompositions, "heatmaps.png")
        assert (output_dir / "heatmaps.png").is_file()

    def test_explicit_directory_kept(self, decompositions, tmp_path):
        target = tmp_path / "nested" / "maps.png"
        plot_margin_free_heatmaps(decompositions, target)
        assert target.is_file()

    def test_empty(self):
        with pytest.raises(ValueError, match="at least one"):
            plot_margin_free_heatmaps({})


class TestLassoPath:
    def test_saves(self, output_dir):
        path = LassoPath(
            alphas=np.geomspace(1.0, 1e-3, 8),
            cv_mean=np.linspace(3.0, 1.0, 8),
            cv_se=np.full(8, 0.1),
            n_nonzero=np.arange(8),
            alpha_min=1e-3,
            alpha_1se=np.geomspace(1.0, 1e-3, 8)[5],
            rule="1se",
            n_folds=5,
        )
        fig = plot_lasso_path(path, "path.png")
        assert isinstance(fig, Figure)
        assert (output_dir / "path.png").is_file()


class TestGroupSD:
    def test_curve(self, output_dir):
        w = np.linspace(-2, 2, 20)
        curve = pd.DataFrame(
            {"w": w, "mean": np.exp(w), "hdi_low": np.exp(w) * 0.8, "hdi_high": np.exp(w) * 1.2}
        )
        fig = plot_group_sd_curve(curve, "sd.png", truth=(0.0, 1.0))
        assert len(fig.axes[0].lines) == 2
        assert (output_dir / "sd.png").is_file()

    def test_missing_columns(self):
        with pytest.raises(ValueError, match="missing column"):
            plot_group_sd_curve(pd.DataFrame({"w": [0.0]}))
