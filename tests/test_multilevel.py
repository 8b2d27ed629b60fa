"""Tests for the structured-variance multilevel model."""

import arviz as az
import numpy as np
import pandas as pd
import pytest

from mobility_tables.multilevel import (
    MULTILEVEL_COLUMNS,
    MultilevelConfig,
    fit_structured_variance,
    group_sd_curve,
    simulate_multilevel_data,
    summarize_variance_components,
)

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def fake_idata():
    """Posterior draws with known gamma values, no sampling needed."""
    rng = np.random.default_rng(0)
    shape = (2, 200)
    return az.from_dict(
        posterior={
            "alpha": rng.normal(1.0, 0.05, shape),
            "beta": rng.normal(0.5, 0.05, shape),
            "sigma_e": np.abs(rng.normal(0.5, 0.02, shape)),
            "gamma0": rng.normal(-0.5, 0.05, shape),
            "gamma1": rng.normal(0.8, 0.05, shape),
        }
    )


# ------------------------------------------------------------------ #
# Simulation
# ------------------------------------------------------------------ #


class TestSimulate:
    def test_shape_and_columns(self):
        data = simulate_multilevel_data(n_groups=10, n_per_group=5, seed=0)
        assert list(data.columns) == list(MULTILEVEL_COLUMNS)
        assert len(data) == 50
        assert data["group"].nunique() == 10

    def test_group_covariate_constant_within_group(self):
        data = simulate_multilevel_data(n_groups=8, n_per_group=4, seed=1)
        assert (data.groupby("group")["w"].nunique() == 1).all()

    def test_truth(self):
        data = simulate_multilevel_data(n_groups=6, gamma0=0.0, gamma1=0.0, seed=2)
        truth = data.attrs["truth"]
        np.testing.assert_allclose(truth["tau"], 1.0)
        assert truth["gamma1"] == 0.0

    def test_reproducible(self):
        a = simulate_multilevel_data(seed=5)
        b = simulate_multilevel_data(seed=5)
        pd.testing.assert_frame_equal(a, b)

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            ({"n_groups": 1}, "n_groups"),
            ({"n_per_group": 0}, "n_per_group"),
            ({"sigma_e": 0.0}, "sigma_e"),
        ],
    )
    def test_invalid(self, kwargs, match):
        with pytest.raises(ValueError, match=match):
            simulate_multilevel_data(**kwargs)


# ------------------------------------------------------------------ #
# Input validation (raised before any sampling)
# ------------------------------------------------------------------ #


class TestFitValidation:
    def test_missing_columns(self):
        with pytest.raises(ValueError, match="Missing required columns"):
            fit_structured_variance(pd.DataFrame({"group": [0, 1], "x": [0.0, 1.0]}))

    def test_non_finite(self):
        data = simulate_multilevel_data(n_groups=3, n_per_group=2, seed=0)
        data.loc[0, "y"] = np.nan
        with pytest.raises(ValueError, match="finite"):
            fit_structured_variance(data)

    def test_w_varies_within_group(self):
        data = simulate_multilevel_data(n_groups=3, n_per_group=2, seed=0)
        data.loc[0, "w"] += 1.0
        with pytest.raises(ValueError, match="constant within each group"):
            fit_structured_variance(data)

    def test_single_group(self):
        data = pd.DataFrame({"group": [0, 0], "x": [0.0, 1.0], "w": [0.5, 0.5], "y": [1.0, 2.0]})
        with pytest.raises(ValueError, match="two groups"):
            fit_structured_variance(data)


# ------------------------------------------------------------------ #
# Posterior summaries
# ------------------------------------------------------------------ #


class TestSummaries:
    def test_summary_rows(self, fake_idata):
        summary = summarize_variance_components(fake_idata, hdi_prob=0.9)
        assert list(summary.index) == ["alpha", "beta", "sigma_e", "gamma0", "gamma1"]
        assert "hdi_5%" in summary.columns
        assert summary.loc["gamma1", "mean"] == pytest.approx(0.8, abs=0.02)

    def test_bad_hdi_prob(self, fake_idata):
        with pytest.raises(ValueError, match="hdi_prob"):
            summarize_variance_components(fake_idata, hdi_prob=1.5)

    def test_group_sd_curve(self, fake_idata):
        curve = group_sd_curve(fake_idata, w_grid=[-1.0, 0.0, 1.0])
        assert list(curve.columns) == ["w", "mean", "hdi_low", "hdi_high"]
        np.testing.assert_allclose(curve["mean"], np.exp(-0.5 + 0.8 * curve["w"]), rtol=0.05)
        assert (curve["hdi_low"] <= curve["mean"]).all()
        assert (curve["mean"] <= curve["hdi_high"]).all()
        assert curve["mean"].is_monotonic_increasing

    def test_default_grid(self, fake_idata):
        assert len(group_sd_curve(fake_idata)) == 50


# ------------------------------------------------------------------ #
# NUTS (slow)
# ------------------------------------------------------------------ #


@pytest.mark.slow
class TestNUTS:
    def test_recovers_variance_slope(self):
        data = simulate_multilevel_data(n_groups=40, n_per_group=20, gamma1=1.0, seed=3)
        idata = fit_structured_variance(
            data, MultilevelConfig(draws=500, tune=500, num_chains=1), random_seed=1
        )
        assert "log_likelihood" in idata.groups()
        summary = summarize_variance_components(idata)
        assert summary.loc["gamma1", "mean"] > 0
        assert summary.loc["beta", "mean"] == pytest.approx(0.5, abs=0.1)
        curve = group_sd_curve(idata)
        assert curve["mean"].iloc[-1] > curve["mean"].iloc[0]
