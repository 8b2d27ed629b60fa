"""Shared fixtures for the mobility_tables test suite."""

import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from mobility_tables.tables import simulate_mobility_table  # noqa: E402


@pytest.fixture(scope="session")
def small_table():
    """4 classes × 3 countries, enough counts for stable fits."""
    return simulate_mobility_table(
        classes=["A", "B", "C", "D"],
        countries=["X", "Y", "Z"],
        n_per_country=4000,
        seed=7,
    )


@pytest.fixture(scope="session")
def unidiff_table():
    """Large 5 × 5 × 3 table with known layer scores [0, -0.25, -0.5]."""
    return simulate_mobility_table(
        classes=["A", "B", "C", "D", "E"],
        countries=["X", "Y", "Z"],
        n_per_country=20000,
        layer_scores=[0.0, -0.25, -0.5],
        inheritance=1.5,
        seed=11,
        return_truth=True,
    )
