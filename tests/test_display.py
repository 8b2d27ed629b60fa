"""Tests for the ASCII table printers."""

import numpy as np
import pandas as pd
import pytest

from mobility_tables._results import LassoPath
from mobility_tables.comparison import compare_models
from mobility_tables.decomposition import decompose_margins
from mobility_tables.display import (
    print_decomposition_table,
    print_lasso_table,
    print_model_comparison_table,
    print_table_info_table,
    print_variance_components_table,
)
from mobility_tables.models import (
    ConditionalIndependenceModel,
    ConstantAssociationModel,
    registered_models,
    resolve_model,
)


def _lines(capsys):
    return capsys.readouterr().out.splitlines()


@pytest.fixture()
def path():
    alphas = np.array([1.0, 0.1, 0.01, 0.001])
    return LassoPath(
        alphas=alphas,
        cv_mean=np.array([5.0, 2.0, 1.5, 1.6]),
        cv_se=np.array([0.3, 0.2, 0.2, 0.2]),
        n_nonzero=np.array([0, 3, 7, 10]),
        alpha_min=0.01,
        alpha_1se=0.1,
        rule="1se",
        n_folds=5,
    )


class TestTableInfo:
    def test_contents(self, small_table, capsys):
        print_table_info_table(small_table, name="Simulated")
        out = capsys.readouterr().out
        assert "Mobility Table Information" in out
        assert "Simulated" in out
        assert "4 × 4 × 3" in out
        assert "No. Cells:" in out and "48" in out
        assert "Notes" not in out

    def test_width(self, small_table, capsys):
        print_table_info_table(small_table)
        assert all(len(line) <= 80 for line in _lines(capsys))

    def test_zero_cells_noted(self, small_table, capsys):
        table = small_table.copy()
        table.loc[0, "freq"] = 0
        print_table_info_table(table)
        out = capsys.readouterr().out
        assert "[!] 1 of 48 cells are empty" in out


class TestModelComparison:
    def test_rows(self, small_table, capsys):
        fits = [
            ConditionalIndependenceModel().fit(small_table),
            ConstantAssociationModel().fit(small_table),
        ]
        print_model_comparison_table(compare_models(fits))
        out = capsys.readouterr().out
        assert "Model Comparison" in out
        assert "Conditional independence" in out
        assert "Constant association" in out
        assert all(len(line) <= 80 for line in out.splitlines())

    def test_non_converged_note(self, capsys):
        table = pd.DataFrame(
            {
                "n_params": [5],
                "df": [3],
                "deviance": [12.5],
                "p_value": [0.006],
                "aic": [40.0],
                "bic": [4.0],
                "dissimilarity": [2.5],
                "rG2": [0.0],
                "converged": [False],
            },
            index=pd.Index(["Toy"], name="model"),
        )
        print_model_comparison_table(table)
        out = capsys.readouterr().out
        assert "Toy did not converge" in out

    def test_registered_names_fit(self, capsys):
        names = [resolve_model(kind).name for kind in registered_models()]
        n = len(names)
        table = pd.DataFrame(
            {
                "n_params": [48] * n,
                "df": [120] * n,
                "deviance": [12345.67] * n,
                "p_value": [0.0001] * n,
                "aic": [-1.0] * n,
                "bic": [-12345.67] * n,
                "dissimilarity": [12.34] * n,
                "rG2": [100.0] * n,
                "converged": [True] * n,
            },
            index=pd.Index(names, name="model"),
        )
        print_model_comparison_table(table)
        lines = _lines(capsys)
        for name in names:
            assert any(line.startswith(name + " ") for line in lines)
        assert all(len(line) <= 80 for line in lines)


class TestDecomposition:
    def test_blocks_per_country(self, capsys):
        index = pd.MultiIndex.from_product(
            [["a", "b"], ["a", "b"], ["X", "Y"]], names=["origin", "destination", "country"]
        )
        preds = pd.Series(np.arange(8, dtype=float), index=index)
        print_decomposition_table(decompose_margins(preds), model="Toy")
        out = capsys.readouterr().out
        assert "Country: X" in out
        assert "Country: Y" in out
        assert "Model:" in out and "Toy" in out
        assert "origin=a, destination=a, country=X" in out


class TestLasso:
    def test_path_rows(self, path, capsys):
        print_lasso_table(path)
        out = capsys.readouterr().out
        assert "Lasso Cross-Validation" in out
        assert "min" in out and "1se" in out
        assert "Notes" not in out
        assert all(len(line) <= 80 for line in out.splitlines())

    def test_min_at_grid_edge(self, path, capsys):
        edge = LassoPath(
            alphas=path.alphas,
            cv_mean=np.array([5.0, 2.0, 1.5, 1.0]),
            cv_se=path.cv_se,
            n_nonzero=path.n_nonzero,
            alpha_min=0.001,
            alpha_1se=0.001,
            rule="min",
            n_folds=5,
        )
        print_lasso_table(edge)
        assert "smallest alpha" in capsys.readouterr().out


class TestVarianceComponents:
    def test_rows_and_rhat_note(self, capsys):
        summary = pd.DataFrame(
            {
                "mean": [1.0, 0.5],
                "sd": [0.1, 0.05],
                "hdi_3%": [0.8, 0.4],
                "hdi_97%": [1.2, 0.6],
                "ess_bulk": [800.0, 900.0],
                "r_hat": [1.00, 1.05],
            },
            index=["alpha", "gamma1"],
        )
        print_variance_components_table(summary)
        out = capsys.readouterr().out
        assert "hdi_3%" in out
        assert "alpha" in out and "gamma1" in out
        assert "R-hat for gamma1 is 1.050" in out

    def test_truth_column(self, capsys):
        summary = pd.DataFrame(
            {"mean": [0.7], "sd": [0.1], "hdi_3%": [0.5], "hdi_97%": [0.9], "r_hat": [1.0]},
            index=["gamma1"],
        )
        print_variance_components_table(summary, truth={"gamma1": 0.8})
        out = capsys.readouterr().out
        assert "True" in out
        assert "0.8000" in out
