"""Formatted ASCII table display utilities for mobility-table analyses.

Every ``print_*`` function writes one bordered, 80-column table to
stdout: a centred title between ``=`` rules, sections separated by
``-`` rules, and an optional Notes section for anything the reader
should not miss (non-converged fits, poorly mixed chains, empty cells).
"""

from __future__ import annotations

import math
import textwrap
from collections.abc import Hashable, Mapping
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from ._compat import TableLike
from .decomposition import margin_free_table
from .tables import DIMENSIONS, validate_table

if TYPE_CHECKING:
    from ._results import LassoPath, LoglinearFit, MobilityAnalysis
    from .decomposition import MarginDecomposition

W = 80


def _truncate(name: str, max_len: int) -> str:
    """Truncate *name* to *max_len*, appending ``'...'`` if needed."""
    if len(name) <= max_len:
        return name
    return name[: max_len - 3] + "..."


def _fmt(val: Any, spec: str = ".4f") -> str:
    """Format a number, rendering ``None`` and ``nan`` as ``'N/A'``."""
    if val is None:
        return "N/A"
    if isinstance(val, (float, np.floating)) and math.isnan(val):
        return "N/A"
    if isinstance(val, (bool, np.bool_)):
        return str(bool(val))
    if isinstance(val, (int, np.integer)):
        return str(int(val))
    return format(float(val), spec)


def _fmt_p(p: float) -> str:
    if p is None or (isinstance(p, float) and math.isnan(p)):
        return "N/A"
    return "< 0.001" if p < 0.001 else f"{p:.3f}"


def _wrap(text: str, width: int = W, indent: int = 2) -> str:
    """Word-wrap *text* to *width*, indenting continuation lines."""
    return textwrap.fill(
        text,
        width=width,
        initial_indent="",
        subsequent_indent=" " * indent,
    )


def _title(title: str) -> None:
    print("=" * W)
    for line in textwrap.wrap(title, width=W - 2):
        print(f"{line:^{W}}")
    print("=" * W)


def _notes(notes: list[str]) -> None:
    if not notes:
        return
    print("-" * W)
    print("Notes")
    print("-" * W)
    for note in notes:
        print(_wrap(f"  [!] {note}", width=W, indent=6))


def _join_levels(levels: list, max_len: int) -> str:
    return _truncate(", ".join(str(v) for v in levels), max_len)


# ------------------------------------------------------------------ #
# Table information
# ------------------------------------------------------------------ #


def print_table_info_table(
    table: TableLike,
    *,
    count: str = "freq",
    name: str | None = None,
    title: str = "Mobility Table Information",
) -> None:
    """Print the shape, sample sizes and sparsity of a mobility table.

    Args:
        table: Long-format mobility table.
        count: Name of the frequency column.
        name: Optional data set name shown in the first row.
        title: Title for the output table.
    """
    df = validate_table(table, count=count)
    lw = 20
    levels = {d: list(df[d].cat.categories) for d in DIMENSIONS}
    n_total = float(df[count].sum())
    n_zero = int((df[count] == 0).sum())
    notes: list[str] = []

    _title(title)

    if name:
        print(f"  {'Table:':<{lw}}{name}")
    shape = " × ".join(str(len(levels[d])) for d in DIMENSIONS)
    print(f"  {'Dimensions:':<{lw}}{shape}  (origin × destination × country)")
    print(f"  {'No. Cells:':<{lw}}{len(df)}")
    print(f"  {'Total N:':<{lw}}{n_total:,.0f}")
    print(f"  {'Zero Cells:':<{lw}}{n_zero}")

    print("-" * W)
    max_len = W - 2 - lw
    for d in DIMENSIONS:
        label = f"{d.capitalize()} Levels:"
        print(f"  {label:<{lw}}{_join_levels(levels[d], max_len)}")

    print("-" * W)
    print(f"  {'Country':<{lw}}{'N':>12}{'Diagonal %':>14}")
    for c in levels["country"]:
        layer = df[df["country"] == c]
        n_c = float(layer[count].sum())
        diag = float(layer.loc[layer["origin"].astype(str) == layer["destination"].astype(str), count].sum())
        share = 100.0 * diag / n_c if n_c > 0 else float("nan")
        print(f"  {_truncate(str(c), lw - 2):<{lw}}{n_c:>12,.0f}{_fmt(share, '.1f'):>14}")
        if n_c == 0:
            notes.append(f"Country {c!r} has no observations.")

    if n_zero:
        notes.append(
            f"{n_zero} of {len(df)} cells are empty.  Empty cells are fitted "
            "normally, but sparse layers make the saturated and Lasso "
            "models less stable."
        )
    _notes(notes)
    print("=" * W)
    print()


# ------------------------------------------------------------------ #
# Model comparison
# ------------------------------------------------------------------ #


def print_model_comparison_table(
    comparison: pd.DataFrame | MobilityAnalysis,
    *,
    title: str = "Model Comparison",
) -> None:
    """Print a goodness-of-fit comparison of fitted models.

    Args:
        comparison: Output of
            :func:`~mobility_tables.comparison.compare_models`, or a
            :class:`~mobility_tables._results.MobilityAnalysis`.
        title: Title for the output table.
    """
    if not isinstance(comparison, pd.DataFrame):
        comparison = comparison.comparison

    # ── Table geometry (W = 80 chars) ─────────────────────────── #
    #   Model 26 | k 5 | df 5 | G² 11 | p 9 | BIC 10 | Δ 7 | rG² 7
    mc = 26
    notes: list[str] = []

    _title(title)
    print(
        f"{'Model':<{mc}}{'k':>5}{'df':>5}{'G²':>11}{'p':>9}"
        f"{'BIC':>10}{'Δ %':>7}{'rG² %':>7}"
    )
    print("-" * W)
    for model, row in comparison.iterrows():
        print(
            f"{_truncate(str(model), mc - 1):<{mc}}"
            f"{int(row['n_params']):>5}{int(row['df']):>5}"
            f"{_fmt(row['deviance'], '.2f'):>11}{_fmt_p(row['p_value']):>9}"
            f"{_fmt(row['bic'], '.2f'):>10}{_fmt(row['dissimilarity'], '.2f'):>7}"
            f"{_fmt(row['rG2'], '.1f'):>7}"
        )
        if not bool(row["converged"]):
            notes.append(f"{model} did not converge; its statistics are unreliable.")

    print("-" * W)
    print(_wrap("  k = parameters, G² = deviance against the saturated model, "
                "BIC = G² − df·log N (negative favours the model), Δ = index of "
                "dissimilarity, rG² = % of the first model's G² explained.", indent=2))
    _notes(notes)
    print("=" * W)
    print()


# ------------------------------------------------------------------ #
# Margin-free decomposition
# ------------------------------------------------------------------ #


def print_decomposition_table(
    decomposition: MarginDecomposition,
    *,
    countries: list[Hashable] | None = None,
    model: str | None = None,
    title: str = "Margin-Free Log-Odds Ratios",
) -> None:
    """Print the margin-free association of a decomposition, one block per country.

    Args:
        decomposition: A :class:`~mobility_tables.decomposition.MarginDecomposition`.
        countries: Countries to show; defaults to all of them.
        model: Optional model name shown under the title.
        title: Title for the output table.
    """
    lw = 20
    origins = decomposition.levels["origin"]
    destinations = decomposition.levels["destination"]
    countries = list(decomposition.levels["country"]) if countries is None else countries
    rc = 10
    cw = max(7, (W - rc) // max(len(destinations), 1))

    _title(title)
    if model:
        print(f"  {'Model:':<{lw}}{model}")
    ref = decomposition.reference
    print(
        f"  {'Reference:':<{lw}}origin={ref.origin}, destination={ref.destination}, "
        f"country={ref.country}"
    )
    print(f"  {'Intercept:':<{lw}}{decomposition.intercept:.4f}")

    for c in countries:
        matrix = margin_free_table(decomposition, c)
        print("-" * W)
        print(f"Country: {c}   (rows = origin, columns = destination)")
        print("-" * W)
        print(f"{'':<{rc}}" + "".join(f"{_truncate(str(d), cw - 1):>{cw}}" for d in destinations))
        for o in origins:
            cells = "".join(f"{_fmt(v, '.3f'):>{cw}}" for v in matrix.loc[o].to_numpy())
            print(f"{_truncate(str(o), rc - 1):<{rc}}{cells}")

    print("=" * W)
    print()


# ------------------------------------------------------------------ #
# Lasso path
# ------------------------------------------------------------------ #


def print_lasso_table(
    lasso: LassoPath | LoglinearFit,
    *,
    title: str = "Lasso Cross-Validation",
) -> None:
    """Print the cross-validated penalty path of a Lasso fit.

    Args:
        lasso: A :class:`~mobility_tables._results.LassoPath`, or a
            Lasso :class:`~mobility_tables._results.LoglinearFit`
            carrying one in ``extra["path"]``.
        title: Title for the output table.
    """
    fit = None
    path = lasso
    if not hasattr(lasso, "alphas"):
        fit = lasso
        path = lasso.extra["path"]

    lw = 22
    notes: list[str] = []
    _title(title)
    print(f"  {'Folds:':<{lw}}{path.n_folds}")
    print(f"  {'Rule:':<{lw}}{path.rule}")
    print(f"  {'Alpha (min):':<{lw}}{path.alpha_min:.6g}")
    print(f"  {'Alpha (1se):':<{lw}}{path.alpha_1se:.6g}")
    print(f"  {'Selected Alpha:':<{lw}}{path.alpha:.6g}")
    if fit is not None:
        n_sel = len(fit.extra.get("selected_terms", []))
        print(f"  {'Selected Terms:':<{lw}}{n_sel}")
        print(f"  {'Parameters (k):':<{lw}}{fit.n_params}")

    # ── Path grid: alpha 16 | CV mean 18 | CV SE 16 | nonzero 14 | mark 16
    print("-" * W)
    print(f"{'alpha':>16}{'CV deviance':>18}{'SE':>16}{'Non-zero':>14}{'':<16}")
    print("-" * W)
    for a, m, s, k in zip(path.alphas, path.cv_mean, path.cv_se, path.n_nonzero):
        mark = []
        if np.isclose(a, path.alpha_min):
            mark.append("min")
        if np.isclose(a, path.alpha_1se):
            mark.append("1se")
        print(f"{a:>16.6g}{m:>18.6f}{s:>16.6f}{int(k):>14}  {'/'.join(mark):<14}")

    if np.isclose(path.alpha_min, path.alphas[-1]):
        notes.append(
            "The CV minimum is at the smallest alpha on the grid; "
            "consider a smaller alpha_min_ratio."
        )
    _notes(notes)
    print("=" * W)
    print()


# ------------------------------------------------------------------ #
# Multilevel variance components
# ------------------------------------------------------------------ #


def print_variance_components_table(
    summary: pd.DataFrame,
    *,
    truth: Mapping[str, float] | None = None,
    title: str = "Structured Variance Components",
) -> None:
    """Print a posterior summary of the multilevel model.

    Args:
        summary: Output of
            :func:`~mobility_tables.multilevel.summarize_variance_components`.
        truth: Optional generating values, shown in an extra column.
        title: Title for the output table.
    """
    hdi_cols = [c for c in summary.columns if str(c).startswith("hdi_")]
    lo_col, hi_col = (hdi_cols + [None, None])[:2]
    notes: list[str] = []

    # Param 14 | mean 11 | sd 11 | hdi lo 11 | hdi hi 11 | r_hat 9 | ess / truth 13
    last = "True" if truth is not None else "ESS bulk"
    _title(title)
    print(
        f"{'Parameter':<14}{'Mean':>11}{'SD':>11}"
        f"{(lo_col or 'HDI low'):>11}{(hi_col or 'HDI high'):>11}{'R-hat':>9}{last:>13}"
    )
    print("-" * W)
    for param, row in summary.iterrows():
        r_hat = row.get("r_hat", float("nan"))
        if truth is not None:
            tail = _fmt(truth.get(str(param)), ".4f")
        else:
            tail = _fmt(row.get("ess_bulk", float("nan")), ".0f")
        print(
            f"{_truncate(str(param), 13):<14}"
            f"{_fmt(row['mean']):>11}{_fmt(row['sd']):>11}"
            f"{_fmt(row[lo_col] if lo_col else None):>11}"
            f"{_fmt(row[hi_col] if hi_col else None):>11}"
            f"{_fmt(r_hat, '.3f'):>9}{tail:>13}"
        )
        if isinstance(r_hat, float) and not math.isnan(r_hat) and r_hat > 1.01:
            notes.append(f"R-hat for {param} is {r_hat:.3f}; the chains may not have mixed.")

    print("-" * W)
    print(_wrap("  log τ_j = gamma0 + gamma1 · w_j is the group-level SD model; "
                "sigma_e is the unit-level residual SD.", indent=2))
    _notes(notes)
    print("=" * W)
    print()
