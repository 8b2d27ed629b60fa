"""Figures for margin-free association, Lasso paths and group-SD curves.

Every function returns the :class:`matplotlib.figure.Figure` it drew.
When *out_path* is given the figure is also written to disk and closed;
a bare file name is placed under
:func:`~mobility_tables._config.get_output_dir`, any path with a
directory component is used as is.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.colors import TwoSlopeNorm
from matplotlib.figure import Figure

from ._config import get_output_dir
from ._results import LassoPath
from .decomposition import MarginDecomposition, margin_free_table

logger = logging.getLogger(__name__)


# ----------------------- small utility ---------------------------------------
def _resolve_out_path(out_path: str | Path) -> Path:
    path = Path(out_path)
    if path.parent == Path("."):
        path = get_output_dir() / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _finish(fig: Figure, out_path: str | Path | None, **savefig_kwargs: Any) -> Figure:
    if out_path is not None:
        path = _resolve_out_path(out_path)
        fig.savefig(path, **savefig_kwargs)
        plt.close(fig)
        logger.info("Wrote %s", path)
    return fig


def _label(key: Any) -> str:
    return str(getattr(key, "value", key)).replace("_", " ")


# ----------------------- margin-free heatmaps --------------------------------
def plot_margin_free_heatmaps(
    decompositions: Mapping[Any, MarginDecomposition],
    out_path: str | Path | None = None,
    *,
    cmap: str = "RdBu_r",
    annotate: bool = False,
) -> Figure:
    """Grid of origin × destination heatmaps of the margin-free association.

    Rows are models (in mapping order), columns are countries.  All
    panels share one diverging colour scale centred on zero, so colours
    are comparable across models and countries.

    Args:
        decompositions: Model tag (or name) to decomposition; all must
            share the same levels.
        out_path: Optional PNG destination.
        cmap: Diverging matplotlib colormap.
        annotate: Write the value into each cell.
    """
    if not decompositions:
        raise ValueError("plot_margin_free_heatmaps() needs at least one decomposition.")
    items = list(decompositions.items())
    first = items[0][1]
    countries = first.levels["country"]
    origins = first.levels["origin"]
    destinations = first.levels["destination"]

    vmax = max(float(np.nanmax(np.abs(d.margin_free.to_numpy()))) for _, d in items)
    vmax = vmax if vmax > 0 else 1.0
    norm = TwoSlopeNorm(vmin=-vmax, vcenter=0.0, vmax=vmax)

    n_rows, n_cols = len(items), len(countries)
    fig, axes = plt.subplots(
        n_rows,
        n_cols,
        figsize=(2.6 * n_cols + 1.2, 2.4 * n_rows + 0.6),
        squeeze=False,
        sharex=True,
        sharey=True,
    )
    image = None
    for i, (key, dec) in enumerate(items):
        for j, country in enumerate(countries):
            ax = axes[i, j]
            matrix = margin_free_table(dec, country).to_numpy(dtype=float)
            image = ax.imshow(matrix, cmap=cmap, norm=norm, aspect="equal")
            if annotate:
                for (r, c), v in np.ndenumerate(matrix):
                    ax.text(c, r, f"{v:.1f}", ha="center", va="center", fontsize=6)
            if i == 0:
                ax.set_title(str(country), fontsize=10)
            if j == 0:
                ax.set_ylabel(f"{_label(key)}\norigin", fontsize=8)
            if i == n_rows - 1:
                ax.set_xlabel("destination", fontsize=8)
            ax.set_xticks(range(len(destinations)))
            ax.set_xticklabels([str(d) for d in destinations], rotation=90, fontsize=6)
            ax.set_yticks(range(len(origins)))
            ax.set_yticklabels([str(o) for o in origins], fontsize=6)

    cbar = fig.colorbar(image, ax=axes.ravel().tolist(), shrink=0.8)
    cbar.set_label("margin-free log-odds ratio")
    return _finish(fig, out_path, dpi=150, bbox_inches="tight")


# ----------------------- lasso path ------------------------------------------
def plot_lasso_path(path: LassoPath, out_path: str | Path | None = None) -> Figure:
    """CV deviance ± 1 SE against log α, with the α_min and α_1se markers."""
    log_a = np.log10(path.alphas)
    fig, ax = plt.subplots(figsize=(6.0, 3.8))
    ax.errorbar(
        log_a,
        path.cv_mean,
        yerr=path.cv_se,
        fmt="o",
        ms=3,
        color="tab:red",
        ecolor="0.6",
        capsize=2,
    )
    ax.axvline(np.log10(path.alpha_min), ls="--", color="k", lw=0.8, label=r"$\alpha_{min}$")
    ax.axvline(np.log10(path.alpha_1se), ls=":", color="k", lw=0.8, label=r"$\alpha_{1se}$")
    ax.set_xlabel(r"$\log_{10}\alpha$")
    ax.set_ylabel("mean Poisson deviance (CV)")

    top = ax.secondary_xaxis("top")
    step = max(1, len(log_a) // 6)
    top.set_xticks(log_a[::step])
    top.set_xticklabels([str(int(k)) for k in path.n_nonzero[::step]])
    top.set_xlabel("non-zero terms")

    ax.legend(frameon=False, fontsize=8)
    fig.tight_layout()
    return _finish(fig, out_path, dpi=150)


# ----------------------- group SD curve --------------------------------------
def plot_group_sd_curve(
    curve: pd.DataFrame,
    out_path: str | Path | None = None,
    *,
    truth: tuple[float, float] | None = None,
) -> Figure:
    """Posterior group SD against the group covariate.

    Args:
        curve: Output of :func:`~mobility_tables.multilevel.group_sd_curve`.
        out_path: Optional PNG destination.
        truth: Optional ``(gamma0, gamma1)`` whose curve is overlaid.
    """
    missing = [c for c in ("w", "mean", "hdi_low", "hdi_high") if c not in curve.columns]
    if missing:
        raise ValueError(f"curve is missing column(s): {missing}.")
    w = curve["w"].to_numpy(dtype=float)
    fig, ax = plt.subplots(figsize=(5.5, 3.6))
    ax.fill_between(w, curve["hdi_low"], curve["hdi_high"], color="tab:blue", alpha=0.25, label="HDI")
    ax.plot(w, curve["mean"], color="tab:blue", lw=1.5, label="posterior mean")
    if truth is not None:
        g0, g1 = truth
        ax.plot(w, np.exp(g0 + g1 * w), color="k", ls="--", lw=1.0, label="true")
    ax.set_xlabel("group covariate w")
    ax.set_ylabel(r"group SD $\tau(w)$")
    ax.legend(frameon=False, fontsize=8)
    fig.tight_layout()
    return _finish(fig, out_path, dpi=150)
