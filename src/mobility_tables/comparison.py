"""Goodness-of-fit statistics and model comparison for mobility tables.

Cell-level statistics
~~~~~~~~~~~~~~~~~~~~~
For observed counts y and fitted counts μ̂:

* Deviance (likelihood-ratio G²):
  G² = 2 Σ [y log(y/μ̂) − (y − μ̂)], with 0·log(0/μ̂) = 0.
* Pearson X² = Σ (y − μ̂)² / μ̂.
* Index of dissimilarity Δ = Σ |y − μ̂| / (2N) × 100, the percentage
  of respondents that would have to move cells for the fitted table
  to match the observed one.

Model-level comparison
~~~~~~~~~~~~~~~~~~~~~~
:func:`compare_models` lines fitted models up in one table with G², df,
the χ² p-value of G², AIC, Raftery's BIC (G² − df·log N; negative
values favour the model over the saturated one), Δ and rG², the
percentage of the first model's G² accounted for by each model.
:func:`likelihood_ratio_test` compares two nested models.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
from scipy import stats

if TYPE_CHECKING:
    from ._results import LoglinearFit

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# Cell-level statistics
# ------------------------------------------------------------------ #


def poisson_deviance(observed: np.ndarray, fitted: np.ndarray) -> float:
    """Poisson deviance G² of *fitted* against *observed*."""
    y = np.asarray(observed, dtype=float)
    mu = np.asarray(fitted, dtype=float)
    # 0·log(0/μ) = 0 by continuity.
    with np.errstate(divide="ignore", invalid="ignore"):
        term = np.where(y > 0, y * np.log(y / mu), 0.0)
    return float(2.0 * np.sum(term - (y - mu)))


def pearson_chi2(observed: np.ndarray, fitted: np.ndarray) -> float:
    """Pearson X² of *fitted* against *observed*."""
    y = np.asarray(observed, dtype=float)
    mu = np.asarray(fitted, dtype=float)
    return float(np.sum((y - mu) ** 2 / mu))


def poisson_loglik(observed: np.ndarray, fitted: np.ndarray) -> float:
    """Poisson log-likelihood Σ log P(y | μ̂)."""
    y = np.asarray(observed, dtype=float)
    mu = np.asarray(fitted, dtype=float)
    return float(np.sum(stats.poisson.logpmf(y, mu)))


def dissimilarity_index(observed: np.ndarray, fitted: np.ndarray) -> float:
    """Index of dissimilarity Δ, in percent."""
    y = np.asarray(observed, dtype=float)
    mu = np.asarray(fitted, dtype=float)
    total = y.sum()
    if total <= 0:
        return float("nan")
    return float(np.sum(np.abs(y - mu)) / (2.0 * total) * 100.0)


# ------------------------------------------------------------------ #
# Model comparison
# ------------------------------------------------------------------ #


def compare_models(
    fits: Sequence[LoglinearFit] | Mapping[Any, LoglinearFit],
) -> pd.DataFrame:
    """Build a goodness-of-fit comparison table.

    Args:
        fits: Fitted models, as a sequence or as a mapping whose values
            are fits.  Row order follows the input order; the first
            model is the baseline for rG².

    Returns:
        DataFrame indexed by model name with columns ``n_params``,
        ``df``, ``deviance``, ``p_value``, ``aic``, ``bic``,
        ``dissimilarity``, ``rG2`` and ``converged``.

    Raises:
        ValueError: If no fits are given or the fits were made on
            tables with different numbers of cells.
    """
    items = list(fits.values()) if isinstance(fits, Mapping) else list(fits)
    if not items:
        raise ValueError("compare_models() needs at least one fitted model.")
    n_cells = {f.n_cells for f in items}
    if len(n_cells) > 1:
        raise ValueError(
            f"Fits come from tables of different sizes: {sorted(n_cells)} cells."
        )

    baseline = items[0].deviance
    rows = []
    for f in items:
        p_value = float(stats.chi2.sf(f.deviance, f.df_resid)) if f.df_resid > 0 else float("nan")
        rg2 = (baseline - f.deviance) / baseline * 100.0 if baseline > 0 else float("nan")
        rows.append(
            {
                "model": f.model,
                "n_params": f.n_params,
                "df": f.df_resid,
                "deviance": f.deviance,
                "p_value": p_value,
                "aic": f.aic,
                "bic": f.bic,
                "dissimilarity": f.dissimilarity,
                "rG2": rg2,
                "converged": f.converged,
            }
        )
    table = pd.DataFrame(rows).set_index("model")
    logger.debug("Compared %d models.", len(table))
    return table


def likelihood_ratio_test(restricted: LoglinearFit, full: LoglinearFit) -> dict[str, float]:
    """Likelihood-ratio test of a restricted model against a fuller one.

    The statistic is the difference in deviance, referred to a χ²
    distribution with the difference in parameter count as degrees of
    freedom.  Nesting is the caller's responsibility; only the
    parameter ordering is checked.

    Returns:
        ``{"statistic": ..., "df": ..., "p_value": ...}``.

    Raises:
        ValueError: If the fits come from different tables or
            *restricted* does not have fewer parameters than *full*.
    """
    if restricted.n_cells != full.n_cells:
        raise ValueError("Both fits must come from the same table.")
    df = full.n_params - restricted.n_params
    if df <= 0:
        raise ValueError(
            f"{restricted.model!r} ({restricted.n_params} parameters) is not "
            f"more restricted than {full.model!r} ({full.n_params} parameters)."
        )
    statistic = restricted.deviance - full.deviance
    p_value = float(stats.chi2.sf(max(statistic, 0.0), df))
    return {"statistic": float(statistic), "df": float(df), "p_value": p_value}
