"""Lasso-regularised log-linear model with a cross-validated penalty.

Rather than choosing between a handful of hand-specified association
structures, the Lasso model starts from the saturated design and lets
an L1 penalty decide which origin × destination and three-way
(origin × destination × country) interaction terms survive.  The
country × origin and country × destination margins are never
penalised, so the fitted margins always match the observed ones and
the penalty acts only on the association.

Objective
~~~~~~~~~
For cells i = 1..n with counts y_i, unpenalised columns X_u and
penalised columns X_p::

    minimise  −(1/n) Σ [y_i η_i − exp(η_i)]  +  α ‖b_p‖₁
    η = X_u b_u + X_p b_p

Fitting
~~~~~~~
The same scheme glmnet uses: an outer IRLS loop builds the working
response z = η + (y − μ)/μ with weights w = μ, and an inner weighted
Lasso solves the penalised least-squares problem.  The unpenalised
block is removed from the inner problem by weighted partialling out
(Frisch–Waugh–Lovell): z and X_p are residualised on X_u, the Lasso is
solved for b_p on the residuals, and b_u is recovered from the
auxiliary regression coefficients.  The inner solver is
scikit-learn's coordinate-descent ``Lasso``, whose weighted objective
is scaled by Σw rather than n; the penalty is rescaled accordingly.

Penalty selection
~~~~~~~~~~~~~~~~~
α runs over a geometric grid from α_max (the smallest penalty that
zeroes every penalised coefficient, ‖X_pᵀ(y − μ₀)‖∞ / n at the
unpenalised fit μ₀) down to ``alpha_min_ratio · α_max``.  Cells are
split into K folds; each fold's path is fitted on the remaining cells
with warm starts and scored by mean Poisson deviance on the held-out
cells.  ``rule="min"`` picks the α with the lowest mean CV deviance,
``rule="1se"`` the largest α within one standard error of it.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
import statsmodels.api as sm
from joblib import Parallel, delayed
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import Lasso
from sklearn.metrics import mean_poisson_deviance
from sklearn.model_selection import KFold

from ._compat import TableLike
from ._config import resolve_seed
from ._results import LassoPath, LoglinearFit
from .comparison import poisson_deviance
from .models import (
    ASSOCIATION_TERM,
    MARGIN_TERMS,
    THREE_WAY_TERM,
    ModelKind,
    design_matrix,
    make_fit,
    register_model,
    term_block,
)
from .tables import validate_table

logger = logging.getLogger(__name__)

_VALID_RULES = ("min", "1se")

# ------------------------------------------------------------------ #
# Design
# ------------------------------------------------------------------ #


def lasso_design(table: pd.DataFrame) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Split the saturated design into unpenalised and penalised blocks.

    Args:
        table: A validated mobility table.

    Returns:
        ``(X_u, X_p)``: intercept plus margin terms, and the
        origin × destination plus three-way interaction dummies.
    """
    X_u = design_matrix(table, MARGIN_TERMS)
    X_p = pd.concat(
        [term_block(table, ASSOCIATION_TERM), term_block(table, THREE_WAY_TERM)], axis=1
    )
    return X_u, X_p


# ------------------------------------------------------------------ #
# Penalised IRLS
# ------------------------------------------------------------------ #


def _unpenalized_start(y: np.ndarray, X_u: np.ndarray) -> np.ndarray:
    res = sm.GLM(y, X_u, family=sm.families.Poisson()).fit(maxiter=100)
    return np.asarray(res.params)


def alpha_max(y: np.ndarray, X_u: np.ndarray, X_p: np.ndarray) -> float:
    """Smallest penalty at which every penalised coefficient is zero."""
    mu0 = np.exp(X_u @ _unpenalized_start(y, X_u))
    return float(np.max(np.abs(X_p.T @ (y - mu0))) / len(y))


def _weighted_partial_out(
    w: np.ndarray, X_u: np.ndarray, targets: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """Weighted least-squares residuals of *targets* on *X_u*, plus the coefficients."""
    sw = np.sqrt(w)[:, None]
    coef = np.linalg.lstsq(sw * X_u, sw * targets, rcond=None)[0]
    return targets - X_u @ coef, coef


def fit_penalized_poisson(
    y: np.ndarray,
    X_u: np.ndarray,
    X_p: np.ndarray,
    alpha: float,
    *,
    start: tuple[np.ndarray, np.ndarray] | None = None,
    max_iter: int = 50,
    tol: float = 1e-8,
) -> tuple[np.ndarray, np.ndarray, bool]:
    """Fit the L1-penalised Poisson log-linear model at one α.

    Args:
        y: Cell counts.
        X_u: Unpenalised design columns (including the intercept).
        X_p: Penalised design columns.
        alpha: Penalty on the mean negative log-likelihood scale.
        start: Warm start ``(b_u, b_p)``; defaults to the unpenalised
            fit with ``b_p = 0``.
        max_iter: Maximum outer IRLS iterations.
        tol: Relative deviance change that ends the IRLS loop.

    Returns:
        ``(b_u, b_p, converged)``.
    """
    n = len(y)
    if start is None:
        b_u, b_p = _unpenalized_start(y, X_u), np.zeros(X_p.shape[1])
    else:
        b_u, b_p = (np.array(s, dtype=float) for s in start)

    eta = X_u @ b_u + X_p @ b_p
    deviance = poisson_deviance(y, np.exp(eta))
    lasso = Lasso(alpha=1.0, fit_intercept=False, max_iter=10_000, tol=1e-7, warm_start=True)
    lasso.coef_ = b_p.copy()
    converged = False

    for _ in range(max_iter):
        mu = np.maximum(np.exp(eta), 1e-10)
        z = eta + (y - mu) / mu
        targets = np.column_stack([z, X_p])
        resid, coef = _weighted_partial_out(mu, X_u, targets)
        z_r, Xp_r = resid[:, 0], resid[:, 1:]

        # sklearn scales the weighted loss by 1 / (2 Σw); ours is 1 / (2n).
        lasso.set_params(alpha=alpha * n / mu.sum())
        lasso.fit(Xp_r, z_r, sample_weight=mu)
        b_p = np.asarray(lasso.coef_, dtype=float).copy()
        b_u = coef[:, 0] - coef[:, 1:] @ b_p

        eta = X_u @ b_u + X_p @ b_p
        new_deviance = poisson_deviance(y, np.exp(eta))
        if abs(deviance - new_deviance) <= tol * (abs(new_deviance) + 0.1):
            converged = True
            break
        deviance = new_deviance

    return b_u, b_p, converged


def fit_lasso_path(
    y: np.ndarray,
    X_u: np.ndarray,
    X_p: np.ndarray,
    alphas: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Fit the model along a decreasing α grid with warm starts.

    Returns:
        ``(B_u, B_p, converged)`` with one row per α.
    """
    B_u = np.empty((len(alphas), X_u.shape[1]))
    B_p = np.empty((len(alphas), X_p.shape[1]))
    ok = np.zeros(len(alphas), dtype=bool)
    start = None
    for i, a in enumerate(alphas):
        b_u, b_p, ok[i] = fit_penalized_poisson(y, X_u, X_p, float(a), start=start)
        B_u[i], B_p[i] = b_u, b_p
        start = (b_u, b_p)
    return B_u, B_p, ok


# ------------------------------------------------------------------ #
# Cross-validation
# ------------------------------------------------------------------ #


def _fold_scores(
    y: np.ndarray,
    X_u: np.ndarray,
    X_p: np.ndarray,
    alphas: np.ndarray,
    train: np.ndarray,
    test: np.ndarray,
) -> tuple[np.ndarray, int]:
    """Held-out mean Poisson deviance along the path for one fold."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        B_u, B_p, _ = fit_lasso_path(y[train], X_u[train], X_p[train], alphas)
    n_warn = sum(issubclass(w.category, ConvergenceWarning) for w in caught)
    eta_test = B_u @ X_u[test].T + B_p @ X_p[test].T
    scores = np.array(
        [mean_poisson_deviance(y[test], np.exp(row)) for row in eta_test]
    )
    return scores, n_warn


def cross_validate_alpha(
    table: TableLike,
    *,
    count: str = "freq",
    alphas: np.ndarray | None = None,
    n_alphas: int = 30,
    alpha_min_ratio: float = 1e-3,
    n_folds: int = 5,
    rule: str = "1se",
    random_state: int | None = None,
    n_jobs: int = 1,
) -> tuple[LassoPath, dict[str, Any]]:
    """Choose the Lasso penalty by K-fold cross-validation over cells.

    Args:
        table: Long-format mobility table.
        count: Name of the frequency column.
        alphas: Explicit penalty grid (sorted decreasing internally).
            Defaults to a geometric grid of *n_alphas* values from
            α_max down to ``alpha_min_ratio · α_max``.
        n_folds: Number of folds; must be at least 2.
        rule: ``"min"`` or ``"1se"``.
        random_state: Seed for the fold split; ``None`` uses the
            configured default seed.
        n_jobs: Folds fitted in parallel (joblib threads).

    Returns:
        ``(path, full_fit)`` where *full_fit* holds the full-data
        coefficient path (``"B_u"``, ``"B_p"``, ``"converged"``) and
        the design (``"X_u"``, ``"X_p"``, ``"table"``).

    Raises:
        ValueError: On an unknown *rule* or fewer than two folds.
    """
    if rule not in _VALID_RULES:
        raise ValueError(f"Unknown rule {rule!r}. Choose from: {list(_VALID_RULES)}")
    if n_folds < 2:
        raise ValueError(f"n_folds must be at least 2, got {n_folds}.")

    df = validate_table(table, count=count)
    y = df[count].to_numpy(dtype=float)
    X_u_df, X_p_df = lasso_design(df)
    X_u, X_p = X_u_df.to_numpy(), X_p_df.to_numpy()

    if alphas is None:
        a_max = alpha_max(y, X_u, X_p)
        alphas = np.geomspace(a_max, a_max * alpha_min_ratio, n_alphas)
    else:
        alphas = np.sort(np.asarray(alphas, dtype=float))[::-1]

    folds = KFold(n_splits=n_folds, shuffle=True, random_state=resolve_seed(random_state))
    logger.debug(
        "Lasso CV: %d cells, %d penalised columns, %d alphas, %d folds.",
        len(y),
        X_p.shape[1],
        len(alphas),
        n_folds,
    )
    fold_results = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_fold_scores)(y, X_u, X_p, alphas, train, test)
        for train, test in folds.split(X_u)
    )
    scores = np.vstack([s for s, _ in fold_results])
    n_warn = sum(n for _, n in fold_results)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        B_u, B_p, ok = fit_lasso_path(y, X_u, X_p, alphas)
    n_warn += sum(issubclass(w.category, ConvergenceWarning) for w in caught)
    if n_warn:
        warnings.warn(
            f"{n_warn} inner Lasso solves did not reach the coordinate-descent "
            "tolerance during cross-validation; the path may be slightly "
            "inaccurate at the smallest penalties.",
            UserWarning,
            stacklevel=2,
        )

    cv_mean = scores.mean(axis=0)
    cv_se = scores.std(axis=0, ddof=1) / np.sqrt(n_folds)
    i_min = int(np.argmin(cv_mean))
    within = np.flatnonzero(cv_mean <= cv_mean[i_min] + cv_se[i_min])
    # Grid is decreasing, so the first qualifying index is the largest α.
    i_1se = int(within[0])

    path = LassoPath(
        alphas=alphas,
        cv_mean=cv_mean,
        cv_se=cv_se,
        n_nonzero=np.count_nonzero(np.abs(B_p) > 1e-10, axis=1),
        alpha_min=float(alphas[i_min]),
        alpha_1se=float(alphas[i_1se]),
        rule=rule,
        n_folds=n_folds,
    )
    full_fit = {
        "B_u": B_u,
        "B_p": B_p,
        "converged": ok,
        "X_u": X_u_df,
        "X_p": X_p_df,
        "table": df,
    }
    return path, full_fit


# ------------------------------------------------------------------ #
# LassoModel
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LassoModel:
    """Saturated log-linear model with an L1 penalty on the association terms.

    Args:
        n_alphas: Size of the penalty grid.
        alpha_min_ratio: Smallest grid value as a fraction of α_max.
        n_folds: Cross-validation folds.
        rule: ``"1se"`` (sparser, default) or ``"min"``.
        random_state: Fold-split seed; ``None`` uses the configured seed.
        n_jobs: Folds fitted in parallel.
    """

    n_alphas: int = 30
    alpha_min_ratio: float = 1e-3
    n_folds: int = 5
    rule: str = "1se"
    random_state: int | None = None
    n_jobs: int = 1

    @property
    def name(self) -> str:
        return "Lasso"

    @property
    def kind(self) -> ModelKind:
        return ModelKind.LASSO

    @property
    def description(self) -> str:
        return "origin*destination*country, L1 penalty on association terms"

    def fit(self, table: TableLike, count: str = "freq") -> LoglinearFit:
        path, full = cross_validate_alpha(
            table,
            count=count,
            n_alphas=self.n_alphas,
            alpha_min_ratio=self.alpha_min_ratio,
            n_folds=self.n_folds,
            rule=self.rule,
            random_state=self.random_state,
            n_jobs=self.n_jobs,
        )
        i = int(np.flatnonzero(path.alphas == path.alpha)[0])
        b_u, b_p = full["B_u"][i], full["B_p"][i]
        X_u, X_p = full["X_u"], full["X_p"]
        nonzero = np.abs(b_p) > 1e-10
        selected = [col for col, keep in zip(X_p.columns, nonzero) if keep]
        # Degrees of freedom of the Lasso: unpenalised rank plus active set size.
        n_params = int(np.linalg.matrix_rank(X_u.to_numpy())) + int(nonzero.sum())

        logger.debug(
            "Lasso: alpha=%.4g (%s rule), %d of %d penalised terms selected.",
            path.alpha,
            path.rule,
            len(selected),
            X_p.shape[1],
        )
        return make_fit(
            name=self.name,
            kind=self.kind,
            table=full["table"],
            count=count,
            log_fitted=X_u.to_numpy() @ b_u + X_p.to_numpy() @ b_p,
            n_params=n_params,
            converged=bool(full["converged"][i]),
            extra={
                "alpha": path.alpha,
                "path": path,
                "selected_terms": selected,
                "params": pd.concat(
                    [
                        pd.Series(b_u, index=X_u.columns),
                        pd.Series(b_p, index=X_p.columns),
                    ]
                ),
            },
        )


register_model(ModelKind.LASSO, LassoModel)
