"""Log-linear and log-multiplicative models for three-way mobility tables.

Every model here is a Poisson GLM with a log link for the cell counts
of an origin × destination × country table.  They differ only in how
the origin–destination association is allowed to vary:

=========================  ==============================================
Model                      Association term
=========================  ==============================================
conditional independence   none (``country*origin + country*destination``)
constant association       ``origin:destination``, common to countries
quasi-symmetry             symmetric ``Symm(origin, destination)``
unidiff                    ``exp(φ_c) · ψ(origin, destination)``
saturated                  ``origin*destination*country``
=========================  ==============================================

All of them include the country × origin and country × destination
margins, so fitted margins reproduce the observed ones and the models
differ only in the margin-free association, which is what
:mod:`mobility_tables.decomposition` extracts afterwards.

The ``LoglinearModel`` protocol decouples the pipeline in
:mod:`mobility_tables.analysis` from the concrete models: each model is
a stateless frozen dataclass whose :meth:`fit` returns a
:class:`~mobility_tables._results.LoglinearFit`, and the registry maps
:class:`ModelKind` tags to model classes.  The penalised Lasso model is
registered from :mod:`mobility_tables.penalized`.

Design matrices are built with treatment (dummy) coding, first level
as reference, directly from the categorical columns produced by
:func:`~mobility_tables.tables.validate_table`.  Fitting uses
statsmodels IRLS.
"""

from __future__ import annotations

import enum
import logging
import warnings
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import numpy as np
import pandas as pd
import statsmodels.api as sm

from ._compat import TableLike
from ._results import LoglinearFit
from .comparison import dissimilarity_index, pearson_chi2, poisson_deviance, poisson_loglik
from .tables import DIMENSIONS, symmetric_pair, validate_table

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# Model tags
# ------------------------------------------------------------------ #


class ModelKind(str, enum.Enum):
    """One tag per model that can be fitted to a mobility table."""

    CONDITIONAL_INDEPENDENCE = "conditional_independence"
    CONSTANT_ASSOCIATION = "constant_association"
    QUASI_SYMMETRY = "quasi_symmetry"
    UNIDIFF = "unidiff"
    SATURATED = "saturated"
    LASSO = "lasso"


# ------------------------------------------------------------------ #
# Design matrices
# ------------------------------------------------------------------ #
#
# A term is a tuple of column names; its block is the product of the
# treatment dummies of each column.  With every lower-order term
# present (the models below are hierarchical) the resulting matrix has
# full column rank.

Term = tuple[str, ...]

MARGIN_TERMS: tuple[Term, ...] = (
    ("country",),
    ("origin",),
    ("destination",),
    ("country", "origin"),
    ("country", "destination"),
)
"""Terms fixing the country-specific origin and destination margins."""

ASSOCIATION_TERM: Term = ("origin", "destination")
THREE_WAY_TERM: Term = ("origin", "destination", "country")


def _dummies(col: pd.Series) -> pd.DataFrame:
    """Treatment-coded indicator columns, first category dropped."""
    cats = list(col.cat.categories)
    return pd.DataFrame(
        {f"{col.name}[{c}]": (col == c).to_numpy(dtype=float) for c in cats[1:]},
        index=col.index,
    )


def _interact(left: pd.DataFrame, right: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame(
        {f"{a}:{b}": left[a].to_numpy() * right[b].to_numpy() for a in left for b in right},
        index=left.index,
    )


def term_block(table: pd.DataFrame, term: Term) -> pd.DataFrame:
    """Dummy block for a single (possibly interaction) term."""
    block = _dummies(table[term[0]])
    for name in term[1:]:
        block = _interact(block, _dummies(table[name]))
    return block


def design_matrix(table: pd.DataFrame, terms: Sequence[Term]) -> pd.DataFrame:
    """Intercept column followed by one dummy block per term.

    Args:
        table: A validated mobility table (categorical dimensions).
        terms: Terms in the order their blocks should appear.
    """
    blocks = [pd.DataFrame({"Intercept": np.ones(len(table))}, index=table.index)]
    blocks.extend(term_block(table, t) for t in terms)
    return pd.concat(blocks, axis=1)


def _symmetry_block(table: pd.DataFrame) -> pd.DataFrame:
    """Dummies for unordered origin/destination pairs not involving the reference class.

    Pairs that include the first class are dropped: their effect is
    already carried by the origin and destination margins, so keeping
    them would make the design rank-deficient.
    """
    ref = table["origin"].cat.categories[0]
    symm = symmetric_pair(table["origin"], table["destination"])
    keep = (table["origin"] != ref).to_numpy() & (table["destination"] != ref).to_numpy()
    labels = [lbl for lbl in pd.unique(symm[keep])]
    return pd.DataFrame(
        {f"symm[{lbl}]": ((symm == lbl).to_numpy() & keep).astype(float) for lbl in labels},
        index=table.index,
    )


def cell_index(table: pd.DataFrame) -> pd.MultiIndex:
    """``(origin, destination, country)`` MultiIndex of a validated table."""
    return pd.MultiIndex.from_frame(table[list(DIMENSIONS)])


# ------------------------------------------------------------------ #
# Fitting helpers
# ------------------------------------------------------------------ #


def _poisson_glm(
    y: np.ndarray,
    X: np.ndarray,
    offset: np.ndarray | None = None,
    start_params: np.ndarray | None = None,
) -> Any:
    """Fit a Poisson log-link GLM by IRLS and return the statsmodels results."""
    model = sm.GLM(y, X, family=sm.families.Poisson(), offset=offset)
    return model.fit(start_params=start_params, maxiter=100)


def make_fit(
    *,
    name: str,
    kind: ModelKind,
    table: pd.DataFrame,
    count: str,
    log_fitted: np.ndarray,
    n_params: int,
    converged: bool,
    extra: dict[str, Any] | None = None,
) -> LoglinearFit:
    """Assemble a :class:`LoglinearFit` from a linear predictor.

    Fit statistics are computed here from the observed and fitted
    counts so that every model, however it was estimated, reports them
    the same way.
    """
    index = cell_index(table)
    y = table[count].to_numpy(dtype=float)
    eta = np.asarray(log_fitted, dtype=float)
    mu = np.exp(eta)
    deviance = poisson_deviance(y, mu)
    llf = poisson_loglik(y, mu)
    df_resid = int(len(y) - n_params)
    n_total = float(y.sum())
    return LoglinearFit(
        model=name,
        kind=kind,
        observed=pd.Series(y, index=index, name="observed"),
        fitted=pd.Series(mu, index=index, name="fitted"),
        log_fitted=pd.Series(eta, index=index, name="log_fitted"),
        deviance=deviance,
        pearson_chi2=pearson_chi2(y, mu),
        df_resid=df_resid,
        n_params=int(n_params),
        llf=llf,
        aic=-2.0 * llf + 2.0 * n_params,
        bic=deviance - df_resid * np.log(n_total) if n_total > 0 else float("nan"),
        dissimilarity=dissimilarity_index(y, mu),
        converged=bool(converged),
        extra=dict(extra or {}),
    )


def _fit_design(
    table: TableLike,
    count: str,
    terms: Sequence[Term],
    *,
    name: str,
    kind: ModelKind,
    extra_blocks: Sequence[Callable[[pd.DataFrame], pd.DataFrame]] = (),
) -> LoglinearFit:
    df = validate_table(table, count=count)
    X = design_matrix(df, terms)
    if extra_blocks:
        X = pd.concat([X, *(build(df) for build in extra_blocks)], axis=1)
    y = df[count].to_numpy(dtype=float)
    res = _poisson_glm(y, X.to_numpy())
    eta = X.to_numpy() @ np.asarray(res.params)
    n_params = int(np.linalg.matrix_rank(X.to_numpy()))
    logger.debug(
        "%s: %d cells, %d parameters, deviance %.4f.",
        name,
        len(y),
        n_params,
        float(res.deviance),
    )
    return make_fit(
        name=name,
        kind=kind,
        table=df,
        count=count,
        log_fitted=eta,
        n_params=n_params,
        converged=bool(getattr(res, "converged", True)),
        extra={"params": pd.Series(np.asarray(res.params), index=X.columns)},
    )


# ------------------------------------------------------------------ #
# LoglinearModel protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class LoglinearModel(Protocol):
    """Interface that every mobility-table model implements.

    Attributes:
        name: Display name used in comparison tables and plots.
        kind: Registry tag.
        description: One-line statement of the association term.
    """

    @property
    def name(self) -> str: ...

    @property
    def kind(self) -> ModelKind: ...

    @property
    def description(self) -> str: ...

    def fit(self, table: TableLike, count: str = "freq") -> LoglinearFit:
        """Fit the model to a long-format mobility table."""
        ...


# ------------------------------------------------------------------ #
# Hierarchical models
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ConditionalIndependenceModel:
    """Origin and destination independent within each country."""

    @property
    def name(self) -> str:
        return "Conditional independence"

    @property
    def kind(self) -> ModelKind:
        return ModelKind.CONDITIONAL_INDEPENDENCE

    @property
    def description(self) -> str:
        return "country*origin + country*destination"

    def fit(self, table: TableLike, count: str = "freq") -> LoglinearFit:
        return _fit_design(table, count, MARGIN_TERMS, name=self.name, kind=self.kind)


@dataclass(frozen=True)
class ConstantAssociationModel:
    """Common social fluidity: one origin–destination association for all countries."""

    @property
    def name(self) -> str:
        return "Constant association"

    @property
    def kind(self) -> ModelKind:
        return ModelKind.CONSTANT_ASSOCIATION

    @property
    def description(self) -> str:
        return "country*origin + country*destination + origin:destination"

    def fit(self, table: TableLike, count: str = "freq") -> LoglinearFit:
        return _fit_design(
            table, count, (*MARGIN_TERMS, ASSOCIATION_TERM), name=self.name, kind=self.kind
        )


@dataclass(frozen=True)
class QuasiSymmetryModel:
    """Symmetric association common to all countries.

    The odds of moving from class *a* to class *b* relative to staying
    equal the reverse odds once the margins are controlled.  Origin and
    destination must share one set of classes.
    """

    @property
    def name(self) -> str:
        return "Quasi-symmetry"

    @property
    def kind(self) -> ModelKind:
        return ModelKind.QUASI_SYMMETRY

    @property
    def description(self) -> str:
        return "country*origin + country*destination + Symm(origin, destination)"

    def fit(self, table: TableLike, count: str = "freq") -> LoglinearFit:
        return _fit_design(
            table,
            count,
            MARGIN_TERMS,
            name=self.name,
            kind=self.kind,
            extra_blocks=(_symmetry_block,),
        )


@dataclass(frozen=True)
class SaturatedModel:
    """One parameter per cell; reproduces the observed table exactly."""

    @property
    def name(self) -> str:
        return "Saturated"

    @property
    def kind(self) -> ModelKind:
        return ModelKind.SATURATED

    @property
    def description(self) -> str:
        return "origin*destination*country"

    def fit(self, table: TableLike, count: str = "freq") -> LoglinearFit:
        return _fit_design(
            table,
            count,
            (*MARGIN_TERMS, ASSOCIATION_TERM, THREE_WAY_TERM),
            name=self.name,
            kind=self.kind,
        )


# ------------------------------------------------------------------ #
# Unidiff (log-multiplicative layer effect)
# ------------------------------------------------------------------ #
#
#   log μ_odc = margins(o, c) + margins(d, c) + β_c · ψ_od,   β_c = exp(φ_c)
#
# The model is bilinear in (β, ψ), so it is fitted by alternating two
# ordinary Poisson GLMs, each of which is linear given the other block:
#
#   1. ψ-step: β fixed.  The pair dummies P (non-reference origin ×
#      non-reference destination) are multiplied by β of the cell's
#      country and enter as ordinary columns.
#   2. β-step: ψ fixed.  s_i = P_i · ψ is the association score of
#      cell i; one column s_i · 1{country_i = c} per non-reference
#      country, and the reference country's s_i enters as an offset
#      so that β_ref = 1 (φ_ref = 0).
#
# Each step cannot increase the deviance, so the sequence is monotone;
# iteration stops when the relative deviance change drops below ``tol``.  The
# starting ψ comes from the constant-association fit (β = 1).


@dataclass(frozen=True)
class UnidiffModel:
    """Uniform-difference model: a common association pattern scaled per country.

    Args:
        max_iter: Maximum number of ψ/β alternations.
        tol: Convergence tolerance on the relative deviance change.
    """

    max_iter: int = 100
    tol: float = 1e-8

    @property
    def name(self) -> str:
        return "Unidiff"

    @property
    def kind(self) -> ModelKind:
        return ModelKind.UNIDIFF

    @property
    def description(self) -> str:
        return "country*origin + country*destination + exp(φ_country)·ψ(origin, destination)"

    def fit(self, table: TableLike, count: str = "freq") -> LoglinearFit:
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be at least 1, got {self.max_iter}.")
        df = validate_table(table, count=count)
        y = df[count].to_numpy(dtype=float)
        X0 = design_matrix(df, MARGIN_TERMS)
        P = term_block(df, ASSOCIATION_TERM)
        countries = list(df["country"].cat.categories)
        c_codes = df["country"].cat.codes.to_numpy()
        X0_arr, P_arr = X0.to_numpy(), P.to_numpy()
        p0, m, n_c = X0_arr.shape[1], P_arr.shape[1], len(countries)
        if n_c < 2:
            raise ValueError("The unidiff model needs at least two countries.")

        beta = np.ones(n_c)
        psi = np.zeros(m)
        deviance = np.inf
        converged = False
        eta = np.zeros_like(y)
        params_psi: np.ndarray | None = None
        params_beta: np.ndarray | None = None

        for it in range(1, self.max_iter + 1):
            # ψ-step
            X_psi = np.hstack([X0_arr, P_arr * beta[c_codes][:, None]])
            res_psi = _poisson_glm(y, X_psi, start_params=params_psi)
            params_psi = np.asarray(res_psi.params)
            psi = params_psi[p0:]

            # β-step
            score = P_arr @ psi
            layer = np.stack([score * (c_codes == j) for j in range(1, n_c)], axis=1)
            offset = score * (c_codes == 0)
            X_beta = np.hstack([X0_arr, layer])
            res_beta = _poisson_glm(y, X_beta, offset=offset, start_params=params_beta)
            params_beta = np.asarray(res_beta.params)
            beta = np.concatenate([[1.0], params_beta[p0:]])
            eta = X_beta @ params_beta + offset

            new_deviance = poisson_deviance(y, np.exp(eta))
            logger.debug("Unidiff iteration %d: deviance %.8f.", it, new_deviance)
            if abs(deviance - new_deviance) <= self.tol * (abs(new_deviance) + 0.1):
                deviance = new_deviance
                converged = True
                break
            deviance = new_deviance

        if not converged:
            warnings.warn(
                f"Unidiff alternating fit did not converge in {self.max_iter} "
                f"iterations (last deviance {deviance:.6f}).",
                UserWarning,
                stacklevel=2,
            )
        if np.any(beta <= 0):
            warnings.warn(
                "Unidiff layer scale is non-positive for some countries; "
                "layer scores log(β) are undefined there.",
                UserWarning,
                stacklevel=2,
            )

        country_index = pd.Index(countries, name="country")
        phi = np.full(n_c, np.nan)
        positive = beta > 0
        phi[positive] = np.log(beta[positive])
        classes_o = list(df["origin"].cat.categories)
        classes_d = list(df["destination"].cat.categories)
        psi_matrix = np.zeros((len(classes_o), len(classes_d)))
        psi_matrix[1:, 1:] = psi.reshape(len(classes_o) - 1, len(classes_d) - 1)

        return make_fit(
            name=self.name,
            kind=self.kind,
            table=df,
            count=count,
            log_fitted=eta,
            # margins + association pattern + one scale per non-reference country
            n_params=p0 + m + (n_c - 1),
            converged=converged,
            extra={
                "layer_scale": pd.Series(beta, index=country_index, name="layer_scale"),
                "layer_scores": pd.Series(phi, index=country_index, name="layer_scores"),
                "association": pd.DataFrame(
                    psi_matrix,
                    index=pd.Index(classes_o, name="origin"),
                    columns=pd.Index(classes_d, name="destination"),
                ),
                "n_iter": it,
            },
        )


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #

_MODELS: dict[ModelKind, type] = {}
"""Registry mapping model tags to concrete LoglinearModel classes."""


def register_model(kind: ModelKind | str, cls: type) -> None:
    """Register a concrete ``LoglinearModel`` class under *kind*.

    Raises:
        TypeError: If *cls* cannot be instantiated without arguments
            or does not satisfy the ``LoglinearModel`` protocol.
    """
    try:
        instance = cls()
    except Exception:  # noqa: BLE001
        msg = f"{cls!r} could not be instantiated for protocol check."
        raise TypeError(msg) from None
    if not isinstance(instance, LoglinearModel):
        msg = f"{cls!r} does not implement the LoglinearModel protocol."
        raise TypeError(msg)
    _MODELS[ModelKind(kind)] = cls


def resolve_model(model: ModelKind | str | LoglinearModel) -> LoglinearModel:
    """Resolve a tag, its string value or an instance to a model instance.

    Instances pass through unchanged, so pre-configured models such as
    ``UnidiffModel(max_iter=500)`` can be handed to the pipeline.

    Raises:
        ValueError: If the tag is unknown or not registered.
    """
    if isinstance(model, LoglinearModel) and not isinstance(model, str):
        return model
    try:
        kind = ModelKind(model)
    except ValueError:
        kind = None
    if kind is None or kind not in _MODELS:
        available = ", ".join(k.value for k in _MODELS) or "(none registered)"
        msg = f"Unknown model {model!r}.  Available models: {available}."
        raise ValueError(msg)
    instance: LoglinearModel = _MODELS[kind]()
    return instance


def registered_models() -> list[ModelKind]:
    """Tags of every registered model, in registration order."""
    return list(_MODELS)


register_model(ModelKind.CONDITIONAL_INDEPENDENCE, ConditionalIndependenceModel)
register_model(ModelKind.CONSTANT_ASSOCIATION, ConstantAssociationModel)
register_model(ModelKind.QUASI_SYMMETRY, QuasiSymmetryModel)
register_model(ModelKind.UNIDIFF, UnidiffModel)
register_model(ModelKind.SATURATED, SaturatedModel)
