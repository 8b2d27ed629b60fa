"""Typed result objects for fitted mobility-table models.

Frozen dataclasses that provide:

* **Attribute access** — ``fit.deviance``, ``fit.kind``, etc.
* **Dict-like access** — ``fit["deviance"]``, ``fit.get("key")``,
  ``"key" in fit`` for consumers that prefer bracket syntax.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with NumPy scalars, pandas objects and enum members converted to
  native Python.

Three result types are defined here:

* :class:`LoglinearFit` — one fitted Poisson log-linear (or
  log-multiplicative, or penalised) model.
* :class:`LassoPath` — the cross-validation path behind a penalised
  fit.
* :class:`MobilityAnalysis` — the output of
  :func:`~mobility_tables.analysis.analyze_mobility_table`.

The margin decomposition result lives next to the algorithm in
:mod:`mobility_tables.decomposition` and reuses the mixin below.

All types are frozen: a result is a snapshot of a completed fit and is
not mutated afterwards.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from .decomposition import MarginDecomposition, ReferenceLevels
    from .models import ModelKind

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy / pandas / enum values to Python-native types.

    Series become lists of ``[*index_key, value]`` records so that
    MultiIndex keys survive the trip; DataFrames become
    ``{column: [values]}`` after resetting the index.  Enum members
    (including dict keys) become their ``value``.
    """
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, pd.Series):
        records = []
        for key, val in obj.items():
            key_parts = list(key) if isinstance(key, tuple) else [key]
            records.append([_numpy_to_python(k) for k in key_parts] + [_numpy_to_python(val)])
        return records
    if isinstance(obj, pd.DataFrame):
        flat = obj.reset_index()
        return {
            str(col): [_numpy_to_python(v) for v in flat[col].tolist()]
            for col in flat.columns
        }
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {_numpy_to_python(k): _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    if hasattr(obj, "to_dict") and callable(obj.to_dict):
        return obj.to_dict()
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports ``result["key"]`` (``KeyError`` on miss),
    ``result.get(key, default)`` and ``"key" in result``.

    Subclasses may override ``_SERIALIZERS`` to register conversion
    functions for individual fields and ``_EXCLUDE_FROM_DICT`` to drop
    heavyweight fields from :meth:`to_dict`.
    """

    _SERIALIZERS: ClassVar[dict[str, Any]] = {}

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset()

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, JSON-serialisable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            val = getattr(self, f.name)
            if f.name in self._SERIALIZERS:
                val = self._SERIALIZERS[f.name](val)
            result[f.name] = _numpy_to_python(val)
        return result


# ------------------------------------------------------------------ #
# LoglinearFit
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LoglinearFit(_DictAccessMixin):
    """A fitted log-linear model for a three-way mobility table.

    Every Series is indexed by the ``(origin, destination, country)``
    MultiIndex of the table that was fitted.
    """

    # ---- Identity --------------------------------------------------
    model: str
    """Display name of the model (e.g. ``"Unidiff"``)."""

    kind: ModelKind
    """Registry tag of the model."""

    # ---- Cell-level values -----------------------------------------
    observed: pd.Series
    """Observed counts."""

    fitted: pd.Series
    """Expected counts μ̂."""

    log_fitted: pd.Series
    """Linear predictor log μ̂; the input to the margin decomposition."""

    # ---- Fit statistics --------------------------------------------
    deviance: float
    """Likelihood-ratio statistic G² against the saturated model."""

    pearson_chi2: float
    """Pearson X² statistic."""

    df_resid: int
    """Residual degrees of freedom (cells − parameters)."""

    n_params: int
    """Number of free parameters."""

    llf: float
    """Poisson log-likelihood."""

    aic: float
    """Akaike information criterion, −2 llf + 2k."""

    bic: float
    """Raftery's BIC for tables, G² − df · log N."""

    dissimilarity: float
    """Index of dissimilarity Δ in percent."""

    converged: bool
    """Whether the fitting algorithm reported convergence."""

    extra: dict[str, Any] = field(default_factory=dict)
    """Model-specific output (layer scores, selected terms, CV path)."""

    _SERIALIZERS: ClassVar[dict[str, Any]] = {"kind": lambda k: k.value}

    @property
    def predictions(self) -> pd.Series:
        """Alias for :attr:`log_fitted`."""
        return self.log_fitted

    @property
    def n_cells(self) -> int:
        return int(self.observed.shape[0])


# ------------------------------------------------------------------ #
# LassoPath
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LassoPath(_DictAccessMixin):
    """Cross-validated penalty path of a Lasso log-linear model."""

    alphas: np.ndarray
    """Penalty grid, decreasing."""

    cv_mean: np.ndarray
    """Mean held-out Poisson deviance per alpha."""

    cv_se: np.ndarray
    """Standard error of the held-out deviance across folds."""

    n_nonzero: np.ndarray
    """Penalised coefficients that are non-zero on the full data, per alpha."""

    alpha_min: float
    """Alpha with the smallest mean CV deviance."""

    alpha_1se: float
    """Largest alpha within one standard error of the minimum."""

    rule: str
    """Selection rule used for :attr:`alpha` (``"min"`` or ``"1se"``)."""

    n_folds: int
    """Number of cross-validation folds."""

    @property
    def alpha(self) -> float:
        """The selected penalty."""
        return self.alpha_1se if self.rule == "1se" else self.alpha_min


# ------------------------------------------------------------------ #
# MobilityAnalysis
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class MobilityAnalysis(_DictAccessMixin):
    """Everything produced by one pass over a mobility table."""

    fits: dict[ModelKind, LoglinearFit]
    """Fitted models in the order they were requested."""

    comparison: pd.DataFrame
    """Goodness-of-fit comparison table, one row per model."""

    decompositions: dict[ModelKind, MarginDecomposition]
    """Margin decomposition of each model's log predictions."""

    reference: ReferenceLevels
    """Reference levels shared by every decomposition."""

    count: str = "freq"
    """Name of the frequency column of the analysed table."""

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset({"decompositions"})
    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "reference": lambda r: r.as_dict(),
    }
