"""Margin-free decomposition of fitted log-linear predictions.

Comparative mobility research asks whether countries differ in the
*association* between class of origin and class of destination once
the marginal distributions (how many people start and end in each
class, in each country) are held fixed.  Log-odds ratios are the
margin-free measure of that association.  This module turns any
model's fitted log expected counts into that measure.

Given log-scale predictions ``η(o, d, c)`` and a reference level per
dimension ``(r_o, r_d, r_c)``::

    intercept   = η(r_o, r_d, r_c)
    m_c(c)      = η(r_o, r_d, c)   − intercept
    m_o(o)      = η(o,   r_d, r_c) − intercept
    m_d(d)      = η(r_o, d,   r_c) − intercept
    m_co(c, o)  = η(o,   r_d, c)   − intercept − m_c(c) − m_o(o)
    m_cd(c, d)  = η(r_o, d,   c)   − intercept − m_c(c) − m_d(d)
    free(o,d,c) = η(o, d, c) − intercept − m_c − m_o − m_d − m_co − m_cd

``free(o, d, c)`` is the log-odds ratio of the 2 × 2 sub-table formed
by rows ``{r_o, o}`` and columns ``{r_d, d}`` in country ``c``.

The two-way margins are only computed for non-reference origins,
destinations and countries; after reindexing onto the full grid the
undefined entries are filled with zero.  This fill-missing-with-zero
rule is a stated policy, and it makes every margin vanish at the
reference combination, so ``free(r_o, r_d, r_c) == 0`` by
construction.

The decomposition is model-agnostic: :func:`decompose_models` applies
it to several fitted models over the same category domain and returns
identically shaped results.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, TypeVar

import numpy as np
import pandas as pd

from ._compat import ensure_frame
from ._results import _DictAccessMixin
from .tables import DIMENSIONS

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

# ------------------------------------------------------------------ #
# Reference levels
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ReferenceLevels:
    """Reference category for each classification dimension."""

    origin: Hashable
    destination: Hashable
    country: Hashable

    @classmethod
    def first_levels(cls, levels: Mapping[str, list]) -> ReferenceLevels:
        """Use the first level of every dimension."""
        return cls(*(levels[d][0] for d in DIMENSIONS))

    @classmethod
    def coerce(
        cls,
        reference: ReferenceLevels | Mapping[str, Hashable] | tuple | None,
        levels: Mapping[str, list],
    ) -> ReferenceLevels:
        """Build a :class:`ReferenceLevels` from the accepted spellings.

        ``None`` selects the first level of every dimension; a mapping
        may omit dimensions, which then also default to the first
        level; a tuple is read in ``(origin, destination, country)``
        order.
        """
        if reference is None:
            return cls.first_levels(levels)
        if isinstance(reference, cls):
            return reference
        if isinstance(reference, Mapping):
            unknown = set(reference) - set(DIMENSIONS)
            if unknown:
                raise ValueError(f"Unknown reference dimension(s): {sorted(unknown)}.")
            return cls(*(reference.get(d, levels[d][0]) for d in DIMENSIONS))
        if isinstance(reference, tuple) and len(reference) == 3:
            return cls(*reference)
        raise TypeError(
            "reference must be ReferenceLevels, a mapping, a 3-tuple or None, "
            f"got {type(reference).__name__}."
        )

    def validate(self, levels: Mapping[str, list]) -> None:
        """Check every reference level is a member of its dimension.

        Raises:
            ValueError: Naming the first offending dimension.
        """
        for dim, ref in zip(DIMENSIONS, self.as_tuple()):
            if ref not in levels[dim]:
                raise ValueError(
                    f"Reference {dim} {ref!r} is not one of the levels "
                    f"{list(levels[dim])}."
                )

    def as_tuple(self) -> tuple[Hashable, Hashable, Hashable]:
        return (self.origin, self.destination, self.country)

    def as_dict(self) -> dict[str, Hashable]:
        return dict(zip(DIMENSIONS, self.as_tuple()))


# ------------------------------------------------------------------ #
# Input normalisation
# ------------------------------------------------------------------ #


def _level_order(values: pd.Index) -> list:
    if isinstance(values, pd.CategoricalIndex):
        present = set(values)
        return [c for c in values.categories if c in present]
    return list(values.unique())


def _as_prediction_series(
    predictions: pd.Series | pd.DataFrame, value: str | None
) -> tuple[pd.Series, dict[str, list]]:
    """Return predictions on a complete object-level grid plus its levels."""
    if not isinstance(predictions, pd.Series):
        df = ensure_frame(predictions, name="predictions")
        missing = [c for c in (*DIMENSIONS, value) if c is not None and c not in df.columns]
        if value is None or missing:
            raise ValueError(
                "A prediction DataFrame needs the columns "
                f"{list(DIMENSIONS)} and a value column; missing {missing or ['value']}."
            )
        predictions = df.set_index(list(DIMENSIONS))[value]

    names = list(predictions.index.names)
    if sorted(n for n in names if n is not None) != sorted(DIMENSIONS) or len(names) != 3:
        raise ValueError(
            f"Prediction index must be named {list(DIMENSIONS)}, got {names}."
        )
    if names != list(DIMENSIONS):
        predictions = predictions.reorder_levels(list(DIMENSIONS))
    if predictions.index.has_duplicates:
        raise ValueError("Prediction table has duplicated (origin, destination, country) keys.")

    levels = {d: _level_order(predictions.index.get_level_values(d)) for d in DIMENSIONS}
    full = pd.MultiIndex.from_product([levels[d] for d in DIMENSIONS], names=list(DIMENSIONS))

    flat = pd.Series(
        predictions.to_numpy(dtype=float),
        index=pd.MultiIndex.from_arrays(
            [np.asarray(predictions.index.get_level_values(d), dtype=object) for d in DIMENSIONS],
            names=list(DIMENSIONS),
        ),
        name="prediction",
    )
    grid = flat.reindex(full)
    n_missing = int(grid.isna().sum() - flat.isna().sum())
    if n_missing:
        raise ValueError(
            f"Prediction table is incomplete: {n_missing} of {len(full)} "
            "(origin, destination, country) combinations are missing."
        )
    if not np.all(np.isfinite(grid.to_numpy())):
        raise ValueError("Prediction table contains non-finite values.")
    return grid, levels


# ------------------------------------------------------------------ #
# Result
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class MarginDecomposition(_DictAccessMixin):
    """Intercept, margins and margin-free residual of one prediction table."""

    reference: ReferenceLevels
    levels: dict[str, list]
    """Ordered levels per dimension."""

    predictions: pd.Series
    """Input predictions on the full ``(origin, destination, country)`` grid."""

    intercept: float
    margin_country: pd.Series
    margin_origin: pd.Series
    margin_destination: pd.Series
    margin_country_origin: pd.Series
    """Indexed by ``(country, origin)``."""

    margin_country_destination: pd.Series
    """Indexed by ``(country, destination)``."""

    margin_free: pd.Series
    """Margin-free log-odds ratios, indexed like :attr:`predictions`."""

    _SERIALIZERS: ClassVar[dict[str, Any]] = {"reference": lambda r: r.as_dict()}

    @property
    def shape(self) -> tuple[int, int, int]:
        return tuple(len(self.levels[d]) for d in DIMENSIONS)  # type: ignore[return-value]

    def to_frame(self) -> pd.DataFrame:
        """Long frame with one column per component, indexed like the predictions."""
        idx = self.predictions.index
        country = idx.get_level_values("country")
        origin = idx.get_level_values("origin")
        destination = idx.get_level_values("destination")
        co_key = pd.MultiIndex.from_arrays([country, origin])
        cd_key = pd.MultiIndex.from_arrays([country, destination])
        return pd.DataFrame(
            {
                "prediction": self.predictions.to_numpy(),
                "intercept": np.full(len(idx), self.intercept),
                "margin_country": self.margin_country.reindex(country).to_numpy(),
                "margin_origin": self.margin_origin.reindex(origin).to_numpy(),
                "margin_destination": self.margin_destination.reindex(destination).to_numpy(),
                "margin_country_origin": self.margin_country_origin.reindex(co_key).to_numpy(),
                "margin_country_destination": self.margin_country_destination.reindex(
                    cd_key
                ).to_numpy(),
                "margin_free": self.margin_free.to_numpy(),
            },
            index=idx,
        )

    def reconstruct(self) -> pd.Series:
        """Sum every component back into a prediction table."""
        frame = self.to_frame().drop(columns="prediction")
        return frame.sum(axis=1).rename("prediction")


# ------------------------------------------------------------------ #
# Decomposition
# ------------------------------------------------------------------ #


def decompose_margins(
    predictions: pd.Series | pd.DataFrame,
    reference: ReferenceLevels | Mapping[str, Hashable] | tuple | None = None,
    *,
    value: str | None = None,
) -> MarginDecomposition:
    """Decompose log predictions into intercept, margins and margin-free terms.

    Pure function: nothing is cached or mutated between calls.

    Args:
        predictions: Log-scale predictions, either a Series indexed by
            ``(origin, destination, country)`` or a long DataFrame with
            those columns plus *value*.  One finite value per full
            combination of levels is required.
        reference: Reference levels; ``None`` takes the first level of
            every dimension (categorical order when the index is
            categorical, order of appearance otherwise).
        value: Value column when *predictions* is a DataFrame.

    Returns:
        A :class:`MarginDecomposition`.

    Raises:
        ValueError: If a reference level is not in its dimension, or if
            the table is incomplete or contains non-finite values.
    """
    eta, levels = _as_prediction_series(predictions, value)
    ref = ReferenceLevels.coerce(reference, levels)
    ref.validate(levels)
    r_o, r_d, r_c = ref.as_tuple()

    intercept = float(eta.loc[(r_o, r_d, r_c)])

    # ---- One-way margins: the other two dimensions at reference ----
    margin_country = eta.xs((r_o, r_d), level=["origin", "destination"]) - intercept
    margin_origin = eta.xs((r_d, r_c), level=["destination", "country"]) - intercept
    margin_destination = eta.xs((r_o, r_c), level=["origin", "country"]) - intercept
    margin_country = margin_country.reindex(levels["country"]).rename("margin_country")
    margin_origin = margin_origin.reindex(levels["origin"]).rename("margin_origin")
    margin_destination = margin_destination.reindex(levels["destination"]).rename(
        "margin_destination"
    )

    # ---- Two-way margins: third dimension at reference -------------
    # Computed for non-reference rows only, then reindexed onto the
    # full grid with zero fill.
    co = eta.xs(r_d, level="destination").reorder_levels(["country", "origin"])
    co = co[
        (co.index.get_level_values("country") != r_c)
        & (co.index.get_level_values("origin") != r_o)
    ]
    co = (
        co
        - intercept
        - margin_country.reindex(co.index.get_level_values("country")).to_numpy()
        - margin_origin.reindex(co.index.get_level_values("origin")).to_numpy()
    )
    co_full = pd.MultiIndex.from_product(
        [levels["country"], levels["origin"]], names=["country", "origin"]
    )
    margin_country_origin = co.reindex(co_full, fill_value=0.0).rename(
        "margin_country_origin"
    )

    cd = eta.xs(r_o, level="origin").reorder_levels(["country", "destination"])
    cd = cd[
        (cd.index.get_level_values("country") != r_c)
        & (cd.index.get_level_values("destination") != r_d)
    ]
    cd = (
        cd
        - intercept
        - margin_country.reindex(cd.index.get_level_values("country")).to_numpy()
        - margin_destination.reindex(cd.index.get_level_values("destination")).to_numpy()
    )
    cd_full = pd.MultiIndex.from_product(
        [levels["country"], levels["destination"]], names=["country", "destination"]
    )
    margin_country_destination = cd.reindex(cd_full, fill_value=0.0).rename(
        "margin_country_destination"
    )

    # ---- Residual association --------------------------------------
    idx = eta.index
    country = idx.get_level_values("country")
    origin = idx.get_level_values("origin")
    destination = idx.get_level_values("destination")
    free = (
        eta.to_numpy()
        - intercept
        - margin_country.reindex(country).to_numpy()
        - margin_origin.reindex(origin).to_numpy()
        - margin_destination.reindex(destination).to_numpy()
        - margin_country_origin.reindex(pd.MultiIndex.from_arrays([country, origin])).to_numpy()
        - margin_country_destination.reindex(
            pd.MultiIndex.from_arrays([country, destination])
        ).to_numpy()
    )
    margin_free = pd.Series(free, index=idx, name="margin_free")

    logger.debug(
        "Decomposed %d×%d×%d prediction table at reference %s.",
        *(len(levels[d]) for d in DIMENSIONS),
        ref.as_tuple(),
    )

    return MarginDecomposition(
        reference=ref,
        levels=levels,
        predictions=eta,
        intercept=intercept,
        margin_country=margin_country,
        margin_origin=margin_origin,
        margin_destination=margin_destination,
        margin_country_origin=margin_country_origin,
        margin_country_destination=margin_country_destination,
        margin_free=margin_free,
    )


def decompose_models(
    predictions_by_model: Mapping[K, pd.Series],
    reference: ReferenceLevels | Mapping[str, Hashable] | tuple | None = None,
) -> dict[K, MarginDecomposition]:
    """Apply :func:`decompose_margins` to several models' predictions.

    Models are processed in mapping order.  Every model must cover the
    same category domain.  The reference levels and the level order are
    taken from the first model and every later prediction grid is
    reindexed onto them, so the returned decompositions share one
    index.

    Args:
        predictions_by_model: Mapping from a model tag (normally a
            :class:`~mobility_tables.models.ModelKind`) to its
            log-scale prediction Series.
        reference: Reference levels, as for :func:`decompose_margins`.

    Raises:
        ValueError: If the models do not share one category domain.
    """
    out: dict[K, MarginDecomposition] = {}
    shared_levels: dict[str, list] | None = None
    shared_ref: ReferenceLevels | None = None
    for tag, preds in predictions_by_model.items():
        if shared_ref is None:
            result = decompose_margins(preds, reference)
            shared_levels, shared_ref = result.levels, result.reference
        else:
            eta, levels = _as_prediction_series(preds, None)
            for d in DIMENSIONS:
                if set(levels[d]) != set(shared_levels[d]):  # type: ignore[index]
                    raise ValueError(
                        f"Model {tag!r} has {d} levels {levels[d]}, "
                        f"expected {shared_levels[d]}."  # type: ignore[index]
                    )
            # Later models follow the first model's level and row order.
            grid = pd.MultiIndex.from_product(
                [shared_levels[d] for d in DIMENSIONS],  # type: ignore[index]
                names=list(DIMENSIONS),
            )
            result = decompose_margins(eta.reindex(grid), shared_ref)
        out[tag] = result
    return out


def margin_free_table(decomposition: MarginDecomposition, country: Hashable) -> pd.DataFrame:
    """Return the origin × destination matrix of margin-free values for *country*.

    Raises:
        ValueError: If *country* is not a level of the decomposition.
    """
    if country not in decomposition.levels["country"]:
        raise ValueError(
            f"Unknown country {country!r}; levels are {decomposition.levels['country']}."
        )
    layer = decomposition.margin_free.xs(country, level="country")
    return layer.unstack("destination").reindex(
        index=decomposition.levels["origin"],
        columns=decomposition.levels["destination"],
    )
