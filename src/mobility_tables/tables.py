"""Three-way mobility tables: validation, reshaping and simulation.

A mobility table cross-classifies respondents by class of origin,
class of destination and country.  Throughout the package it is held
in long format, one row per cell::

    origin  destination  country  freq
    I+II    I+II         EW        311
    I+II    III          EW        130
    ...

The three classification columns are converted to pandas categoricals
by :func:`validate_table`; their category order is the level order
used everywhere downstream (design matrices, reference levels,
heatmap axes).  Columns that already are categoricals keep their
declared order; plain columns use order of first appearance.

Simulation
~~~~~~~~~~
:func:`simulate_mobility_table` draws counts from a known
log-multiplicative layer effect ("unidiff") model::

    log μ_odc = λ_c + α_oc + β_dc + exp(φ_c) · ψ_od

with country-specific origin and destination margins, a common
log-odds-ratio pattern ψ (inheritance on the diagonal, decay with
class distance) and layer scores φ_c (φ = 0 in the first country).
It is the synthetic counterpart of the published comparative
mobility tables, and the model-recovery tests rely on it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import pandas as pd

from ._compat import TableLike, ensure_frame
from ._config import resolve_seed

logger = logging.getLogger(__name__)

DIMENSIONS: tuple[str, str, str] = ("origin", "destination", "country")
"""Column names of the three classification dimensions, in key order."""

EGP_CLASSES: tuple[str, ...] = ("I+II", "III", "IVab", "IVc", "V/VI", "VIIa", "VIIb")
"""Seven-class version of the Erikson–Goldthorpe–Portocarero schema."""

DEFAULT_COUNTRIES: tuple[str, ...] = ("EW", "FR", "SE")


# ------------------------------------------------------------------ #
# Validation
# ------------------------------------------------------------------ #


def _levels_of(col: pd.Series) -> list:
    if isinstance(col.dtype, pd.CategoricalDtype):
        present = set(col.dropna().unique())
        return [c for c in col.cat.categories if c in present]
    return list(pd.unique(col.dropna()))


def table_levels(table: TableLike) -> dict[str, list]:
    """Return the ordered levels of each classification dimension.

    Args:
        table: Long-format mobility table.

    Returns:
        ``{"origin": [...], "destination": [...], "country": [...]}``.
    """
    df = ensure_frame(table)
    missing = [d for d in DIMENSIONS if d not in df.columns]
    if missing:
        raise ValueError(f"Table is missing dimension column(s): {missing}.")
    return {d: _levels_of(df[d]) for d in DIMENSIONS}


def validate_table(table: TableLike, count: str = "freq") -> pd.DataFrame:
    """Check a mobility table and return a normalised copy.

    The returned frame has exactly the columns ``origin``,
    ``destination``, ``country`` and *count*, a fresh ``RangeIndex``,
    categorical dimension columns, float counts, and rows sorted by
    (country, origin, destination) level order.

    Args:
        table: Long-format mobility table (pandas or Polars).
        count: Name of the frequency column.

    Returns:
        A validated ``pandas.DataFrame``.

    Raises:
        ValueError: On missing columns, non-numeric, negative,
            fractional or NaN counts, duplicated cells, or an
            incomplete origin × destination × country grid.
    """
    df = ensure_frame(table)
    levels = table_levels(df)
    if count not in df.columns:
        raise ValueError(f"Table has no count column {count!r}.")

    counts = df[count]
    if not pd.api.types.is_numeric_dtype(counts):
        raise ValueError(f"Count column {count!r} must be numeric.")
    values = counts.to_numpy(dtype=float)
    if np.any(np.isnan(values)):
        raise ValueError(f"Count column {count!r} contains NaN values.")
    if np.any(values < 0):
        raise ValueError(f"Count column {count!r} contains negative values.")
    # Whole-number floats (3.0) are fine, genuinely fractional counts are not.
    if not np.allclose(values, np.round(values)):
        raise ValueError(f"Count column {count!r} must be integer-valued.")

    for dim in DIMENSIONS:
        if df[dim].isna().any():
            raise ValueError(f"Dimension column {dim!r} contains missing labels.")

    dup = df.duplicated(subset=list(DIMENSIONS))
    if dup.any():
        first = tuple(df.loc[dup, list(DIMENSIONS)].iloc[0])
        raise ValueError(
            f"Table has {int(dup.sum())} duplicated cell(s), e.g. {first}."
        )

    n_expected = int(np.prod([len(levels[d]) for d in DIMENSIONS]))
    if len(df) != n_expected:
        raise ValueError(
            f"Table is incomplete: {len(df)} cells present, "
            f"{n_expected} expected for a "
            + " × ".join(str(len(levels[d])) for d in DIMENSIONS)
            + " grid."
        )

    out = pd.DataFrame(
        {d: pd.Categorical(df[d], categories=levels[d]) for d in DIMENSIONS}
    )
    out[count] = values
    out = out.sort_values(["country", "origin", "destination"]).reset_index(drop=True)
    return out


# ------------------------------------------------------------------ #
# Reshaping
# ------------------------------------------------------------------ #


def to_array(
    table: TableLike, count: str = "freq"
) -> tuple[np.ndarray, dict[str, list]]:
    """Convert a long table to a dense ``(n_origin, n_destination, n_country)`` array.

    Returns:
        ``(array, levels)`` where *levels* gives the label of every
        position along each axis.
    """
    df = validate_table(table, count=count)
    levels = {d: list(df[d].cat.categories) for d in DIMENSIONS}
    arr = np.zeros(tuple(len(levels[d]) for d in DIMENSIONS), dtype=float)
    codes = tuple(df[d].cat.codes.to_numpy() for d in DIMENSIONS)
    arr[codes] = df[count].to_numpy()
    return arr, levels


def from_array(
    array: np.ndarray,
    levels: dict[str, Sequence] | None = None,
    count: str = "freq",
) -> pd.DataFrame:
    """Convert a dense three-way array back to a long mobility table.

    Args:
        array: Array of shape ``(n_origin, n_destination, n_country)``.
        levels: Labels per axis.  Defaults to ``0..n-1`` for each axis.
        count: Name of the frequency column to create.

    Raises:
        ValueError: If *array* is not three-dimensional or the label
            lengths do not match its shape.
    """
    arr = np.asarray(array, dtype=float)
    if arr.ndim != 3:
        raise ValueError(f"Expected a 3-dimensional array, got ndim={arr.ndim}.")
    if levels is None:
        levels = {d: list(range(n)) for d, n in zip(DIMENSIONS, arr.shape)}
    for d, n in zip(DIMENSIONS, arr.shape):
        if len(levels[d]) != n:
            raise ValueError(
                f"{len(levels[d])} labels given for {d!r}, array axis has {n}."
            )
    index = pd.MultiIndex.from_product(
        [list(levels[d]) for d in DIMENSIONS], names=list(DIMENSIONS)
    )
    df = pd.DataFrame({count: arr.reshape(-1)}, index=index).reset_index()
    for d in DIMENSIONS:
        df[d] = pd.Categorical(df[d], categories=list(levels[d]))
    return df.sort_values(["country", "origin", "destination"]).reset_index(drop=True)


# ------------------------------------------------------------------ #
# Derived factors
# ------------------------------------------------------------------ #
#
# Quasi-symmetry needs one extra factor with a level per unordered
# origin/destination pair.  It is built from the level positions so
# that the labels do not depend on row order.


def symmetric_pair(origin: pd.Series, destination: pd.Series) -> pd.Series:
    """Label each cell by its unordered (origin, destination) pair.

    Origin and destination must share the same level set.  The label
    lists the earlier level first, so ``(III, I+II)`` and
    ``(I+II, III)`` both map to ``"I+II|III"``.

    Raises:
        ValueError: If origin and destination levels differ.
    """
    o_levels = _levels_of(origin)
    d_levels = _levels_of(destination)
    if set(o_levels) != set(d_levels):
        raise ValueError(
            "Quasi-symmetry requires origin and destination to share levels."
        )
    position = {lvl: i for i, lvl in enumerate(o_levels)}
    labels = [
        f"{a}|{b}" if position[a] <= position[b] else f"{b}|{a}"
        for a, b in zip(origin.astype(object), destination.astype(object))
    ]
    return pd.Series(labels, index=origin.index, name="symm")


# ------------------------------------------------------------------ #
# Simulation
# ------------------------------------------------------------------ #


def _default_association(n_classes: int, inheritance: float) -> np.ndarray:
    """Distance-decay association with a diagonal bonus, zeroed at level 0."""
    pos = np.arange(n_classes, dtype=float)
    psi = -np.abs(pos[:, None] - pos[None, :]) / max(n_classes - 1, 1) * 2.0
    psi += inheritance * np.eye(n_classes)
    # Normalise so the first row and column are zero; any other
    # normalisation differs only by terms absorbed into the margins.
    psi = psi - psi[:1, :] - psi[:, :1] + psi[0, 0]
    return psi


def simulate_mobility_table(
    classes: Sequence[str] = EGP_CLASSES,
    countries: Sequence[str] | int = DEFAULT_COUNTRIES,
    *,
    n_per_country: int = 5000,
    layer_scores: Sequence[float] | None = None,
    association: np.ndarray | None = None,
    inheritance: float = 1.0,
    margin_scale: float = 0.5,
    seed: int | None = None,
    count: str = "freq",
    return_truth: bool = False,
) -> pd.DataFrame | tuple[pd.DataFrame, dict[str, object]]:
    """Draw a synthetic mobility table from a unidiff model.

    Args:
        classes: Class labels, shared by origin and destination.
        countries: Country labels, or an integer number of countries
            (labelled ``C01``, ``C02``, …).
        n_per_country: Expected sample size in every country.
        layer_scores: φ_c per country.  The first country is the
            reference and should be 0.  Defaults to a linear sequence
            from 0 down to −0.5 (fluidity increasing across countries).
        association: Common log-odds-ratio pattern ψ, shape
            ``(n_classes, n_classes)``.  Defaults to distance decay plus
            a diagonal inheritance term.
        inheritance: Size of the diagonal term in the default ψ.
        margin_scale: Standard deviation of the random origin and
            destination margins.
        seed: Random seed; ``None`` uses :func:`get_random_seed`.
        count: Name of the frequency column.
        return_truth: Also return the generating parameters.

    Returns:
        The long-format table, or ``(table, truth)`` where *truth* has
        keys ``"layer_scores"`` (Series by country) and
        ``"association"`` (origin × destination DataFrame).
    """
    if isinstance(countries, int):
        countries = [f"C{i + 1:02d}" for i in range(countries)]
    classes = list(classes)
    countries = list(countries)
    k, n_c = len(classes), len(countries)

    if layer_scores is None:
        phi = np.linspace(0.0, -0.5, n_c)
    else:
        phi = np.asarray(layer_scores, dtype=float)
        if phi.shape != (n_c,):
            raise ValueError(
                f"layer_scores has shape {phi.shape}, expected ({n_c},)."
            )
    psi = (
        _default_association(k, inheritance)
        if association is None
        else np.asarray(association, dtype=float)
    )
    if psi.shape != (k, k):
        raise ValueError(f"association has shape {psi.shape}, expected ({k}, {k}).")

    rng = np.random.default_rng(resolve_seed(seed))
    alpha = rng.normal(0.0, margin_scale, size=(k, n_c))
    beta = rng.normal(0.0, margin_scale, size=(k, n_c))

    log_mu = alpha[:, None, :] + beta[None, :, :] + np.exp(phi)[None, None, :] * psi[:, :, None]
    # Scale each country layer to the requested expected total.
    mu = np.exp(log_mu)
    mu *= n_per_country / mu.sum(axis=(0, 1), keepdims=True)
    counts = rng.poisson(mu)

    logger.debug(
        "Simulated %d×%d×%d mobility table (N=%d).", k, k, n_c, int(counts.sum())
    )

    table = from_array(
        counts,
        {"origin": classes, "destination": classes, "country": countries},
        count=count,
    )
    if not return_truth:
        return table
    truth: dict[str, object] = {
        "layer_scores": pd.Series(phi, index=pd.Index(countries, name="country")),
        "association": pd.DataFrame(
            psi,
            index=pd.Index(classes, name="origin"),
            columns=pd.Index(classes, name="destination"),
        ),
    }
    return table, truth
