"""One-call analysis of a three-way mobility table.

:func:`analyze_mobility_table` validates the table once, fits each
requested model in turn, lines the fits up in a comparison table and
decomposes every model's log predictions into margins and margin-free
association against one shared set of reference levels.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Mapping, Sequence

from ._compat import TableLike
from ._results import LoglinearFit, MobilityAnalysis
from .comparison import compare_models
from .decomposition import ReferenceLevels, decompose_models
from .models import LoglinearModel, ModelKind, resolve_model
from .tables import table_levels, validate_table

logger = logging.getLogger(__name__)

DEFAULT_MODELS: tuple[ModelKind, ...] = (
    ModelKind.CONDITIONAL_INDEPENDENCE,
    ModelKind.CONSTANT_ASSOCIATION,
    ModelKind.QUASI_SYMMETRY,
    ModelKind.UNIDIFF,
    ModelKind.SATURATED,
)
"""Models fitted by default; the Lasso is opt-in because of its CV cost."""


def analyze_mobility_table(
    table: TableLike,
    models: Sequence[ModelKind | str | LoglinearModel] = DEFAULT_MODELS,
    reference: ReferenceLevels | Mapping[str, Hashable] | tuple | None = None,
    count: str = "freq",
) -> MobilityAnalysis:
    """Fit, compare and decompose a set of models on one table.

    Args:
        table: Long-format table with ``origin``, ``destination``,
            ``country`` and *count* columns.
        models: Model tags, their string values or pre-configured
            model instances, fitted in this order.  The first model is
            the rG² baseline of the comparison table.
        reference: Reference levels for the decomposition; ``None``
            takes the first level of every dimension.
        count: Name of the frequency column.

    Returns:
        A :class:`~mobility_tables._results.MobilityAnalysis`.

    Raises:
        ValueError: If *models* is empty, names an unknown model or
            lists the same model twice, or if *reference* is not a
            level of the table.
    """
    if not models:
        raise ValueError("At least one model is required.")
    df = validate_table(table, count=count)
    levels = table_levels(df)
    ref = ReferenceLevels.coerce(reference, levels)
    ref.validate(levels)

    fits: dict[ModelKind, LoglinearFit] = {}
    for spec in models:
        model = resolve_model(spec)
        if model.kind in fits:
            raise ValueError(f"Model {model.kind.value!r} was requested more than once.")
        logger.info("Fitting %s model.", model.name)
        fits[model.kind] = model.fit(df, count=count)

    comparison = compare_models(fits)
    decompositions = decompose_models(
        {kind: fit.log_fitted for kind, fit in fits.items()}, ref
    )
    return MobilityAnalysis(
        fits=fits,
        comparison=comparison,
        decompositions=decompositions,
        reference=ref,
        count=count,
    )
