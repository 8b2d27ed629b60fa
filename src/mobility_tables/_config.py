"""Runtime configuration for the mobility_tables package.

Two settings are resolved here: the directory that figures are written
to and the default random seed used by the simulators, the
cross-validation fold split and the NUTS sampler key.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_output_dir` /
       :func:`set_random_seed`.
    2. The ``MOBILITY_TABLES_OUTPUT_DIR`` / ``MOBILITY_TABLES_SEED``
       environment variables.
    3. Defaults: ``./figures`` and ``42``.

Examples:
    Redirect figures from the shell::

        export MOBILITY_TABLES_OUTPUT_DIR=/tmp/mobility

    Fix the seed programmatically::

        import mobility_tables
        mobility_tables.set_random_seed(2024)

    Restore the default resolution order::

        mobility_tables.set_random_seed(None)
"""

from __future__ import annotations

import os
from pathlib import Path

_DEFAULT_OUTPUT_DIR = "figures"
_DEFAULT_SEED = 42

# Sentinels indicating "no programmatic override has been set".
_output_dir_override: Path | None = None
_seed_override: int | None = None


def get_output_dir() -> Path:
    """Return the directory that figures are written to.

    The directory is not created here; the plotting functions create it
    lazily when they save a file.

    Returns:
        A :class:`pathlib.Path`.
    """
    # 1. Programmatic override
    if _output_dir_override is not None:
        return _output_dir_override

    # 2. Environment variable
    env = os.environ.get("MOBILITY_TABLES_OUTPUT_DIR", "").strip()
    if env:
        return Path(env)

    # 3. Default
    return Path(_DEFAULT_OUTPUT_DIR)


def set_output_dir(path: str | os.PathLike[str] | None) -> None:
    """Override the figure output directory.

    Args:
        path: Target directory, or ``None`` to restore the default
            resolution order.
    """
    global _output_dir_override
    _output_dir_override = None if path is None else Path(path)


def get_random_seed() -> int:
    """Return the default random seed.

    Raises:
        ValueError: If ``MOBILITY_TABLES_SEED`` is set but is not an
            integer.
    """
    if _seed_override is not None:
        return _seed_override

    env = os.environ.get("MOBILITY_TABLES_SEED", "").strip()
    if env:
        try:
            return int(env)
        except ValueError:
            raise ValueError(
                f"MOBILITY_TABLES_SEED must be an integer, got {env!r}."
            ) from None

    return _DEFAULT_SEED


def set_random_seed(seed: int | None) -> None:
    """Override the default random seed.

    Args:
        seed: A non-negative integer, or ``None`` to restore the
            default resolution order.

    Raises:
        ValueError: If *seed* is negative.
    """
    global _seed_override
    if seed is not None and int(seed) < 0:
        raise ValueError(f"Random seed must be non-negative, got {seed}.")
    _seed_override = None if seed is None else int(seed)


def resolve_seed(seed: int | None) -> int:
    """Return *seed* when given, otherwise the configured default."""
    return get_random_seed() if seed is None else int(seed)
