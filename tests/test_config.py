"""Tests for the output-directory and random-seed configuration."""

import os
from pathlib import Path

import pytest

from mobility_tables._config import (
    get_output_dir,
    get_random_seed,
    resolve_seed,
    set_output_dir,
    set_random_seed,
)


def _reset():
    import mobility_tables._config as _cfg

    _cfg._output_dir_override = None
    _cfg._seed_override = None
    os.environ.pop("MOBILITY_TABLES_OUTPUT_DIR", None)
    os.environ.pop("MOBILITY_TABLES_SEED", None)


class TestGetOutputDir:
    """Tests for get_output_dir() resolution order."""

    def setup_method(self):
        _reset()

    def teardown_method(self):
        _reset()

    def test_default(self):
        assert get_output_dir() == Path("figures")

    def test_env_var_overrides_default(self):
        os.environ["MOBILITY_TABLES_OUTPUT_DIR"] = "/tmp/mobility-figs"
        assert get_output_dir() == Path("/tmp/mobility-figs")

    def test_blank_env_var_ignored(self):
        os.environ["MOBILITY_TABLES_OUTPUT_DIR"] = "   "
        assert get_output_dir() == Path("figures")

    def test_programmatic_override_wins_over_env(self):
        os.environ["MOBILITY_TABLES_OUTPUT_DIR"] = "from-env"
        set_output_dir("from-code")
        assert get_output_dir() == Path("from-code")

    def test_none_restores_resolution(self):
        set_output_dir("from-code")
        set_output_dir(None)
        assert get_output_dir() == Path("figures")


class TestRandomSeed:
    """Tests for get_random_seed() / set_random_seed()."""

    def setup_method(self):
        _reset()

    def teardown_method(self):
        _reset()

    def test_default(self):
        assert get_random_seed() == 42

    def test_env_var(self):
        os.environ["MOBILITY_TABLES_SEED"] = "123"
        assert get_random_seed() == 123

    def test_env_var_not_integer(self):
        os.environ["MOBILITY_TABLES_SEED"] = "abc"
        with pytest.raises(ValueError, match="must be an integer"):
            get_random_seed()

    def test_programmatic_override_wins_over_env(self):
        os.environ["MOBILITY_TABLES_SEED"] = "123"
        set_random_seed(9)
        assert get_random_seed() == 9

    def test_rejects_negative(self):
        with pytest.raises(ValueError, match="non-negative"):
            set_random_seed(-1)

    def test_resolve_seed_prefers_explicit(self):
        set_random_seed(9)
        assert resolve_seed(5) == 5
        assert resolve_seed(None) == 9
