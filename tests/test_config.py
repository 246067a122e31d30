"""Tests for the default-algorithm configuration."""

import os

import pytest

from pln_variational import ConfigurationError, SUPPORTED_ALGORITHMS
from pln_variational._config import (
    get_default_algorithm,
    normalise_algorithm,
    set_default_algorithm,
)


class TestGetDefaultAlgorithm:
    """Tests for get_default_algorithm() resolution order."""

    def setup_method(self):
        """Reset state before each test."""
        import pln_variational._config as _cfg
        _cfg._algorithm_override = None
        os.environ.pop("PLN_VARIATIONAL_ALGORITHM", None)

    def teardown_method(self):
        """Reset state after each test."""
        import pln_variational._config as _cfg
        _cfg._algorithm_override = None
        os.environ.pop("PLN_VARIATIONAL_ALGORITHM", None)

    def test_builtin_default(self):
        assert get_default_algorithm() == "CCSAQ"

    def test_env_var_overrides_builtin(self):
        os.environ["PLN_VARIATIONAL_ALGORITHM"] = "LBFGS"
        assert get_default_algorithm() == "LBFGS"

    def test_env_var_case_insensitive(self):
        os.environ["PLN_VARIATIONAL_ALGORITHM"] = "tNewton"
        assert get_default_algorithm() == "TNEWTON"

    def test_blank_env_var_ignored(self):
        os.environ["PLN_VARIATIONAL_ALGORITHM"] = "   "
        assert get_default_algorithm() == "CCSAQ"

    def test_invalid_env_var_rejected(self):
        os.environ["PLN_VARIATIONAL_ALGORITHM"] = "COBYLA"
        with pytest.raises(ConfigurationError, match="COBYLA"):
            get_default_algorithm()

    def test_programmatic_override_wins_over_env(self):
        os.environ["PLN_VARIATIONAL_ALGORITHM"] = "LBFGS"
        set_default_algorithm("var2")
        assert get_default_algorithm() == "VAR2"

    def test_auto_restores_default(self):
        set_default_algorithm("mma")
        assert get_default_algorithm() == "MMA"
        set_default_algorithm("auto")
        assert get_default_algorithm() == "CCSAQ"


class TestNormaliseAlgorithm:
    def test_every_supported_name_round_trips(self):
        for name in SUPPORTED_ALGORITHMS:
            assert normalise_algorithm(name.lower()) == name

    def test_rejects_unknown_name_listing_supported(self):
        with pytest.raises(ConfigurationError) as excinfo:
            normalise_algorithm("SLSQP")
        message = str(excinfo.value)
        assert "'SLSQP'" in message
        for name in SUPPORTED_ALGORITHMS:
            assert name in message

    def test_rejects_non_string(self):
        with pytest.raises(ConfigurationError, match="string"):
            normalise_algorithm(11)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            set_default_algorithm("newton")
