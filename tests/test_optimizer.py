"""Tests for the nlopt optimizer driver."""

import numpy as np
import pytest

nlopt = pytest.importorskip("nlopt")

import pln_variational._config as _cfg  # noqa: E402
from pln_variational import (  # noqa: E402
    ConfigurationError,
    OptimizationStatus,
    OptimizerAdapterError,
    OptimizerConfiguration,
    Packer,
    minimize_objective,
    set_default_algorithm,
)
from pln_variational.optimizer import (  # noqa: E402
    _ObjectiveAdapter,
    _status_from_exception,
)

# ------------------------------------------------------------------ #
# Shared fixtures
# ------------------------------------------------------------------ #

_TIGHT = {
    "xtol_abs": 1e-6,
    "xtol_rel": 1e-6,
    "ftol_abs": 1e-6,
    "ftol_rel": 1e-6,
    "maxeval": 100,
    "maxtime": 100,
}


def _square(x, grad):
    grad[:] = 2.0 * x
    return float(x @ x)


def _rosenbrock(x, grad):
    a, b = x
    grad[0] = -2.0 * (1.0 - a) - 400.0 * a * (b - a * a)
    grad[1] = 200.0 * (b - a * a)
    return float((1.0 - a) ** 2 + 100.0 * (b - a * a) ** 2)


class _Recorder:
    """Objective wrapper that records every evaluated value."""

    def __init__(self, fn):
        self.fn = fn
        self.values = []

    def __call__(self, x, grad):
        value = self.fn(x, grad)
        self.values.append(value)
        return value


@pytest.fixture()
def scalar_packer():
    return Packer([("x", (1,))])


@pytest.fixture(autouse=True)
def _reset_algorithm(monkeypatch):
    monkeypatch.delenv("PLN_VARIATIONAL_ALGORITHM", raising=False)
    _cfg._algorithm_override = None
    yield
    _cfg._algorithm_override = None


# ------------------------------------------------------------------ #
# TestMinimizeObjective
# ------------------------------------------------------------------ #


class TestMinimizeObjective:
    def test_trivial_convergence(self, scalar_packer):
        config = OptimizerConfiguration.from_mapping(
            {"algorithm": "LBFGS", **_TIGHT}, scalar_packer
        )
        x = np.array([42.0])
        result = minimize_objective(x, config, _square)
        assert abs(x[0]) < 1e-5
        assert result.status != OptimizationStatus.FAILURE
        assert result.objective == pytest.approx(0.0, abs=1e-9)

    def test_iterations_count_every_evaluation(self, scalar_packer):
        config = OptimizerConfiguration.from_mapping(
            {"algorithm": "LBFGS", **_TIGHT}, scalar_packer
        )
        recorder = _Recorder(_square)
        result = minimize_objective(np.array([42.0]), config, recorder)
        assert result.iterations == len(recorder.values)
        assert result.iterations > 0

    def test_reported_objective_is_best_evaluated(self, scalar_packer):
        config = OptimizerConfiguration.from_mapping(
            {"algorithm": "LBFGS", **_TIGHT}, scalar_packer
        )
        recorder = _Recorder(_square)
        result = minimize_objective(np.array([42.0]), config, recorder)
        assert result.objective <= recorder.values[0]
        assert result.objective == pytest.approx(min(recorder.values))

    @pytest.mark.parametrize("algorithm", ["LBFGS", "MMA", "CCSAQ", "TNEWTON"])
    def test_algorithms_solve_quadratic(self, algorithm):
        packer = Packer([("x", (3,))])
        config = OptimizerConfiguration.from_mapping(
            {"algorithm": algorithm, "ftol_abs": 1e-14}, packer
        )
        x = np.array([3.0, -2.0, 1.0])
        result = minimize_objective(x, config, _square)
        assert result.status != OptimizationStatus.FAILURE
        np.testing.assert_allclose(x, 0.0, atol=1e-3)

    def test_evaluation_limit_is_data_not_error(self):
        packer = Packer([("x", (2,))])
        config = OptimizerConfiguration.from_mapping(
            {"algorithm": "LBFGS", "maxeval": 3}, packer
        )
        x = np.array([-1.2, 1.0])
        result = minimize_objective(x, config, _rosenbrock)
        assert result.status == OptimizationStatus.MAXEVAL_REACHED
        assert result.status.is_limit
        assert 3 <= result.iterations < 10
        assert np.all(np.isfinite(x))

    def test_parameters_updated_in_place(self, scalar_packer):
        config = OptimizerConfiguration.from_mapping({"algorithm": "LBFGS"}, scalar_packer)
        x = np.array([5.0])
        before = x
        minimize_objective(x, config, _square)
        assert x is before
        assert abs(x[0]) < 1e-3


# ------------------------------------------------------------------ #
# TestConfigurationRejection
# ------------------------------------------------------------------ #


class TestConfigurationRejection:
    def test_unsupported_algorithm_fails_before_evaluation(self, scalar_packer):
        recorder = _Recorder(_square)
        with pytest.raises(ConfigurationError, match="Unsupported algorithm name"):
            config = OptimizerConfiguration.from_mapping(
                {"algorithm": "NELDERMEAD"}, scalar_packer
            )
            minimize_objective(np.array([1.0]), config, recorder)
        assert recorder.values == []

    def test_error_lists_supported_algorithms(self, scalar_packer):
        with pytest.raises(ConfigurationError, match="LBFGS_NOCEDAL.*CCSAQ"):
            OptimizerConfiguration.from_mapping({"algorithm": "bfgs"}, scalar_packer)

    def test_xtol_abs_length_mismatch(self):
        config = OptimizerConfiguration(
            algorithm="LBFGS",
            xtol_abs=np.zeros(3),
            xtol_rel=1e-6,
            ftol_abs=0.0,
            ftol_rel=0.0,
            maxeval=10,
            maxtime=-1,
        )
        recorder = _Recorder(_square)
        with pytest.raises(ConfigurationError, match="3 elements"):
            minimize_objective(np.array([1.0, 2.0]), config, recorder)
        assert recorder.values == []

    def test_xtol_abs_group_shape_mismatch(self):
        packer = Packer([("M", (2, 3))])
        with pytest.raises(ConfigurationError, match="expected \\(2, 3\\)"):
            OptimizerConfiguration.from_mapping({"xtol_abs": {"M": np.zeros((3, 2))}}, packer)

    def test_unknown_key(self, scalar_packer):
        with pytest.raises(ConfigurationError, match="unknown configuration keys"):
            OptimizerConfiguration.from_mapping({"max_eval": 10}, scalar_packer)

    def test_non_integer_maxeval(self, scalar_packer):
        with pytest.raises(ConfigurationError, match="maxeval"):
            OptimizerConfiguration.from_mapping({"maxeval": 10.5}, scalar_packer)

    def test_maxeval_must_fit_c_int(self, scalar_packer):
        with pytest.raises(ConfigurationError, match="maxeval must fit in a C int"):
            OptimizerConfiguration.from_mapping({"maxeval": 2**40}, scalar_packer)

    def test_parameters_must_be_float_vector(self, scalar_packer):
        config = OptimizerConfiguration.from_mapping({}, scalar_packer)
        with pytest.raises(ValueError, match="1-D float64"):
            minimize_objective(np.array([1]), config, _square)

    def test_defaults(self, scalar_packer):
        config = OptimizerConfiguration.from_mapping({}, scalar_packer)
        assert config.algorithm == "CCSAQ"
        assert config.xtol_rel == 1e-6
        assert config.ftol_rel == 1e-8
        assert config.maxeval == 10_000
        assert config.maxtime == -1.0
        np.testing.assert_array_equal(config.xtol_abs, [0.0])

    def test_default_algorithm_override(self, scalar_packer):
        set_default_algorithm("mma")
        config = OptimizerConfiguration.from_mapping({}, scalar_packer)
        assert config.algorithm == "MMA"

    def test_explicit_algorithm_is_case_insensitive(self, scalar_packer):
        config = OptimizerConfiguration.from_mapping(
            {"algorithm": " tnewton_precond "}, scalar_packer
        )
        assert config.algorithm == "TNEWTON_PRECOND"


# ------------------------------------------------------------------ #
# TestObjectiveFailures
# ------------------------------------------------------------------ #


class TestObjectiveFailures:
    def test_objective_exception_propagates(self, scalar_packer):
        config = OptimizerConfiguration.from_mapping({"algorithm": "LBFGS"}, scalar_packer)

        def broken(x, grad):
            raise ZeroDivisionError("boom")

        with pytest.raises(ZeroDivisionError, match="boom"):
            minimize_objective(np.array([1.0]), config, broken)

    def test_mid_run_exception_stops_run_unchanged(self):
        packer = Packer([("x", (2,))])
        config = OptimizerConfiguration.from_mapping({"algorithm": "LBFGS"}, packer)
        calls = []

        def fails_on_third_call(x, grad):
            calls.append(x.copy())
            if len(calls) == 3:
                raise ZeroDivisionError("boom")
            return _square(x, grad)

        with pytest.raises(ZeroDivisionError, match="boom"):
            minimize_objective(np.array([3.0, 4.0]), config, fails_on_third_call)
        assert len(calls) == 3

    def test_refused_creation(self, scalar_packer, monkeypatch):
        def refuse(*args):
            raise MemoryError()

        monkeypatch.setattr(nlopt, "opt", refuse)
        config = OptimizerConfiguration.from_mapping({"algorithm": "LBFGS"}, scalar_packer)
        recorder = _Recorder(_square)
        with pytest.raises(OptimizerAdapterError, match="could not create"):
            minimize_objective(np.array([1.0]), config, recorder)
        assert recorder.values == []

    def test_refused_setter(self, scalar_packer, monkeypatch):
        real_opt = nlopt.opt

        class _RefusesMaxeval:
            def __init__(self, *args):
                self._handle = real_opt(*args)

            def set_maxeval(self, value):
                raise OverflowError("in method 'opt_set_maxeval'")

            def __getattr__(self, name):
                return getattr(self._handle, name)

        monkeypatch.setattr(nlopt, "opt", _RefusesMaxeval)
        config = OptimizerConfiguration.from_mapping({"algorithm": "LBFGS"}, scalar_packer)
        recorder = _Recorder(_square)
        with pytest.raises(OptimizerAdapterError, match="set_maxeval"):
            minimize_objective(np.array([1.0]), config, recorder)
        assert recorder.values == []

    def test_status_translation(self):
        assert _status_from_exception(nlopt.RoundoffLimited()) == (
            OptimizationStatus.ROUNDOFF_LIMITED
        )
        assert _status_from_exception(nlopt.ForcedStop()) == OptimizationStatus.FORCED_STOP
        assert _status_from_exception(RuntimeError("nlopt failure")) == (
            OptimizationStatus.FAILURE
        )

    def test_invalid_arguments_become_adapter_errors(self):
        with pytest.raises(OptimizerAdapterError, match="invalid arguments"):
            _status_from_exception(ValueError("nlopt invalid argument"))
        with pytest.raises(OptimizerAdapterError, match="out of memory"):
            _status_from_exception(MemoryError())


# ------------------------------------------------------------------ #
# TestObjectiveAdapter
# ------------------------------------------------------------------ #


class TestObjectiveAdapter:
    def test_tracks_best_point(self):
        adapter = _ObjectiveAdapter(_square, 1)
        for value in (3.0, 1.0, 2.0):
            adapter(np.array([value]), np.empty(1))
        assert adapter.iterations == 3
        assert adapter.has_best
        assert adapter.best_value == 1.0
        np.testing.assert_array_equal(adapter.best_point, [1.0])

    def test_gradient_written_in_place(self):
        adapter = _ObjectiveAdapter(_square, 2)
        grad = np.zeros(2)
        adapter(np.array([1.0, -3.0]), grad)
        np.testing.assert_array_equal(grad, [2.0, -6.0])

    def test_empty_gradient_request(self):
        adapter = _ObjectiveAdapter(_square, 2)
        value = adapter(np.array([1.0, 2.0]), np.empty(0))
        assert value == 5.0

    def test_stores_first_objective_error(self):
        calls = []

        def broken(x, grad):
            calls.append(1)
            raise KeyError("M")

        adapter = _ObjectiveAdapter(broken, 1)
        with pytest.raises(nlopt.ForcedStop) as info:
            adapter(np.array([0.0]), np.empty(1))
        assert isinstance(info.value.__cause__, KeyError)
        assert isinstance(adapter.error, KeyError)

        with pytest.raises(nlopt.ForcedStop):
            adapter(np.array([0.0]), np.empty(1))
        assert len(calls) == 1
        assert adapter.iterations == 1


# ------------------------------------------------------------------ #
# TestOptimizationStatus
# ------------------------------------------------------------------ #


class TestOptimizationStatus:
    def test_codes_match_nlopt(self):
        assert OptimizationStatus.SUCCESS == nlopt.SUCCESS
        assert OptimizationStatus.XTOL_REACHED == nlopt.XTOL_REACHED
        assert OptimizationStatus.MAXEVAL_REACHED == nlopt.MAXEVAL_REACHED
        assert OptimizationStatus.ROUNDOFF_LIMITED == nlopt.ROUNDOFF_LIMITED

    def test_success_and_limit_helpers(self):
        assert OptimizationStatus.FTOL_REACHED.is_success
        assert not OptimizationStatus.FTOL_REACHED.is_limit
        assert OptimizationStatus.MAXTIME_REACHED.is_success
        assert OptimizationStatus.MAXTIME_REACHED.is_limit
        assert not OptimizationStatus.FAILURE.is_success
