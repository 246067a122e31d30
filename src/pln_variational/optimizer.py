"""Optimizer driver — a safety-checked adapter around nlopt.

:func:`minimize_objective` runs one nlopt local optimization over a
packed parameter vector.  The objective is an ordinary Python callable

    objective_and_grad(parameters, gradient) -> float

that reads the current trial point from *parameters*, writes the
gradient **in place** into *gradient*, and returns the objective value.
Both arrays have length ``parameters.size``.

Life of a call
~~~~~~~~~~~~~~
1. **Validation** — the configuration is checked against the parameter
   vector (``xtol_abs`` length).  Nothing has been allocated yet, so a
   :class:`~pln_variational.ConfigurationError` leaks no resources.
2. **Creation** — one ``nlopt.opt`` handle sized to the parameters.
3. **Configuration** — tolerances and limits are set one at a time; any
   setter nlopt refuses becomes an
   :class:`~pln_variational.OptimizerAdapterError`.
4. **Run** — nlopt drives the objective through
   :class:`_ObjectiveAdapter` until a stopping criterion fires.
5. **Release** — the handle is dropped on every exit path.

Zero-copy callback
~~~~~~~~~~~~~~~~~~
The nlopt binding hands the callback NumPy arrays that wrap its own C
buffers.  The adapter passes them straight through: the objective's
writes into *gradient* are what nlopt reads back, and *parameters* is
exactly nlopt's current trial point.  Model objectives unpack both with
:meth:`~pln_variational.packing.Packer.unpack`, which returns views, so
no evaluation copies the parameter vector.

Termination is data
~~~~~~~~~~~~~~~~~~~
Hitting ``maxeval`` / ``maxtime``, round-off limitation, a forced stop,
or nlopt's generic failure are all reported through
:class:`OptimizationStatus` rather than raised: the caller gets the
best point seen so far and decides whether it is good enough.  The
Python binding signals the last three as exceptions, so the driver
translates them back into status codes and restores the best evaluated
point into the parameter vector.  Exceptions raised by the objective
itself are not optimizer outcomes and propagate unchanged.
"""

from __future__ import annotations

import enum
import logging
import math
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import nlopt
import numpy as np

from ._config import SUPPORTED_ALGORITHMS, get_default_algorithm, normalise_algorithm
from ._exceptions import ConfigurationError, OptimizerAdapterError
from ._results import OptimizationResult

if TYPE_CHECKING:
    from .packing import Packer

logger = logging.getLogger(__name__)

ObjectiveAndGrad = Callable[[np.ndarray, np.ndarray], float]
"""``(parameters, gradient_out) -> value``; fills ``gradient_out`` in place."""

# ------------------------------------------------------------------ #
# Status codes
# ------------------------------------------------------------------ #


class OptimizationStatus(enum.IntEnum):
    """nlopt termination codes.

    Positive values are successful terminations (including reaching an
    evaluation or time limit); negative values are failures.
    """

    SUCCESS = 1
    STOPVAL_REACHED = 2
    FTOL_REACHED = 3
    XTOL_REACHED = 4
    MAXEVAL_REACHED = 5
    MAXTIME_REACHED = 6
    FAILURE = -1
    INVALID_ARGS = -2
    OUT_OF_MEMORY = -3
    ROUNDOFF_LIMITED = -4
    FORCED_STOP = -5

    @property
    def is_success(self) -> bool:
        return self.value > 0

    @property
    def is_limit(self) -> bool:
        """True when an evaluation or wall-time budget stopped the run."""
        return self in (
            OptimizationStatus.MAXEVAL_REACHED,
            OptimizationStatus.MAXTIME_REACHED,
        )


# ------------------------------------------------------------------ #
# Configuration
# ------------------------------------------------------------------ #

# Host-package defaults for keys the caller leaves out.
_DEFAULTS: dict[str, Any] = {
    "xtol_abs": 0.0,
    "xtol_rel": 1e-6,
    "ftol_abs": 0.0,
    "ftol_rel": 1e-8,
    "maxeval": 10_000,
    "maxtime": -1.0,
}

_CONFIG_KEYS = frozenset({"algorithm", *_DEFAULTS})

# nlopt stores the evaluation limit in a C int.
_INT_MAX = 2**31 - 1


@dataclass(frozen=True, eq=False)
class OptimizerConfiguration:
    """Settings for one optimizer run.

    Attributes:
        algorithm: Name from :data:`SUPPORTED_ALGORITHMS`.
        xtol_abs: Per-element absolute parameter tolerance, one value
            per packed parameter.
        xtol_rel: Relative parameter tolerance.
        ftol_abs: Absolute objective tolerance.
        ftol_rel: Relative objective tolerance.
        maxeval: Maximum number of objective evaluations (``<= 0``
            disables the limit).
        maxtime: Maximum wall-clock time in seconds (``<= 0`` disables
            the limit).
    """

    algorithm: str
    xtol_abs: np.ndarray = field(repr=False)
    xtol_rel: float
    ftol_abs: float
    ftol_rel: float
    maxeval: int
    maxtime: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "algorithm", normalise_algorithm(self.algorithm))
        xtol_abs = np.asarray(self.xtol_abs, dtype=np.float64)
        if xtol_abs.ndim != 1:
            raise ConfigurationError(
                f"xtol_abs must be a vector, got shape {xtol_abs.shape}."
            )
        object.__setattr__(self, "xtol_abs", xtol_abs)
        for name in ("xtol_rel", "ftol_abs", "ftol_rel", "maxtime"):
            object.__setattr__(self, name, _as_float(name, getattr(self, name)))
        object.__setattr__(self, "maxeval", _as_int("maxeval", self.maxeval))

    @classmethod
    def from_mapping(
        cls, mapping: Mapping[str, Any], packer: Packer
    ) -> OptimizerConfiguration:
        """Build a configuration from plain values.

        ``xtol_abs`` has special handling because it carries one value
        per parameter element.  It is either a single number used for
        every element, or a mapping with one entry per parameter group
        whose values are numbers or arrays of the group's shape (see
        :meth:`~pln_variational.packing.Packer.build_tolerance`).

        Missing keys take the host-package defaults; a missing
        ``algorithm`` resolves through
        :func:`~pln_variational.get_default_algorithm`.

        Args:
            mapping: Configuration values keyed by field name.
            packer: Layout of the parameters being optimized.

        Raises:
            ConfigurationError: On unknown keys, an unsupported
                algorithm, or a malformed ``xtol_abs``.
        """
        if not isinstance(mapping, Mapping):
            raise ConfigurationError(
                f"configuration must be a mapping, got {type(mapping).__name__}."
            )
        unknown = sorted(set(mapping) - _CONFIG_KEYS)
        if unknown:
            raise ConfigurationError(
                f"unknown configuration keys {unknown}; "
                f"valid keys are {sorted(_CONFIG_KEYS)}."
            )
        values = {**_DEFAULTS, **mapping}
        algorithm = mapping.get("algorithm")
        if algorithm is None:
            algorithm = get_default_algorithm()

        return cls(
            algorithm=normalise_algorithm(algorithm),
            xtol_abs=packer.build_tolerance(values["xtol_abs"]),
            xtol_rel=values["xtol_rel"],
            ftol_abs=values["ftol_abs"],
            ftol_rel=values["ftol_rel"],
            maxeval=values["maxeval"],
            maxtime=values["maxtime"],
        )


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got bool.")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"{name} must be a number, got {type(value).__name__}."
        ) from None


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not float(_as_float(name, value)).is_integer():
        raise ConfigurationError(f"{name} must be an integer, got {value!r}.")
    if not -_INT_MAX - 1 <= int(value) <= _INT_MAX:
        raise ConfigurationError(
            f"{name} must fit in a C int (at most {_INT_MAX}), got {value!r}."
        )
    return int(value)


# ------------------------------------------------------------------ #
# Callback adapter
# ------------------------------------------------------------------ #


class _ObjectiveAdapter:
    """Callable handed to ``nlopt.opt.set_min_objective``.

    Plays the role of the opaque user-data pointer of the C interface:
    it owns the evaluation counter, the wrapped objective, and a copy of
    the best point evaluated so far.  The first exception raised by the
    objective is stored and the run is aborted with
    ``nlopt.ForcedStop``; later calls stop again without evaluating.
    """

    def __init__(self, objective_and_grad: ObjectiveAndGrad, n: int) -> None:
        self.objective_and_grad = objective_and_grad
        self.iterations = 0
        self.best_value = math.inf
        self.best_point = np.empty(n, dtype=np.float64)
        self.has_best = False
        self.error: BaseException | None = None
        # Gradient sink for evaluations where nlopt asks for no gradient.
        self._scratch = np.empty(n, dtype=np.float64)

    def __call__(self, x: np.ndarray, grad: np.ndarray) -> float:
        if self.error is not None:
            raise nlopt.ForcedStop()
        self.iterations += 1
        gradient = grad if grad.size > 0 else self._scratch
        try:
            value = float(self.objective_and_grad(x, gradient))
        except BaseException as exc:
            self.error = exc
            raise nlopt.ForcedStop() from exc
        if value < self.best_value:
            self.best_value = value
            np.copyto(self.best_point, x)
            self.has_best = True
        return value


# ------------------------------------------------------------------ #
# nlopt handle management
# ------------------------------------------------------------------ #


@contextmanager
def _nlopt_handle(algorithm: str, n: int) -> Iterator[Any]:
    """Create an ``nlopt.opt`` and release it when the block exits."""
    try:
        handle = nlopt.opt(getattr(nlopt, f"LD_{algorithm}"), n)
    except (
        AttributeError,
        ValueError,
        RuntimeError,
        MemoryError,
        TypeError,
        OverflowError,
    ) as exc:
        raise OptimizerAdapterError(
            f"nlopt could not create a {algorithm} optimizer of dimension {n}."
        ) from exc
    try:
        yield handle
    finally:
        del handle


def _configure(handle: Any, config: OptimizerConfiguration) -> None:
    """Apply tolerances and limits; any refusal is fatal."""
    setters = (
        ("set_xtol_abs", config.xtol_abs),
        ("set_xtol_rel", config.xtol_rel),
        ("set_ftol_abs", config.ftol_abs),
        ("set_ftol_rel", config.ftol_rel),
        ("set_maxeval", config.maxeval),
        ("set_maxtime", config.maxtime),
    )
    for setter, value in setters:
        try:
            getattr(handle, setter)(value)
        except (
            ValueError, RuntimeError, MemoryError, TypeError, OverflowError
        ) as exc:
            raise OptimizerAdapterError(f"nlopt rejected {setter}({value!r}).") from exc


def _status_from_exception(exc: Exception) -> OptimizationStatus:
    """Map an exception raised by ``nlopt.opt.optimize`` to a status.

    Invalid arguments and memory exhaustion mean no optimization could
    meaningfully happen; they are re-raised as adapter errors.
    """
    if isinstance(exc, nlopt.RoundoffLimited):
        return OptimizationStatus.ROUNDOFF_LIMITED
    if isinstance(exc, nlopt.ForcedStop):
        return OptimizationStatus.FORCED_STOP
    if isinstance(exc, MemoryError):
        raise OptimizerAdapterError("nlopt ran out of memory.") from exc
    if isinstance(exc, ValueError):
        raise OptimizerAdapterError("nlopt reported invalid arguments.") from exc
    if isinstance(exc, RuntimeError):
        return OptimizationStatus.FAILURE
    raise exc


# ------------------------------------------------------------------ #
# Driver
# ------------------------------------------------------------------ #


def minimize_objective(
    parameters: np.ndarray,
    config: OptimizerConfiguration,
    objective_and_grad: ObjectiveAndGrad,
) -> OptimizationResult:
    """Minimize *objective_and_grad* starting from *parameters*.

    Args:
        parameters: 1-D float64 start point.  Overwritten in place with
            the final (or best evaluated) point.
        config: Optimizer settings; ``config.xtol_abs`` must have one
            entry per parameter.
        objective_and_grad: ``(parameters, gradient_out) -> value``.
            Must fill ``gradient_out`` in place.

    Returns:
        :class:`~pln_variational.OptimizationResult` with the nlopt
        status, the final objective value, and the number of objective
        evaluations.

    Raises:
        ConfigurationError: If ``config.xtol_abs`` does not match the
            parameter count.
        OptimizerAdapterError: If nlopt refuses creation or any setter.
        ValueError: If *parameters* is not a writable 1-D float64
            array.
    """
    if not (
        isinstance(parameters, np.ndarray)
        and parameters.ndim == 1
        and parameters.dtype == np.float64
        and parameters.flags.writeable
    ):
        raise ValueError("parameters must be a writable 1-D float64 array.")
    n = parameters.size
    if config.xtol_abs.size != n:
        raise ConfigurationError(
            f"config.xtol_abs has {config.xtol_abs.size} elements, "
            f"parameters have {n}."
        )

    adapter = _ObjectiveAdapter(objective_and_grad, n)
    logger.debug("Starting nlopt %s on %d parameters", config.algorithm, n)

    with _nlopt_handle(config.algorithm, n) as handle:
        _configure(handle, config)
        try:
            handle.set_min_objective(adapter)
        except (ValueError, RuntimeError, TypeError) as exc:
            raise OptimizerAdapterError("nlopt rejected set_min_objective.") from exc

        try:
            x_final = handle.optimize(parameters)
        except Exception as exc:  # noqa: BLE001
            if adapter.error is not None:
                raise adapter.error from None
            status = _status_from_exception(exc)
            logger.debug("nlopt stopped with %s: %s", status.name, exc)
            if adapter.has_best:
                np.copyto(parameters, adapter.best_point)
            objective = adapter.best_value if adapter.has_best else math.nan
        else:
            status = OptimizationStatus(handle.last_optimize_result())
            objective = float(handle.last_optimum_value())
            np.copyto(parameters, x_final)

    logger.debug(
        "nlopt %s finished: status=%s, evaluations=%d, objective=%.6g",
        config.algorithm,
        status.name,
        adapter.iterations,
        objective,
    )
    return OptimizationResult(
        status=status, objective=objective, iterations=adapter.iterations
    )


__all__ = [
    "SUPPORTED_ALGORITHMS",
    "ObjectiveAndGrad",
    "OptimizationStatus",
    "OptimizerConfiguration",
    "minimize_objective",
]
