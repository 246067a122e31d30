"""Typed result objects for optimizer runs and model fits.

Frozen dataclasses that provide:

* **Attribute access** — ``result.status``, ``result.M``, etc.
* **Dict-like access** — ``result["M"]``, ``result.get("Sigma")``,
  ``"Omega" in result`` for callers used to list-style results.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with NumPy types converted to native Python and status codes
  rendered as integers.

Two result types exist:

* :class:`OptimizationResult` — what the optimizer driver reports:
  termination status, final objective, evaluation count.
* :class:`PLNFitResult` — what a model variant reports after its
  post-run step: the converged parameters plus derived quantities.

Both are frozen to communicate that results are a snapshot of a
completed run.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from .optimizer import OptimizationStatus

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types.

    Handles nested dicts, lists, np.ndarray, np.integer, np.floating,
    and integer enums so that :meth:`to_dict` returns a fully
    JSON-serialisable structure.
    """
    if isinstance(obj, enum.IntEnum):
        return int(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports three access patterns:

    1. ``result["key"]``     — raises ``KeyError`` on miss
    2. ``result.get(key, d)`` — returns *d* on miss (default ``None``)
    3. ``"key" in result``   — membership test

    Fields holding ``None`` (quantities a variant does not produce)
    count as missing for all three patterns and are left out of
    :meth:`to_dict`.
    """

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        value = getattr(self, key, None) if isinstance(key, str) else None
        if value is None:
            raise KeyError(key)
        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        value = getattr(self, key, None)
        return default if value is None else value

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return key in self._field_names() and getattr(self, key) is not None

    @classmethod
    def _field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary, skipping ``None`` fields."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            val = getattr(self, f.name)
            if val is None:
                continue
            result[f.name] = _numpy_to_python(val)
        return result


# ------------------------------------------------------------------ #
# OptimizationResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class OptimizationResult(_DictAccessMixin):
    """Outcome of one optimizer run.

    The optimized parameters are not part of the result: the driver
    overwrites the caller's parameter vector in place.

    Attributes:
        status: nlopt termination code.
        objective: Objective value at the final point (``nan`` when the
            run stopped before any evaluation).
        iterations: Number of objective evaluations.
    """

    status: OptimizationStatus
    objective: float
    iterations: int

    @property
    def converged(self) -> bool:
        return self.status.is_success


# ------------------------------------------------------------------ #
# PLNFitResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class PLNFitResult(_DictAccessMixin):
    """Result of fitting one model variant.

    All fields are accessible both as attributes (``result.M``) and via
    dict syntax (``result["M"]``).  Quantities a variant does not
    produce are ``None``: ``B`` only exists for the rank-constrained
    variant, ``Theta`` / ``Sigma`` / ``Omega`` are absent from VE-step
    fits, and so on.

    Attributes:
        variant: Registry name of the fitted variant.
        status: nlopt termination code.
        iterations: Number of objective evaluations.
        objective: Final value of the minimized objective.
        Theta: Regression coefficients ``(p, d)``.
        B: Loading matrix ``(p, q)`` (rank variant).
        M: Variational means ``(n, p)`` or ``(n, q)``.
        S: Variational scales ``(n, p)``, ``(n, q)`` or ``(n,)``;
            variances are ``S ** 2``.
        Z: Linear predictor ``(n, p)``.
        A: Variational mean of the counts ``(n, p)``.
        Sigma: Covariance estimate ``(p, p)``.
        Omega: Precision estimate ``(p, p)``.
        loglik: Per-row variational log-likelihood ``(n,)``.
    """

    variant: str
    status: OptimizationStatus
    iterations: int
    objective: float
    M: np.ndarray
    S: np.ndarray
    Z: np.ndarray
    A: np.ndarray
    loglik: np.ndarray
    Theta: np.ndarray | None = None
    B: np.ndarray | None = None
    Sigma: np.ndarray | None = None
    Omega: np.ndarray | None = None

    @property
    def converged(self) -> bool:
        """Whether nlopt reported a successful termination."""
        return self.status.is_success

    @property
    def total_loglik(self) -> float:
        """Sum of the per-row log-likelihood."""
        return float(np.sum(self.loglik))


__all__ = ["OptimizationResult", "PLNFitResult"]
