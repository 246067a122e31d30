"""Observation context — the fixed data every objective evaluation reads.

An :class:`ObservationContext` bundles the observation data (counts,
covariates, offsets, row weights) with the parameters that a variant
holds fixed (a caller-supplied precision matrix, or regression
coefficients for the VE-step variants).  It is built once per call,
validated eagerly, and then captured by the variant's objective
closure — the Python counterpart of the opaque user-data pointer that
C-style optimizer callbacks receive.

The context is read-only for the duration of a fit and carries no
per-run state, so the same context may be shared by concurrent fits on
the same dataset.

Shapes::

    Y      (n, p)   non-negative counts (as floats)
    X      (n, d)   covariates, d may be 0
    O      (n, p)   offsets
    w      (n,)     non-negative row weights
    Theta  (p, d)   fixed regression coefficients (VE steps only)
    Omega  (p, p)   fixed precision matrix (sparse and VE steps only)
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Any

import numpy as np

from ._compat import _ensure_float_array

# ------------------------------------------------------------------ #
# Stirling approximation of log(y!)
# ------------------------------------------------------------------ #


def logfact(Y: np.ndarray) -> np.ndarray:
    """Row sums of a Stirling-type approximation of ``log(y!)``.

    Uses Ramanujan's refinement
    ``y log y - y + log(8y³ + 4y² + y + 1/30) / 6 + log(π) / 2``.
    Zeros are replaced by ones first, which also maps ``0 · log 0`` to
    zero.  The approximation at ``y = 1`` is close to, but not exactly,
    ``log(1!) = 0``; every variant uses the same value so the offset
    cancels in comparisons.

    Args:
        Y: Count matrix ``(n, p)``.

    Returns:
        Vector ``(n,)``.
    """
    y = np.where(Y == 0.0, 1.0, Y)
    terms = (
        y * np.log(y)
        - y
        + np.log(8.0 * y**3 + 4.0 * y**2 + y + 1.0 / 30.0) / 6.0
        + 0.5 * np.log(np.pi)
    )
    return terms.sum(axis=1)


def ki(Y: np.ndarray) -> np.ndarray:
    """Per-row normalising term shared by every variant's log-likelihood.

    ``ki(Y) = -logfact(Y) + 0.5 * (1 + (1 - p) * log(2π))``.
    """
    p = Y.shape[1]
    return -logfact(Y) + 0.5 * (1.0 + (1.0 - p) * np.log(2.0 * np.pi))


# ------------------------------------------------------------------ #
# ObservationContext
# ------------------------------------------------------------------ #


@dataclass(frozen=True, eq=False)
class ObservationContext:
    """Observation data plus fixed parameters for one fit.

    Build instances through :meth:`from_arrays`, which converts and
    validates the inputs.  Direct construction skips validation.
    """

    Y: np.ndarray
    X: np.ndarray
    O: np.ndarray  # noqa: E741
    w: np.ndarray
    Theta: np.ndarray | None = None
    Omega: np.ndarray | None = None

    @classmethod
    def from_arrays(
        cls,
        Y: Any,
        X: Any,
        O: Any,  # noqa: E741
        w: Any,
        *,
        Theta: Any = None,
        Omega: Any = None,
    ) -> ObservationContext:
        """Convert and validate observation data.

        Args:
            Y: Counts ``(n, p)``.
            X: Covariates ``(n, d)``; ``d`` may be zero.
            O: Offsets ``(n, p)``.
            w: Row weights ``(n,)``.
            Theta: Optional fixed coefficients ``(p, d)``.
            Omega: Optional fixed precision matrix ``(p, p)``.

        Raises:
            ValueError: On any shape mismatch, negative or non-finite
                counts or weights, or weights summing to zero.
            TypeError: On non-numeric or unrecognised inputs.
        """
        Y_arr = _ensure_float_array(Y, name="Y", ndim=2)
        X_arr = _ensure_float_array(X, name="X", ndim=2)
        O_arr = _ensure_float_array(O, name="O", ndim=2)
        w_arr = _ensure_float_array(w, name="w", ndim=1)

        n, p = Y_arr.shape
        d = X_arr.shape[1]
        _check_shape("X", X_arr, (n, d), against="Y")
        _check_shape("O", O_arr, (n, p), against="Y")
        _check_shape("w", w_arr, (n,), against="Y")

        if not np.all(np.isfinite(Y_arr)) or np.any(Y_arr < 0):
            raise ValueError("Y must contain finite, non-negative counts.")
        if not np.all(np.isfinite(w_arr)) or np.any(w_arr < 0):
            raise ValueError("w must contain finite, non-negative weights.")
        if not w_arr.sum() > 0:
            raise ValueError("w must have a positive sum.")

        Theta_arr = None
        if Theta is not None:
            Theta_arr = _ensure_float_array(Theta, name="Theta", ndim=2)
            _check_shape("Theta", Theta_arr, (p, d), against="Y and X")
        Omega_arr = None
        if Omega is not None:
            Omega_arr = _ensure_float_array(Omega, name="Omega", ndim=2)
            _check_shape("Omega", Omega_arr, (p, p), against="Y")

        return cls(Y_arr, X_arr, O_arr, w_arr, Theta=Theta_arr, Omega=Omega_arr)

    # ---- Dimensions -------------------------------------------------

    @property
    def n(self) -> int:
        return self.Y.shape[0]

    @property
    def p(self) -> int:
        return self.Y.shape[1]

    @property
    def d(self) -> int:
        return self.X.shape[1]

    # ---- Derived constants ------------------------------------------

    @cached_property
    def w_bar(self) -> float:
        """Total weight ``Σ w_i``."""
        return float(self.w.sum())

    @cached_property
    def ki(self) -> np.ndarray:
        """``ki(Y)``, computed once per context."""
        return ki(self.Y)

    @cached_property
    def weighted_X(self) -> np.ndarray:
        """``diag(w) · X``, reused by every regression gradient."""
        return self.X * self.w[:, None]

    def require_fixed(self, *names: str) -> None:
        """Raise ``ValueError`` if a fixed parameter was not supplied."""
        missing = [name for name in names if getattr(self, name) is None]
        if missing:
            raise ValueError(f"this variant requires fixed parameters {missing}.")


def _check_shape(
    name: str, arr: np.ndarray, expected: tuple[int, ...], *, against: str
) -> None:
    if arr.shape != expected:
        raise ValueError(
            f"'{name}' has shape {arr.shape}, expected {expected} "
            f"to match {against}."
        )


__all__ = ["ObservationContext", "ki", "logfact"]
