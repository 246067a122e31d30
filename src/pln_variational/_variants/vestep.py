"""Variational E-steps.

The model parameters ``Θ`` and ``Ω`` are supplied by the caller and held
fixed; only the variational parameters ``M`` and ``S`` are optimized.
These variants are the inner step of alternating schemes and of
prediction on new rows, so no regression gradient is produced.

Each one mirrors the covariance structure of a full fit:

* :class:`VEStepFullVariant` uses the whole of ``Ω``;
* :class:`VEStepDiagonalVariant` uses ``ω = diag(Ω)``;
* :class:`VEStepSphericalVariant` uses ``ω = Ω[0, 0]`` and a single
  variational scale per row.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from ._common import (
    fixed_precision_objective,
    linear_predictor,
    loglik_diagonal,
    loglik_full,
    loglik_spherical,
    symmetrised,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .._context import ObservationContext
    from ..optimizer import ObjectiveAndGrad
    from ..packing import Packer


class _VEStep:
    """Shared plumbing: parameter names, fixed inputs and shapes."""

    @property
    def parameter_names(self) -> tuple[str, ...]:
        return ("M", "S")

    @property
    def fixed_names(self) -> tuple[str, ...]:
        return ("Theta", "Omega")

    def expected_shapes(
        self, ctx: ObservationContext, init: Mapping[str, np.ndarray]
    ) -> dict[str, tuple[int, ...]]:
        return {"M": (ctx.n, ctx.p), "S": (ctx.n, ctx.p)}

    def _unpack(
        self, packer: Packer, parameters: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        return (
            packer.unpack("M", parameters).copy(),
            packer.unpack("S", parameters).copy(),
        )


# ------------------------------------------------------------------ #
# Full precision
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class VEStepFullVariant(_VEStep):
    """E-step under a fixed full precision matrix."""

    @property
    def name(self) -> str:
        return "vestep_full"

    def objective(self, packer: Packer, ctx: ObservationContext) -> ObjectiveAndGrad:
        ctx.require_fixed(*self.fixed_names)
        m_g, s_g = (packer.group(name) for name in self.parameter_names)
        Omega = symmetrised(ctx.Omega)

        def objective_and_grad(parameters: np.ndarray, grad: np.ndarray) -> float:
            M = m_g.unpack(parameters)
            S = s_g.unpack(parameters)

            Z = linear_predictor(ctx, ctx.Theta, M)
            objective, _, grad_M, grad_S = fixed_precision_objective(ctx, Z, M, S, Omega)
            m_g.pack(grad, grad_M)
            s_g.pack(grad, grad_S)
            return objective

        return objective_and_grad

    def finalize(
        self, packer: Packer, parameters: np.ndarray, ctx: ObservationContext
    ) -> dict[str, Any]:
        M, S = self._unpack(packer, parameters)
        S2 = S * S
        Omega = symmetrised(ctx.Omega)
        _, logdet_Omega = np.linalg.slogdet(Omega)
        Z = linear_predictor(ctx, ctx.Theta, M)
        A = np.exp(Z + 0.5 * S2)
        return {
            "M": M,
            "S": S,
            "Z": Z,
            "A": A,
            "loglik": loglik_full(ctx, Z, A, M, S2, Omega, float(logdet_Omega)),
        }


# ------------------------------------------------------------------ #
# Diagonal precision
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class VEStepDiagonalVariant(_VEStep):
    """E-step using only the diagonal of the fixed precision matrix.

    ``J(M, S) = Σ W(A − Y∘Z − ½ log S²) + ½ wᵀ(M² + S²) ω``
    """

    @property
    def name(self) -> str:
        return "vestep_diagonal"

    def objective(self, packer: Packer, ctx: ObservationContext) -> ObjectiveAndGrad:
        ctx.require_fixed(*self.fixed_names)
        m_g, s_g = (packer.group(name) for name in self.parameter_names)
        Y, w = ctx.Y, ctx.w[:, None]
        omega2 = np.diag(ctx.Omega).copy()

        def objective_and_grad(parameters: np.ndarray, grad: np.ndarray) -> float:
            M = m_g.unpack(parameters)
            S = s_g.unpack(parameters)

            S2 = S * S
            Z = linear_predictor(ctx, ctx.Theta, M)
            A = np.exp(Z + 0.5 * S2)
            objective = float(np.sum(w * (A - Y * Z - 0.5 * np.log(S2))))
            objective += 0.5 * float(ctx.w @ (M * M + S2) @ omega2)

            m_g.pack(grad, w * (M * omega2 + A - Y))
            s_g.pack(grad, w * (S * omega2 + S * A - 1.0 / S))
            return objective

        return objective_and_grad

    def finalize(
        self, packer: Packer, parameters: np.ndarray, ctx: ObservationContext
    ) -> dict[str, Any]:
        M, S = self._unpack(packer, parameters)
        S2 = S * S
        Z = linear_predictor(ctx, ctx.Theta, M)
        A = np.exp(Z + 0.5 * S2)
        omega2 = np.diag(ctx.Omega).copy()
        return {
            "M": M,
            "S": S,
            "Z": Z,
            "A": A,
            "loglik": loglik_diagonal(ctx, Z, A, M, S2, omega2),
        }


# ------------------------------------------------------------------ #
# Spherical precision
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class VEStepSphericalVariant(_VEStep):
    """E-step under ``Ω = ω I`` with ``ω = Ω[0, 0]``.

    ``S`` holds one scale per row, as in the spherical fit:

    ``J(M, S) = Σ W(A − Y∘Z) − ½ p Σ w log S² + ½ ω Σ_i w_i (‖M_i‖² + p S_i²)``
    """

    @property
    def name(self) -> str:
        return "vestep_spherical"

    def expected_shapes(
        self, ctx: ObservationContext, init: Mapping[str, np.ndarray]
    ) -> dict[str, tuple[int, ...]]:
        return {"M": (ctx.n, ctx.p), "S": (ctx.n,)}

    def objective(self, packer: Packer, ctx: ObservationContext) -> ObjectiveAndGrad:
        ctx.require_fixed(*self.fixed_names)
        m_g, s_g = (packer.group(name) for name in self.parameter_names)
        Y, w, p = ctx.Y, ctx.w, ctx.p
        omega2 = float(ctx.Omega[0, 0])

        def objective_and_grad(parameters: np.ndarray, grad: np.ndarray) -> float:
            M = m_g.unpack(parameters)
            S = s_g.unpack(parameters)

            S2 = S * S
            Z = linear_predictor(ctx, ctx.Theta, M)
            A = np.exp(Z + 0.5 * S2[:, None])
            objective = float(w @ (A - Y * Z).sum(axis=1))
            objective -= 0.5 * p * float(w @ np.log(S2))
            objective += 0.5 * omega2 * float(w @ ((M * M).sum(axis=1) + p * S2))

            m_g.pack(grad, w[:, None] * (M * omega2 + A - Y))
            s_g.pack(grad, w * (S * A.sum(axis=1) - p / S + p * omega2 * S))
            return objective

        return objective_and_grad

    def finalize(
        self, packer: Packer, parameters: np.ndarray, ctx: ObservationContext
    ) -> dict[str, Any]:
        M, S = self._unpack(packer, parameters)
        S2 = S * S
        Z = linear_predictor(ctx, ctx.Theta, M)
        A = np.exp(Z + 0.5 * S2[:, None])
        return {
            "M": M,
            "S": S,
            "Z": Z,
            "A": A,
            "loglik": loglik_spherical(ctx, Z, A, M, S2, float(ctx.Omega[0, 0])),
        }
