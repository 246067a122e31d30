"""Diagonal covariance.

Latent coordinates are independent with per-column variances

    σ²_j = Σ_i w_i (M²_ij + S²_ij) / w̄

profiled out of the objective:

    J(Θ, M, S) = Σ W(A − Y∘Z − ½ log S²) + ½ w̄ Σ_j log σ²_j

    ∂J/∂M = W(M / σ² + A − Y)
    ∂J/∂S = W(S / σ² + S∘A − 1/S)

(divisions by ``σ²`` are column-wise).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from ._common import linear_predictor, loglik_diagonal, regression_gradient

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .._context import ObservationContext
    from ..optimizer import ObjectiveAndGrad
    from ..packing import Packer


def column_variances(
    M: np.ndarray, S2: np.ndarray, w: np.ndarray, w_bar: float
) -> np.ndarray:
    """``σ²_j = Σ_i w_i (M² + S²)_ij / w̄``."""
    return (w @ (M * M + S2)) / w_bar


@dataclass(frozen=True)
class DiagonalVariant:
    """Independent latent coordinates with their own variances."""

    @property
    def name(self) -> str:
        return "diagonal"

    @property
    def parameter_names(self) -> tuple[str, ...]:
        return ("Theta", "M", "S")

    @property
    def fixed_names(self) -> tuple[str, ...]:
        return ()

    def expected_shapes(
        self, ctx: ObservationContext, init: Mapping[str, np.ndarray]
    ) -> dict[str, tuple[int, ...]]:
        n, p, d = ctx.n, ctx.p, ctx.d
        return {"Theta": (p, d), "M": (n, p), "S": (n, p)}

    def objective(self, packer: Packer, ctx: ObservationContext) -> ObjectiveAndGrad:
        theta_g, m_g, s_g = (packer.group(name) for name in self.parameter_names)
        Y, w, w_bar = ctx.Y, ctx.w[:, None], ctx.w_bar

        def objective_and_grad(parameters: np.ndarray, grad: np.ndarray) -> float:
            Theta = theta_g.unpack(parameters)
            M = m_g.unpack(parameters)
            S = s_g.unpack(parameters)

            S2 = S * S
            Z = linear_predictor(ctx, Theta, M)
            A = np.exp(Z + 0.5 * S2)
            sigma2 = column_variances(M, S2, ctx.w, w_bar)
            objective = float(np.sum(w * (A - Y * Z - 0.5 * np.log(S2))))
            objective += 0.5 * w_bar * float(np.sum(np.log(sigma2)))

            theta_g.pack(grad, regression_gradient(A, ctx))
            m_g.pack(grad, w * (M / sigma2 + A - Y))
            s_g.pack(grad, w * (S / sigma2 + S * A - 1.0 / S))
            return objective

        return objective_and_grad

    def finalize(
        self, packer: Packer, parameters: np.ndarray, ctx: ObservationContext
    ) -> dict[str, Any]:
        Theta = packer.unpack("Theta", parameters).copy()
        M = packer.unpack("M", parameters).copy()
        S = packer.unpack("S", parameters).copy()
        S2 = S * S

        sigma2 = column_variances(M, S2, ctx.w, ctx.w_bar)
        omega2 = 1.0 / sigma2
        Z = linear_predictor(ctx, Theta, M)
        A = np.exp(Z + 0.5 * S2)
        return {
            "Theta": Theta,
            "M": M,
            "S": S,
            "Z": Z,
            "A": A,
            "Sigma": np.diag(sigma2),
            "Omega": np.diag(omega2),
            "loglik": loglik_diagonal(ctx, Z, A, M, S2, omega2),
        }
