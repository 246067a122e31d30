"""Spherical covariance.

One variance ``σ²`` is shared by all ``p`` latent coordinates, and each
row has a single variational scale ``S_i`` (so ``S`` is a vector of
length ``n``).  With

    σ² = Σ_i w_i ‖M_i‖² / (w̄ p) + Σ_i w_i S_i² / w̄

profiled out, the objective is

    J(Θ, M, S) = Σ W(A − Y∘Z) − ½ p Σ_i w_i log S_i² + ½ w̄ p log σ²

with ``A = exp(Z + ½ S² 1ᵀ)`` and gradients

    ∂J/∂M   = W(M / σ² + A − Y)
    ∂J/∂S_i = w_i (S_i Σ_j A_ij − p / S_i + p S_i / σ²)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from ._common import linear_predictor, loglik_spherical, regression_gradient

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .._context import ObservationContext
    from ..optimizer import ObjectiveAndGrad
    from ..packing import Packer


def shared_variance(
    M: np.ndarray, S2: np.ndarray, w: np.ndarray, w_bar: float
) -> float:
    """``σ² = (Σ_i w_i ‖M_i‖²) / (w̄ p) + (Σ_i w_i S_i²) / w̄``."""
    p = M.shape[1]
    return float(w @ (M * M).sum(axis=1)) / (w_bar * p) + float(w @ S2) / w_bar


@dataclass(frozen=True)
class SphericalVariant:
    """Isotropic latent covariance ``σ² I``."""

    @property
    def name(self) -> str:
        return "spherical"

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
        return {"Theta": (p, d), "M": (n, p), "S": (n,)}

    def objective(self, packer: Packer, ctx: ObservationContext) -> ObjectiveAndGrad:
        theta_g, m_g, s_g = (packer.group(name) for name in self.parameter_names)
        Y, w, w_bar, p = ctx.Y, ctx.w, ctx.w_bar, ctx.p

        def objective_and_grad(parameters: np.ndarray, grad: np.ndarray) -> float:
            Theta = theta_g.unpack(parameters)
            M = m_g.unpack(parameters)
            S = s_g.unpack(parameters)

            S2 = S * S
            Z = linear_predictor(ctx, Theta, M)
            A = np.exp(Z + 0.5 * S2[:, None])
            sigma2 = shared_variance(M, S2, w, w_bar)
            objective = float(w @ (A - Y * Z).sum(axis=1))
            objective -= 0.5 * p * float(w @ np.log(S2))
            objective += 0.5 * w_bar * p * np.log(sigma2)

            theta_g.pack(grad, regression_gradient(A, ctx))
            m_g.pack(grad, w[:, None] * (M / sigma2 + A - Y))
            s_g.pack(grad, w * (S * A.sum(axis=1) - p / S + p * S / sigma2))
            return objective

        return objective_and_grad

    def finalize(
        self, packer: Packer, parameters: np.ndarray, ctx: ObservationContext
    ) -> dict[str, Any]:
        Theta = packer.unpack("Theta", parameters).copy()
        M = packer.unpack("M", parameters).copy()
        S = packer.unpack("S", parameters).copy()
        S2 = S * S

        sigma2 = shared_variance(M, S2, ctx.w, ctx.w_bar)
        identity = np.eye(ctx.p)
        Z = linear_predictor(ctx, Theta, M)
        A = np.exp(Z + 0.5 * S2[:, None])
        return {
            "Theta": Theta,
            "M": M,
            "S": S,
            "Z": Z,
            "A": A,
            "Sigma": sigma2 * identity,
            "Omega": identity / sigma2,
            "loglik": loglik_spherical(ctx, Z, A, M, S2, 1.0 / sigma2),
        }
