"""Rank-constrained covariance.

The latent layer lives in ``q < p`` dimensions and is mapped to the
``p`` count columns by a loading matrix ``B`` (``p × q``), so that
``Σ = B Bᵀ`` up to the variational moments.  The rank ``q`` is read
from the shape of the initial ``B``.

    Z = O + XΘᵀ + MBᵀ
    A = exp(Z + ½ S² (B∘B)ᵀ)
    J(Θ, B, M, S) = Σ W(A − Y∘Z) + ½ Σ W(M² + S² − log S² − 1)

    ∂J/∂B = (W(A − Y))ᵀ M + (Aᵀ W S²) ∘ B
    ∂J/∂M = W((A − Y) B + M)
    ∂J/∂S = W(S − 1/S + (A (B∘B)) ∘ S)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from ._common import linear_predictor, regression_gradient, weighted_moments

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .._context import ObservationContext
    from ..optimizer import ObjectiveAndGrad
    from ..packing import Packer


@dataclass(frozen=True)
class RankVariant:
    """Low-rank latent covariance through a ``(p, q)`` loading matrix."""

    @property
    def name(self) -> str:
        return "rank"

    @property
    def parameter_names(self) -> tuple[str, ...]:
        return ("Theta", "B", "M", "S")

    @property
    def fixed_names(self) -> tuple[str, ...]:
        return ()

    def expected_shapes(
        self, ctx: ObservationContext, init: Mapping[str, np.ndarray]
    ) -> dict[str, tuple[int, ...]]:
        n, p, d = ctx.n, ctx.p, ctx.d
        B = np.asarray(init["B"])
        if B.ndim != 2:
            raise ValueError(f"'B' must be 2-dimensional, got shape {B.shape}.")
        q = B.shape[1]
        if not 1 <= q < p:
            raise ValueError(
                "rank variant needs a latent dimension q with 1 <= q < p, "
                f"got q={q} for p={p}."
            )
        return {"Theta": (p, d), "B": (p, q), "M": (n, q), "S": (n, q)}

    def objective(self, packer: Packer, ctx: ObservationContext) -> ObjectiveAndGrad:
        theta_g, b_g, m_g, s_g = (packer.group(name) for name in self.parameter_names)
        Y, w = ctx.Y, ctx.w[:, None]

        def objective_and_grad(parameters: np.ndarray, grad: np.ndarray) -> float:
            Theta = theta_g.unpack(parameters)
            B = b_g.unpack(parameters)
            M = m_g.unpack(parameters)
            S = s_g.unpack(parameters)

            S2 = S * S
            B2 = B * B
            Z = linear_predictor(ctx, Theta, M @ B.T)
            A = np.exp(Z + 0.5 * S2 @ B2.T)
            objective = float(np.sum(w * (A - Y * Z)))
            objective += 0.5 * float(np.sum(w * (M * M + S2 - np.log(S2) - 1.0)))

            residual = A - Y
            theta_g.pack(grad, regression_gradient(A, ctx))
            b_g.pack(grad, (w * residual).T @ M + (A.T @ (w * S2)) * B)
            m_g.pack(grad, w * (residual @ B + M))
            s_g.pack(grad, w * (S - 1.0 / S + (A @ B2) * S))
            return objective

        return objective_and_grad

    def finalize(
        self, packer: Packer, parameters: np.ndarray, ctx: ObservationContext
    ) -> dict[str, Any]:
        Theta = packer.unpack("Theta", parameters).copy()
        B = packer.unpack("B", parameters).copy()
        M = packer.unpack("M", parameters).copy()
        S = packer.unpack("S", parameters).copy()
        S2 = S * S

        Sigma = B @ weighted_moments(M, S2, ctx.w) @ B.T / ctx.w_bar
        Z = linear_predictor(ctx, Theta, M @ B.T)
        A = np.exp(Z + 0.5 * S2 @ (B * B).T)
        loglik = (
            (ctx.Y * Z - A).sum(axis=1)
            - 0.5 * (M * M + S2 - np.log(S2) - 1.0).sum(axis=1)
            + ctx.ki
        )
        return {
            "Theta": Theta,
            "B": B,
            "M": M,
            "S": S,
            "Z": Z,
            "A": A,
            "Sigma": Sigma,
            "loglik": loglik,
        }
