"""Fully parametrised covariance.

The latent covariance ``Σ`` is unconstrained.  Given the variational
parameters it has the closed form ``Σ = nΣ / w̄``, so the precision
``Ω = w̄ · nΣ⁻¹`` is profiled out and recomputed from ``M`` and ``S`` at
every evaluation:

    J(Θ, M, S) = Σ W(A − Y∘Z − ½ log S²) − ½ w̄ log|Ω|

with ``Z = O + XΘᵀ + M`` and ``A = exp(Z + ½S²)``.  Differentiating
through the profiled ``Ω`` gives

    ∂J/∂Θ = (A − Y)ᵀ W X
    ∂J/∂M = W(MΩ + A − Y)
    ∂J/∂S = W(S · diag(Ω)ᵀ + S∘A − 1/S)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from ._common import (
    inverse_and_logdet,
    linear_predictor,
    loglik_full,
    regression_gradient,
    weighted_moments,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .._context import ObservationContext
    from ..optimizer import ObjectiveAndGrad
    from ..packing import Packer


@dataclass(frozen=True)
class FullVariant:
    """Unconstrained covariance, estimated in closed form."""

    @property
    def name(self) -> str:
        return "full"

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
        log_w_bar = np.log(w_bar)
        p = ctx.p

        def objective_and_grad(parameters: np.ndarray, grad: np.ndarray) -> float:
            Theta = theta_g.unpack(parameters)
            M = m_g.unpack(parameters)
            S = s_g.unpack(parameters)

            S2 = S * S
            Z = linear_predictor(ctx, Theta, M)
            A = np.exp(Z + 0.5 * S2)
            n_sigma_inv, logdet_n_sigma = inverse_and_logdet(
                weighted_moments(M, S2, ctx.w)
            )
            Omega = w_bar * n_sigma_inv
            logdet_Omega = p * log_w_bar - logdet_n_sigma
            objective = float(np.sum(w * (A - Y * Z - 0.5 * np.log(S2))))
            objective -= 0.5 * w_bar * logdet_Omega

            theta_g.pack(grad, regression_gradient(A, ctx))
            m_g.pack(grad, w * (M @ Omega + A - Y))
            s_g.pack(grad, w * (S * np.diag(Omega) + S * A - 1.0 / S))
            return objective

        return objective_and_grad

    def finalize(
        self, packer: Packer, parameters: np.ndarray, ctx: ObservationContext
    ) -> dict[str, Any]:
        Theta = packer.unpack("Theta", parameters).copy()
        M = packer.unpack("M", parameters).copy()
        S = packer.unpack("S", parameters).copy()
        S2 = S * S

        Sigma = weighted_moments(M, S2, ctx.w) / ctx.w_bar
        Omega, logdet_Sigma = inverse_and_logdet(Sigma)
        Z = linear_predictor(ctx, Theta, M)
        A = np.exp(Z + 0.5 * S2)
        loglik = loglik_full(ctx, Z, A, M, S2, Omega, -logdet_Sigma)
        return {
            "Theta": Theta,
            "M": M,
            "S": S,
            "Z": Z,
            "A": A,
            "Sigma": Sigma,
            "Omega": Omega,
            "loglik": loglik,
        }
