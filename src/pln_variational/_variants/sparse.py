"""Sparse (fixed) precision.

The precision matrix ``Ω`` is supplied by the caller, typically from
an outer graphical-lasso step, and stays constant while ``Θ``, ``M``
and ``S`` are optimized:

    J(Θ, M, S) = Σ W(A − Y∘Z − ½ log S²) + ½ tr(Ω nΣ)

The ``−½ w̄ log|Ω|`` term is constant here and left out of ``J``; it
is restored in the reported log-likelihood.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from ._common import (
    fixed_precision_objective,
    linear_predictor,
    loglik_full,
    regression_gradient,
    symmetrised,
    weighted_moments,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .._context import ObservationContext
    from ..optimizer import ObjectiveAndGrad
    from ..packing import Packer


@dataclass(frozen=True)
class SparseVariant:
    """Caller-supplied precision matrix, held fixed."""

    @property
    def name(self) -> str:
        return "sparse"

    @property
    def parameter_names(self) -> tuple[str, ...]:
        return ("Theta", "M", "S")

    @property
    def fixed_names(self) -> tuple[str, ...]:
        return ("Omega",)

    def expected_shapes(
        self, ctx: ObservationContext, init: Mapping[str, np.ndarray]
    ) -> dict[str, tuple[int, ...]]:
        n, p, d = ctx.n, ctx.p, ctx.d
        return {"Theta": (p, d), "M": (n, p), "S": (n, p)}

    def objective(self, packer: Packer, ctx: ObservationContext) -> ObjectiveAndGrad:
        ctx.require_fixed(*self.fixed_names)
        theta_g, m_g, s_g = (packer.group(name) for name in self.parameter_names)
        Omega = symmetrised(ctx.Omega)

        def objective_and_grad(parameters: np.ndarray, grad: np.ndarray) -> float:
            Theta = theta_g.unpack(parameters)
            M = m_g.unpack(parameters)
            S = s_g.unpack(parameters)

            Z = linear_predictor(ctx, Theta, M)
            objective, A, grad_M, grad_S = fixed_precision_objective(ctx, Z, M, S, Omega)

            theta_g.pack(grad, regression_gradient(A, ctx))
            m_g.pack(grad, grad_M)
            s_g.pack(grad, grad_S)
            return objective

        return objective_and_grad

    def finalize(
        self, packer: Packer, parameters: np.ndarray, ctx: ObservationContext
    ) -> dict[str, Any]:
        Theta = packer.unpack("Theta", parameters).copy()
        M = packer.unpack("M", parameters).copy()
        S = packer.unpack("S", parameters).copy()
        S2 = S * S

        Omega = symmetrised(ctx.Omega)
        _, logdet_Omega = np.linalg.slogdet(Omega)
        Z = linear_predictor(ctx, Theta, M)
        A = np.exp(Z + 0.5 * S2)
        return {
            "Theta": Theta,
            "M": M,
            "S": S,
            "Z": Z,
            "A": A,
            "Sigma": weighted_moments(M, S2, ctx.w) / ctx.w_bar,
            "Omega": ctx.Omega.copy(),
            "loglik": loglik_full(ctx, Z, A, M, S2, Omega, float(logdet_Omega)),
        }
