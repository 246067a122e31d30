"""Algebra shared by several model variants.

Notation (used in every variant module):

* ``W = diag(w)``, ``w̄ = Σ w_i``.
* ``S2 = S ** 2`` — variational variances, non-negative for any
  real ``S``.
* ``Z = O + X Θᵀ + <latent mean>`` — linear predictor.
* ``A = exp(Z + ½ <latent variance>)`` — variational mean of the
  counts.
* ``nΣ = MᵀWM + diag(wᵀS2)`` — weighted second moments of the latent
  layer; the closed-form covariance estimate is ``nΣ / w̄``.

The objectives are *negated* ELBOs (they are minimized).  The
per-row log-likelihoods reported after a fit are ELBO row terms plus
the shared ``ki(Y)`` constant.
"""

from __future__ import annotations

import numpy as np
from scipy.linalg import cho_factor, cho_solve

from .._context import ObservationContext


def linear_predictor(
    ctx: ObservationContext, Theta: np.ndarray, latent: np.ndarray
) -> np.ndarray:
    """``Z = O + X Θᵀ + latent``."""
    return ctx.O + ctx.X @ Theta.T + latent


def regression_gradient(A: np.ndarray, ctx: ObservationContext) -> np.ndarray:
    """Gradient with respect to ``Θ``: ``(A − Y)ᵀ W X``, shape ``(p, d)``."""
    return (A - ctx.Y).T @ ctx.weighted_X


def weighted_moments(M: np.ndarray, S2: np.ndarray, w: np.ndarray) -> np.ndarray:
    """``nΣ = MᵀWM + diag(wᵀS2)``."""
    return M.T @ (M * w[:, None]) + np.diag(w @ S2)


def inverse_and_logdet(spd: np.ndarray) -> tuple[np.ndarray, float]:
    """Inverse and log-determinant of a symmetric positive-definite matrix.

    Raises:
        numpy.linalg.LinAlgError: If *spd* is not positive definite.
    """
    factor = cho_factor(spd, lower=True)
    inverse = cho_solve(factor, np.eye(spd.shape[0]))
    logdet = 2.0 * float(np.sum(np.log(np.diag(factor[0]))))
    return inverse, logdet


def symmetrised(matrix: np.ndarray) -> np.ndarray:
    return 0.5 * (matrix + matrix.T)


# ------------------------------------------------------------------ #
# Fixed-precision objective (sparse, VE-full)
# ------------------------------------------------------------------ #


def fixed_precision_objective(
    ctx: ObservationContext,
    Z: np.ndarray,
    M: np.ndarray,
    S: np.ndarray,
    Omega: np.ndarray,
) -> tuple[float, np.ndarray, np.ndarray, np.ndarray]:
    """Objective and latent gradients under a fixed precision ``Ω``.

    ``J = Σ W(A − Y∘Z − ½ log S2) + ½ tr(Ω nΣ)``

    *Omega* must be symmetric; callers symmetrise it once per fit.

    Returns:
        ``(J, A, ∂J/∂M, ∂J/∂S)``.
    """
    w = ctx.w[:, None]
    S2 = S * S
    A = np.exp(Z + 0.5 * S2)
    n_sigma = weighted_moments(M, S2, ctx.w)
    objective = float(np.sum(w * (A - ctx.Y * Z - 0.5 * np.log(S2))))
    objective += 0.5 * float(np.sum(Omega * n_sigma))

    grad_M = w * (M @ Omega + A - ctx.Y)
    grad_S = w * (S * np.diag(Omega) + S * A - 1.0 / S)
    return objective, A, grad_M, grad_S


# ------------------------------------------------------------------ #
# Per-row log-likelihoods
# ------------------------------------------------------------------ #


def loglik_full(
    ctx: ObservationContext,
    Z: np.ndarray,
    A: np.ndarray,
    M: np.ndarray,
    S2: np.ndarray,
    Omega: np.ndarray,
    logdet_Omega: float,
) -> np.ndarray:
    """Rows of ``YZ − A + ½ log S2 − ½((MΩ)∘M + S2 diag Ω)`` + ``½ log|Ω|`` + ki."""
    rows = ctx.Y * Z - A + 0.5 * np.log(S2) - 0.5 * ((M @ Omega) * M + S2 * np.diag(Omega))
    return rows.sum(axis=1) + 0.5 * logdet_Omega + ctx.ki


def loglik_diagonal(
    ctx: ObservationContext,
    Z: np.ndarray,
    A: np.ndarray,
    M: np.ndarray,
    S2: np.ndarray,
    omega2: np.ndarray,
) -> np.ndarray:
    """Diagonal-precision row log-likelihood; *omega2* is ``diag(Ω)``."""
    return (
        (ctx.Y * Z - A + 0.5 * np.log(S2)).sum(axis=1)
        - 0.5 * (M**2 + S2) @ omega2
        + 0.5 * float(np.sum(np.log(omega2)))
        + ctx.ki
    )


def loglik_spherical(
    ctx: ObservationContext,
    Z: np.ndarray,
    A: np.ndarray,
    M: np.ndarray,
    S2: np.ndarray,
    omega2: float,
) -> np.ndarray:
    """Spherical row log-likelihood; *S2* is ``(n,)``, ``Ω = omega2 · I``."""
    p = ctx.p
    return (
        (ctx.Y * Z - A).sum(axis=1)
        - 0.5 * omega2 * (M**2).sum(axis=1)
        - 0.5 * p * omega2 * S2
        + 0.5 * p * np.log(S2 * omega2)
        + ctx.ki
    )
