"""Start values for the variational fits.

The optimizers only find a local optimum, and the exponential in
``A = exp(Z + ½S²)`` makes a poor start expensive, so every fit begins
from a cheap moment-based guess:

1. **Regression** — for each count column ``j``, a weighted least
   squares fit (statsmodels ``WLS``) of ``log(1 + Y_j) − O_j`` on ``X``
   gives the row ``Θ_j``.
2. **Latent means** — the residuals of those fits are the initial
   ``M``.  For the rank-constrained variant a truncated SVD of the
   residual matrix splits them into ``M (n, q)`` and loadings
   ``B (p, q)`` with ``M Bᵀ`` the best rank-``q`` approximation.
3. **Scales** — ``S`` starts at a small constant (``0.1`` by default),
   a matrix for most variants and a length-``n`` vector for the
   spherical ones.

VE-step variants only receive ``M`` and ``S``; when a fixed ``Theta``
is supplied the residuals are taken against it instead of the WLS
estimate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import statsmodels.api as sm

from ._context import ObservationContext
from ._variants import resolve_variant

if TYPE_CHECKING:
    from ._typing import ArrayLike
    from ._variants import ModelVariant


def _weighted_least_squares(
    X: np.ndarray, targets: np.ndarray, w: np.ndarray
) -> np.ndarray:
    """Column-by-column WLS coefficients, shape ``(p, d)``."""
    p = targets.shape[1]
    d = X.shape[1]
    Theta = np.zeros((p, d))
    if d == 0:
        return Theta
    for j in range(p):
        Theta[j] = sm.WLS(targets[:, j], X, weights=w).fit().params
    return Theta


def _low_rank_split(
    residuals: np.ndarray, rank: int
) -> tuple[np.ndarray, np.ndarray]:
    """Split *residuals* into ``M (n, q)`` and ``B (p, q)`` by truncated SVD.

    ``M`` is scaled to unit mean square per column so that it matches
    the standard-normal prior of the rank-constrained latent layer.
    """
    n = residuals.shape[0]
    U, s, Vt = np.linalg.svd(residuals, full_matrices=False)
    scale = np.sqrt(n)
    M = U[:, :rank] * scale
    B = Vt[:rank].T * (s[:rank] / scale)
    return M, B


def initial_parameters(
    variant: str | ModelVariant,
    Y: ArrayLike,
    X: ArrayLike,
    O: ArrayLike,  # noqa: E741
    w: ArrayLike,
    *,
    rank: int | None = None,
    Theta: ArrayLike | None = None,
    scale: float = 0.1,
) -> dict[str, np.ndarray]:
    """Build initial values for every parameter group of *variant*.

    Args:
        variant: Registry name or :class:`~pln_variational.ModelVariant`.
        Y: Counts ``(n, p)``.
        X: Covariates ``(n, d)``.
        O: Offsets ``(n, p)``.
        w: Row weights ``(n,)``.
        rank: Latent dimension ``q`` (rank-constrained variant only).
        Theta: Fixed coefficients ``(p, d)``; when given, replaces the
            WLS estimate.
        scale: Initial value of every entry of ``S``.

    Returns:
        Mapping from parameter name to array, in the variant's packing
        order, ready to pass as ``init_parameters``.

    Raises:
        ValueError: If *rank* is missing or out of range for the
            rank-constrained variant, or if *scale* is not positive.
    """
    model = resolve_variant(variant)
    ctx = ObservationContext.from_arrays(Y, X, O, w, Theta=Theta)
    if not scale > 0:
        raise ValueError(f"scale must be positive, got {scale!r}.")

    targets = np.log1p(ctx.Y) - ctx.O
    if ctx.Theta is not None:
        Theta_hat = ctx.Theta.copy()
    else:
        Theta_hat = _weighted_least_squares(ctx.X, targets, ctx.w)
    residuals = targets - ctx.X @ Theta_hat.T

    candidates: dict[str, Any] = {"Theta": Theta_hat, "M": residuals}
    if "B" in model.parameter_names:
        if rank is None or not 1 <= rank <= min(ctx.n, ctx.p - 1):
            raise ValueError(
                f"rank must be an integer in [1, {min(ctx.n, ctx.p - 1)}], "
                f"got {rank!r}."
            )
        candidates["M"], candidates["B"] = _low_rank_split(residuals, int(rank))

    shapes = model.expected_shapes(ctx, candidates)
    candidates["S"] = np.full(shapes["S"], float(scale))
    return {name: candidates[name] for name in model.parameter_names}


__all__ = ["initial_parameters"]
