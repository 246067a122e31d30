"""Variational fits of the Poisson log-normal model.

The Poisson log-normal (PLN) model links a count matrix ``Y`` (``n``
rows, ``p`` columns) to a Gaussian latent layer:

    Z_i ~ N(O_i + Θ x_i, Σ)
    Y_ij | Z_ij ~ Poisson(exp(Z_ij))

The likelihood has no closed form, so each fit maximizes a variational
lower bound (ELBO) instead, with one Gaussian ``N(M_i, diag(S_i²))``
per row standing in for the posterior of ``Z_i``.  The bound and its
gradient are analytic; nlopt does the rest.

Every entry point follows the same sequence:

1. **Validation** — observation data and fixed parameters are checked
   and wrapped in an :class:`~pln_variational._context.ObservationContext`;
   every initial parameter must have the shape the variant expects.
2. **Packing** — the initial parameters are laid out in one vector by
   a :class:`~pln_variational.packing.Packer`, in the variant's group
   order.
3. **Configuration** — the optimizer settings are resolved against the
   packer (``xtol_abs`` may be given per group).  Configuration errors
   surface here, before any objective evaluation.
4. **Optimization** — :func:`~pln_variational.optimizer.minimize_objective`
   drives the variant's objective closure.
5. **Post-run step** — the variant unpacks the final vector and
   computes ``Z``, ``A``, the covariance and precision estimates where
   they exist, and the per-row log-likelihood.

A stopping limit or an nlopt failure does not raise: the result carries
the status and the best point found, and ``result.converged`` tells the
two apart.

Covariance structures
~~~~~~~~~~~~~~~~~~~~~
* ``full`` — unconstrained ``Σ``.
* ``diagonal`` — independent latent coordinates.
* ``spherical`` — ``Σ = σ² I``, one variational scale per row.
* ``rank`` — ``Σ = B Bᵀ`` with ``B`` of shape ``(p, q)``.
* ``sparse`` — a caller-supplied precision ``Ω`` held fixed.
* ``vestep_full`` / ``vestep_diagonal`` / ``vestep_spherical`` —
  variational E-steps with ``Θ`` and ``Ω`` both supplied and fixed.

Example::

    from pln_variational import initial_parameters, optimize_full

    init = initial_parameters("full", Y, X, O, w)
    fit = optimize_full(init, Y, X, O, w, {"algorithm": "lbfgs"})
    fit.Sigma, fit.loglik.sum()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ._compat import _ensure_float_array
from ._context import ObservationContext
from ._exceptions import ConfigurationError
from ._results import PLNFitResult
from ._variants import resolve_variant
from .optimizer import OptimizerConfiguration, minimize_objective
from .packing import Packer

if TYPE_CHECKING:
    import numpy as np

    from ._typing import ArrayLike
    from ._variants import ModelVariant

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _validate_init(
    model: ModelVariant,
    ctx: ObservationContext,
    init_parameters: Mapping[str, Any],
) -> dict[str, np.ndarray]:
    """Convert the initial parameters and check their shapes.

    Raises:
        TypeError: If *init_parameters* is not a mapping.
        KeyError: If a parameter group is missing.
        ValueError: If a parameter has the wrong shape.
    """
    if not isinstance(init_parameters, Mapping):
        raise TypeError(
            "init_parameters must be a mapping of parameter name to array, "
            f"got {type(init_parameters).__name__}."
        )
    missing = [name for name in model.parameter_names if name not in init_parameters]
    if missing:
        raise KeyError(
            f"variant '{model.name}' needs initial values for {missing}."
        )

    expected = model.expected_shapes(ctx, init_parameters)
    init: dict[str, np.ndarray] = {}
    for name in model.parameter_names:
        shape = expected[name]
        value = _ensure_float_array(init_parameters[name], name=name, ndim=len(shape))
        if value.shape != shape:
            raise ValueError(
                f"initial '{name}' has shape {value.shape}, expected {shape} "
                f"(n={ctx.n}, p={ctx.p}, d={ctx.d})."
            )
        init[name] = value
    return init


def _resolve_configuration(
    configuration: Mapping[str, Any] | OptimizerConfiguration | None,
    packer: Packer,
) -> OptimizerConfiguration:
    if configuration is None:
        return OptimizerConfiguration.from_mapping({}, packer)
    if isinstance(configuration, OptimizerConfiguration):
        return configuration
    if isinstance(configuration, Mapping):
        return OptimizerConfiguration.from_mapping(configuration, packer)
    raise ConfigurationError(
        "configuration must be a mapping or an OptimizerConfiguration, "
        f"got {type(configuration).__name__}."
    )


# ------------------------------------------------------------------ #
# Generic entry point
# ------------------------------------------------------------------ #


def optimize_variant(
    variant: str | ModelVariant,
    init_parameters: Mapping[str, Any],
    Y: ArrayLike,
    X: ArrayLike,
    O: ArrayLike,  # noqa: E741
    w: ArrayLike,
    configuration: Mapping[str, Any] | OptimizerConfiguration | None = None,
    *,
    Theta: ArrayLike | None = None,
    Omega: ArrayLike | None = None,
) -> PLNFitResult:
    """Fit one model variant by variational optimization.

    Args:
        variant: Registry name (see
            :func:`~pln_variational.available_variants`) or a
            :class:`~pln_variational.ModelVariant` instance.
        init_parameters: Initial value of every optimized parameter
            group, keyed by name (``"Theta"``, ``"B"``, ``"M"``,
            ``"S"``).  Never modified.
        Y: Counts ``(n, p)``.
        X: Covariates ``(n, d)``; ``d`` may be zero.
        O: Offsets ``(n, p)``.
        w: Non-negative row weights ``(n,)``.
        configuration: Optimizer settings: a mapping with any of
            ``algorithm``, ``xtol_abs``, ``xtol_rel``, ``ftol_abs``,
            ``ftol_rel``, ``maxeval``, ``maxtime``, or a ready
            :class:`~pln_variational.OptimizerConfiguration`.  ``None``
            uses the defaults.
        Theta: Fixed regression coefficients ``(p, d)`` (VE-step
            variants).
        Omega: Fixed precision matrix ``(p, p)`` (sparse and VE-step
            variants).

    Returns:
        :class:`~pln_variational.PLNFitResult`.

    Raises:
        ValueError: If *variant* is unknown, if a fixed parameter the
            variant needs is missing, or on any shape mismatch between
            the observation data and the parameters.
        KeyError: If an initial parameter group is missing.
        ConfigurationError: If the configuration is rejected.
        OptimizerAdapterError: If nlopt refuses the configuration.
    """
    model = resolve_variant(variant)
    ctx = ObservationContext.from_arrays(Y, X, O, w, Theta=Theta, Omega=Omega)
    ctx.require_fixed(*model.fixed_names)
    init = _validate_init(model, ctx, init_parameters)

    packer = Packer((name, init[name]) for name in model.parameter_names)
    config = _resolve_configuration(configuration, packer)
    parameters = packer.pack_all(init)

    logger.debug(
        "Fitting '%s' variant: n=%d, p=%d, d=%d, %r",
        model.name,
        ctx.n,
        ctx.p,
        ctx.d,
        packer,
    )
    outcome = minimize_objective(parameters, config, model.objective(packer, ctx))
    fitted = model.finalize(packer, parameters, ctx)

    return PLNFitResult(
        variant=model.name,
        status=outcome.status,
        iterations=outcome.iterations,
        objective=outcome.objective,
        **fitted,
    )


# ------------------------------------------------------------------ #
# Per-variant entry points
# ------------------------------------------------------------------ #


def optimize_full(
    init_parameters: Mapping[str, Any],
    Y: ArrayLike,
    X: ArrayLike,
    O: ArrayLike,  # noqa: E741
    w: ArrayLike,
    configuration: Mapping[str, Any] | OptimizerConfiguration | None = None,
) -> PLNFitResult:
    """Fit with an unconstrained covariance.

    *init_parameters* holds ``Theta (p, d)``, ``M (n, p)`` and
    ``S (n, p)``.  See :func:`optimize_variant` for the remaining
    arguments.
    """
    return optimize_variant("full", init_parameters, Y, X, O, w, configuration)


def optimize_diagonal(
    init_parameters: Mapping[str, Any],
    Y: ArrayLike,
    X: ArrayLike,
    O: ArrayLike,  # noqa: E741
    w: ArrayLike,
    configuration: Mapping[str, Any] | OptimizerConfiguration | None = None,
) -> PLNFitResult:
    """Fit with a diagonal covariance (same parameters as :func:`optimize_full`)."""
    return optimize_variant("diagonal", init_parameters, Y, X, O, w, configuration)


def optimize_spherical(
    init_parameters: Mapping[str, Any],
    Y: ArrayLike,
    X: ArrayLike,
    O: ArrayLike,  # noqa: E741
    w: ArrayLike,
    configuration: Mapping[str, Any] | OptimizerConfiguration | None = None,
) -> PLNFitResult:
    """Fit with ``Σ = σ² I``; ``S`` is a vector of length ``n``."""
    return optimize_variant("spherical", init_parameters, Y, X, O, w, configuration)


def optimize_rank(
    init_parameters: Mapping[str, Any],
    Y: ArrayLike,
    X: ArrayLike,
    O: ArrayLike,  # noqa: E741
    w: ArrayLike,
    configuration: Mapping[str, Any] | OptimizerConfiguration | None = None,
) -> PLNFitResult:
    """Fit a rank-``q`` covariance.

    *init_parameters* holds ``Theta (p, d)``, ``B (p, q)``,
    ``M (n, q)`` and ``S (n, q)``; ``q`` is taken from ``B``.
    """
    return optimize_variant("rank", init_parameters, Y, X, O, w, configuration)


def optimize_sparse(
    init_parameters: Mapping[str, Any],
    Y: ArrayLike,
    X: ArrayLike,
    O: ArrayLike,  # noqa: E741
    w: ArrayLike,
    Omega: ArrayLike,
    configuration: Mapping[str, Any] | OptimizerConfiguration | None = None,
) -> PLNFitResult:
    """Fit ``Θ``, ``M``, ``S`` under a fixed precision matrix.

    Args:
        init_parameters: ``Theta (p, d)``, ``M (n, p)``, ``S (n, p)``.
        Y: Counts ``(n, p)``.
        X: Covariates ``(n, d)``.
        O: Offsets ``(n, p)``.
        w: Row weights ``(n,)``.
        Omega: Precision matrix ``(p, p)``, e.g. from a graphical
            lasso step.  Only its symmetric part is used.
        configuration: Optimizer settings.
    """
    return optimize_variant(
        "sparse", init_parameters, Y, X, O, w, configuration, Omega=Omega
    )


def optimize_vestep_full(
    init_parameters: Mapping[str, Any],
    Y: ArrayLike,
    X: ArrayLike,
    O: ArrayLike,  # noqa: E741
    w: ArrayLike,
    Theta: ArrayLike,
    Omega: ArrayLike,
    configuration: Mapping[str, Any] | OptimizerConfiguration | None = None,
) -> PLNFitResult:
    """Variational E-step: optimize ``M``, ``S`` (both ``(n, p)``).

    ``Theta (p, d)`` and ``Omega (p, p)`` are held fixed.
    """
    return optimize_variant(
        "vestep_full", init_parameters, Y, X, O, w, configuration,
        Theta=Theta, Omega=Omega,
    )


def optimize_vestep_diagonal(
    init_parameters: Mapping[str, Any],
    Y: ArrayLike,
    X: ArrayLike,
    O: ArrayLike,  # noqa: E741
    w: ArrayLike,
    Theta: ArrayLike,
    Omega: ArrayLike,
    configuration: Mapping[str, Any] | OptimizerConfiguration | None = None,
) -> PLNFitResult:
    """Variational E-step using only ``diag(Omega)``."""
    return optimize_variant(
        "vestep_diagonal", init_parameters, Y, X, O, w, configuration,
        Theta=Theta, Omega=Omega,
    )


def optimize_vestep_spherical(
    init_parameters: Mapping[str, Any],
    Y: ArrayLike,
    X: ArrayLike,
    O: ArrayLike,  # noqa: E741
    w: ArrayLike,
    Theta: ArrayLike,
    Omega: ArrayLike,
    configuration: Mapping[str, Any] | OptimizerConfiguration | None = None,
) -> PLNFitResult:
    """Variational E-step under ``Ω = Omega[0, 0] · I``; ``S`` is ``(n,)``."""
    return optimize_variant(
        "vestep_spherical", init_parameters, Y, X, O, w, configuration,
        Theta=Theta, Omega=Omega,
    )


__all__ = [
    "optimize_diagonal",
    "optimize_full",
    "optimize_rank",
    "optimize_sparse",
    "optimize_spherical",
    "optimize_variant",
    "optimize_vestep_diagonal",
    "optimize_vestep_full",
    "optimize_vestep_spherical",
]
