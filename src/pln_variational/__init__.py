"""pln_variational — Variational fits of Poisson log-normal models.

Fits the Poisson log-normal latent model to a count matrix under
several covariance structures (full, diagonal, spherical, low-rank,
fixed sparse precision) and runs variational E-steps with the model
parameters held fixed.  Each fit maximizes an analytic ELBO with a
gradient-based nlopt algorithm over a packed parameter vector.

Public API:
    .. autosummary::
        optimize_variant
        optimize_full
        optimize_diagonal
        optimize_spherical
        optimize_rank
        optimize_sparse
        optimize_vestep_full
        optimize_vestep_diagonal
        optimize_vestep_spherical
        initial_parameters
        available_variants
        resolve_variant
        ModelVariant
        Packer
        ParameterGroup
        minimize_objective
        OptimizerConfiguration
        OptimizationStatus
        OptimizationResult
        PLNFitResult
        get_default_algorithm
        set_default_algorithm
        SUPPORTED_ALGORITHMS
        ConfigurationError
        OptimizerAdapterError
"""

from ._config import SUPPORTED_ALGORITHMS, get_default_algorithm, set_default_algorithm
from ._exceptions import ConfigurationError, OptimizerAdapterError
from ._results import OptimizationResult, PLNFitResult
from ._variants import ModelVariant, available_variants, resolve_variant
from .core import (
    optimize_diagonal,
    optimize_full,
    optimize_rank,
    optimize_sparse,
    optimize_spherical,
    optimize_variant,
    optimize_vestep_diagonal,
    optimize_vestep_full,
    optimize_vestep_spherical,
)
from .initialization import initial_parameters
from .optimizer import OptimizationStatus, OptimizerConfiguration, minimize_objective
from .packing import Packer, ParameterGroup

__all__ = [
    "ConfigurationError",
    "OptimizerAdapterError",
    "OptimizationResult",
    "PLNFitResult",
    "optimize_variant",
    "optimize_full",
    "optimize_diagonal",
    "optimize_spherical",
    "optimize_rank",
    "optimize_sparse",
    "optimize_vestep_full",
    "optimize_vestep_diagonal",
    "optimize_vestep_spherical",
    "initial_parameters",
    "available_variants",
    "resolve_variant",
    "ModelVariant",
    "Packer",
    "ParameterGroup",
    "minimize_objective",
    "OptimizerConfiguration",
    "OptimizationStatus",
    "SUPPORTED_ALGORITHMS",
    "get_default_algorithm",
    "set_default_algorithm",
]

__version__ = "0.1.0"
