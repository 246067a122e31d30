"""Model variant registry and protocol.

Each variant encodes one covariance structure of the Poisson
log-normal model (full, diagonal, spherical, low-rank, sparse
precision) or a variational E-step with the model parameters held
fixed.  All of them expose the uniform :class:`ModelVariant` interface
that :func:`pln_variational.core.optimize_variant` drives:

1. :attr:`~ModelVariant.parameter_names` — the ordered parameter
   groups that are packed into the optimization vector;
2. :meth:`~ModelVariant.expected_shapes` — the shape every initial
   value must have, checked before any evaluation;
3. :meth:`~ModelVariant.objective` — builds the
   ``(parameters, gradient_out) -> value`` closure handed to the
   optimizer driver;
4. :meth:`~ModelVariant.finalize` — the post-run step computing the
   converged parameters and derived quantities.

Adding a new variant
~~~~~~~~~~~~~~~~~~~~
1. Create a module under ``_variants/`` with a class that satisfies
   the :class:`ModelVariant` protocol.
2. Register it in :func:`_ensure_registry` below.
3. :func:`~pln_variational.core.optimize_variant` will pick it up
   automatically.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    import numpy as np

    from .._context import ObservationContext
    from ..optimizer import ObjectiveAndGrad
    from ..packing import Packer

# ------------------------------------------------------------------ #
# Variant protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class ModelVariant(Protocol):
    """Interface that every model variant must satisfy."""

    @property
    def name(self) -> str:
        """Registry key (e.g. ``"full"``, ``"vestep_diagonal"``)."""
        ...

    @property
    def parameter_names(self) -> tuple[str, ...]:
        """Optimized parameter groups, in packing order."""
        ...

    @property
    def fixed_names(self) -> tuple[str, ...]:
        """Parameters the caller supplies and the fit holds constant."""
        ...

    def expected_shapes(
        self, ctx: ObservationContext, init: Mapping[str, np.ndarray]
    ) -> dict[str, tuple[int, ...]]:
        """Required shape of each initial parameter."""
        ...

    def objective(self, packer: Packer, ctx: ObservationContext) -> ObjectiveAndGrad:
        """Return the objective-and-gradient closure for one fit."""
        ...

    def finalize(
        self, packer: Packer, parameters: np.ndarray, ctx: ObservationContext
    ) -> dict[str, Any]:
        """Unpack a converged vector and compute derived outputs."""
        ...


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #

# Populated lazily so that importing the package does not import every
# variant module.

_VARIANT_REGISTRY: dict[str, type[ModelVariant]] = {}


def _ensure_registry() -> None:
    """Populate the registry on first access."""
    if _VARIANT_REGISTRY:
        return

    from .diagonal import DiagonalVariant
    from .full import FullVariant
    from .rank import RankVariant
    from .sparse import SparseVariant
    from .spherical import SphericalVariant
    from .vestep import VEStepDiagonalVariant, VEStepFullVariant, VEStepSphericalVariant

    _VARIANT_REGISTRY.update(
        {
            "full": FullVariant,
            "diagonal": DiagonalVariant,
            "spherical": SphericalVariant,
            "rank": RankVariant,
            "sparse": SparseVariant,
            "vestep_full": VEStepFullVariant,
            "vestep_diagonal": VEStepDiagonalVariant,
            "vestep_spherical": VEStepSphericalVariant,
        }
    )


def available_variants() -> list[str]:
    """Sorted registry names."""
    _ensure_registry()
    return sorted(_VARIANT_REGISTRY)


def resolve_variant(variant: str | ModelVariant) -> ModelVariant:
    """Return a variant instance for a registry name.

    Instances are passed through unchanged.

    Args:
        variant: One of :func:`available_variants`, or an object
            implementing :class:`ModelVariant`.

    Raises:
        ValueError: If *variant* is not a registered name.
    """
    if isinstance(variant, ModelVariant) and not isinstance(variant, str):
        return variant
    _ensure_registry()
    cls = _VARIANT_REGISTRY.get(variant)
    if cls is None:
        valid = ", ".join(sorted(_VARIANT_REGISTRY))
        raise ValueError(f"Unknown variant {variant!r}. Choose from: {valid}.")
    return cls()


__all__ = [
    "ModelVariant",
    "available_variants",
    "resolve_variant",
]
