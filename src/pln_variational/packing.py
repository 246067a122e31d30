"""Parameter packing — named vector / matrix groups in one flat vector.

Gradient-based optimizers work on a single contiguous vector of
unknowns.  The models in this package have several heterogeneous
unknowns (a ``(p, d)`` coefficient matrix, ``(n, p)`` variational
means, an ``(n,)`` scale vector, ...), so a :class:`Packer` records,
for each named group, its shape and the offset of its slice inside the
packed vector:

    offset_i = size_0 + size_1 + ... + size_{i-1}

Slices are assigned sequentially in declaration order with no gaps, so
they are contiguous, disjoint, and cover the packed vector exactly.
The layout is frozen at construction; groups never change shape.

Layout
~~~~~~
Matrices are stored row-major (NumPy's default ``C`` order) inside
their slice.  :meth:`ParameterGroup.unpack` therefore returns a
*view* — reshaping a contiguous 1-D slice never copies — so that
unpacking the optimizer's raw parameter array costs nothing, and
writes into an unpacked gradient view land directly in the packed
gradient buffer.

Zero-size groups
~~~~~~~~~~~~~~~~
A group may hold zero elements (e.g. a ``(p, 0)`` coefficient matrix
when there are no covariates).  It still receives a well-defined offset
and an empty slice, and unpacks to an empty array of the declared
shape.

Example::

    packer = Packer.from_arrays({"Theta": Theta0, "M": M0, "S": S0})
    x = packer.pack_all({"Theta": Theta0, "M": M0, "S": S0})
    M = packer.unpack("M", x)          # view into x
    packer.pack("S", x, np.abs(S0))    # writes the S slice of x
"""

from __future__ import annotations

import numbers
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np

from ._compat import _to_numpy
from ._exceptions import ConfigurationError

# ------------------------------------------------------------------ #
# Single group
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ParameterGroup:
    """Descriptor of one named group inside the packed vector.

    Attributes:
        name: Group identifier (e.g. ``"Theta"``).
        shape: ``(L,)`` for a vector group, ``(R, C)`` for a matrix.
        offset: Index of the first element of the group's slice.
    """

    name: str
    shape: tuple[int, ...]
    offset: int

    @property
    def size(self) -> int:
        """Number of elements owned by the group."""
        return int(np.prod(self.shape, dtype=np.int64))

    @property
    def is_matrix(self) -> bool:
        return len(self.shape) == 2

    @property
    def slice(self) -> slice:
        """Slice of the packed vector owned by the group."""
        return slice(self.offset, self.offset + self.size)

    def unpack(self, packed: np.ndarray) -> np.ndarray:
        """Return the group's value as a view into *packed*."""
        return packed[self.slice].reshape(self.shape)

    def pack(self, packed: np.ndarray, value: Any) -> None:
        """Write *value* into the group's slice of *packed*.

        Any value with the group's element count is accepted — the
        group's own shape, a flat vector, or a reorganised matrix such
        as ``(n, 1)`` for an ``(n,)`` group.

        Raises:
            ValueError: If the element count differs.
        """
        arr = np.asarray(value, dtype=np.float64)
        if arr.size != self.size:
            raise ValueError(
                f"cannot pack {arr.size} elements (shape {arr.shape}) into "
                f"parameter group '{self.name}' of shape {self.shape}."
            )
        packed[self.slice] = arr.reshape(-1)

    def pack_scalar_or_structured(self, packed: np.ndarray, value: Any) -> None:
        """Fill the slice from a scalar or from a full-shape structure.

        Used to build per-element tolerance vectors:

        * a real scalar is broadcast over the whole slice;
        * an array-like whose shape equals :attr:`shape` is copied
          element-wise.

        Raises:
            ConfigurationError: For any other input (booleans, strings,
                mappings, or arrays of the wrong shape).
        """
        if isinstance(value, (bool, np.bool_)):
            raise ConfigurationError(
                f"tolerance for '{self.name}' must be a number or an array "
                f"of shape {self.shape}, got {type(value).__name__}."
            )
        if isinstance(value, numbers.Real):
            packed[self.slice] = float(value)
            return

        try:
            arr = np.asarray(_to_numpy(value), dtype=np.float64)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"tolerance for '{self.name}' must be a number or an array "
                f"of shape {self.shape}, got {type(value).__name__}."
            ) from None

        if arr.ndim == 0:
            packed[self.slice] = float(arr)
            return
        if arr.shape != self.shape:
            raise ConfigurationError(
                f"tolerance for '{self.name}' has shape {arr.shape}, "
                f"expected {self.shape}."
            )
        packed[self.slice] = arr.reshape(-1)


# ------------------------------------------------------------------ #
# Packer
# ------------------------------------------------------------------ #


def _reference_shape(name: str, reference: Any) -> tuple[int, ...]:
    if isinstance(reference, tuple) and all(
        isinstance(dim, numbers.Integral) for dim in reference
    ):
        shape = tuple(int(dim) for dim in reference)
    else:
        shape = np.shape(reference)
    if len(shape) not in (1, 2):
        raise ValueError(
            f"parameter group '{name}' must be a vector or a matrix, "
            f"got shape {shape}."
        )
    if any(dim < 0 for dim in shape):
        raise ValueError(f"parameter group '{name}' has a negative dimension.")
    return shape


class Packer:
    """Ordered set of parameter groups sharing one packed vector.

    Args:
        references: Ordered ``(name, reference)`` pairs.  A reference is
            either an array whose shape defines the group or a shape
            tuple.

    Attributes:
        groups: The :class:`ParameterGroup` descriptors, in declaration
            order.
        size: Total number of packed elements.

    Groups are addressed by position (``0``, ``1``, ...) or by name.
    """

    def __init__(self, references: Iterable[tuple[str, Any]]) -> None:
        groups: list[ParameterGroup] = []
        offset = 0
        for name, reference in references:
            if any(g.name == name for g in groups):
                raise ValueError(f"duplicate parameter group name '{name}'.")
            group = ParameterGroup(name, _reference_shape(name, reference), offset)
            groups.append(group)
            offset += group.size
        self.groups: tuple[ParameterGroup, ...] = tuple(groups)
        self.size: int = offset
        self._index = {g.name: i for i, g in enumerate(self.groups)}

    @classmethod
    def from_arrays(cls, arrays: Mapping[str, Any]) -> Packer:
        """Build a packer whose groups mirror *arrays* (insertion order)."""
        return cls(arrays.items())

    # ---- Lookup -----------------------------------------------------

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(g.name for g in self.groups)

    def group(self, key: int | str) -> ParameterGroup:
        """Return the descriptor for a position or a name."""
        if isinstance(key, str):
            try:
                return self.groups[self._index[key]]
            except KeyError:
                raise KeyError(
                    f"unknown parameter group {key!r}; "
                    f"groups are {list(self.names)}."
                ) from None
        return self.groups[key]

    def __len__(self) -> int:
        return len(self.groups)

    def __repr__(self) -> str:
        layout = ", ".join(f"{g.name}{g.shape}@{g.offset}" for g in self.groups)
        return f"Packer([{layout}], size={self.size})"

    # ---- Per-group operations ----------------------------------------

    def unpack(self, key: int | str, packed: np.ndarray) -> np.ndarray:
        """Return group *key* of *packed* as a view with the group's shape."""
        return self.group(key).unpack(packed)

    def pack(self, key: int | str, packed: np.ndarray, value: Any) -> None:
        """Write *value* into the slice of group *key*."""
        self.group(key).pack(packed, value)

    def pack_scalar_or_structured(
        self, key: int | str, packed: np.ndarray, value: Any
    ) -> None:
        """Broadcast a scalar or copy a full-shape value into group *key*."""
        self.group(key).pack_scalar_or_structured(packed, value)

    # ---- Whole-vector conveniences ------------------------------------

    def empty(self) -> np.ndarray:
        """Allocate an uninitialised packed vector."""
        return np.empty(self.size, dtype=np.float64)

    def pack_all(self, values: Mapping[str, Any]) -> np.ndarray:
        """Return a new packed vector filled from a name → value mapping."""
        packed = self.empty()
        for g in self.groups:
            g.pack(packed, values[g.name])
        return packed

    def unpack_all(self, packed: np.ndarray) -> dict[str, np.ndarray]:
        """Return every group of *packed* as views, keyed by name."""
        return {g.name: g.unpack(packed) for g in self.groups}

    def build_tolerance(self, tolerance: Any) -> np.ndarray:
        """Build a per-element tolerance vector.

        Args:
            tolerance: Either a real scalar applied to every element, or a
                mapping with one entry per group name whose values are
                scalars or full-shape arrays.

        Returns:
            A vector of length :attr:`size`.

        Raises:
            ConfigurationError: If *tolerance* is neither form, if the mapping
                misses a group or names an unknown one, or if an entry
                has the wrong shape.
        """
        packed = self.empty()
        if isinstance(tolerance, numbers.Real) and not isinstance(tolerance, (bool, np.bool_)):
            packed.fill(float(tolerance))
            return packed

        if not isinstance(tolerance, Mapping):
            raise ConfigurationError(
                "unsupported xtol_abs type: must be a number or a mapping of "
                f"by-parameter values, got {type(tolerance).__name__}."
            )

        unknown = sorted(set(tolerance) - set(self.names))
        if unknown:
            raise ConfigurationError(
                f"xtol_abs names unknown parameter groups {unknown}; "
                f"groups are {list(self.names)}."
            )
        missing = [name for name in self.names if name not in tolerance]
        if missing:
            raise ConfigurationError(f"xtol_abs is missing values for {missing}.")

        for g in self.groups:
            g.pack_scalar_or_structured(packed, tolerance[g.name])
        return packed


__all__ = ["Packer", "ParameterGroup"]
