"""Algorithm configuration for the pln_variational package.

Controls which nlopt algorithm is used when an optimizer configuration
does not name one explicitly.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_default_algorithm`.
    2. The ``PLN_VARIATIONAL_ALGORITHM`` environment variable.
    3. The built-in default, ``"CCSAQ"``.

Valid names are the gradient-based local algorithms listed in
:data:`SUPPORTED_ALGORITHMS` (case-insensitive).

Examples:
    Switch to L-BFGS globally from the shell::

        export PLN_VARIATIONAL_ALGORITHM=LBFGS

    Switch programmatically::

        import pln_variational
        pln_variational.set_default_algorithm("lbfgs")

    Restore the built-in default::

        pln_variational.set_default_algorithm("auto")
"""

from __future__ import annotations

import os

from ._exceptions import ConfigurationError

# Names map to nlopt constants as ``nlopt.LD_<name>``.
SUPPORTED_ALGORITHMS: tuple[str, ...] = (
    "LBFGS_NOCEDAL",
    "LBFGS",
    "VAR1",
    "VAR2",
    "TNEWTON",
    "TNEWTON_RESTART",
    "TNEWTON_PRECOND",
    "TNEWTON_PRECOND_RESTART",
    "MMA",
    "CCSAQ",
)

_BUILTIN_DEFAULT = "CCSAQ"

_ENV_VAR = "PLN_VARIATIONAL_ALGORITHM"

# Sentinel indicating "no programmatic override has been set".
_algorithm_override: str | None = None


def normalise_algorithm(name: object) -> str:
    """Return the canonical spelling of an algorithm name.

    Args:
        name: Algorithm name, case-insensitive, surrounding whitespace
            ignored.

    Returns:
        The upper-case name as listed in :data:`SUPPORTED_ALGORITHMS`.

    Raises:
        ConfigurationError: If *name* is not a string or not a
            supported algorithm.  The message lists every supported
            name.
    """
    if not isinstance(name, str):
        raise ConfigurationError(
            f"algorithm must be a string, got {type(name).__name__}."
        )
    canonical = name.strip().upper()
    if canonical not in SUPPORTED_ALGORITHMS:
        raise ConfigurationError(
            f"Unsupported algorithm name: {name!r}. "
            f"Supported: {', '.join(SUPPORTED_ALGORITHMS)}"
        )
    return canonical


def get_default_algorithm() -> str:
    """Return the algorithm used when a configuration names none.

    Resolution order:
        1. Value set by :func:`set_default_algorithm` (unless ``"auto"``).
        2. ``PLN_VARIATIONAL_ALGORITHM`` environment variable.
        3. ``"CCSAQ"``.

    Returns:
        A name from :data:`SUPPORTED_ALGORITHMS`.

    Raises:
        ConfigurationError: If the environment variable holds an
            unsupported name.
    """
    # 1. Programmatic override
    if _algorithm_override is not None and _algorithm_override != "AUTO":
        return _algorithm_override

    # 2. Environment variable
    env = os.environ.get(_ENV_VAR, "").strip()
    if env:
        return normalise_algorithm(env)

    # 3. Built-in default
    return _BUILTIN_DEFAULT


def set_default_algorithm(name: str) -> None:
    """Override the default algorithm selection.

    Args:
        name: A supported algorithm name or ``"auto"``
            (case-insensitive).  ``"auto"`` restores the default
            resolution order.

    Raises:
        ConfigurationError: If *name* is not recognised.
    """
    global _algorithm_override
    if isinstance(name, str) and name.strip().upper() == "AUTO":
        _algorithm_override = "AUTO"
        return
    _algorithm_override = normalise_algorithm(name)
