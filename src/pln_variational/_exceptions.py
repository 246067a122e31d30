"""Exception types raised before or around an optimizer run.

Both classes subclass a builtin so that callers (and tests) can keep
catching ``ValueError`` / ``RuntimeError`` the way they would for any
other bad argument.  Shape mismatches between observation data and
parameters raise a plain ``ValueError``; they are not configuration
problems.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Rejected optimizer configuration.

    Raised for an unsupported algorithm name, an ``xtol_abs`` value that
    is neither a scalar nor a structure matching the parameter groups,
    and an ``xtol_abs`` vector whose length differs from the packed
    parameter vector.  Always raised before any nlopt object exists.
    """


class OptimizerAdapterError(RuntimeError):
    """The external optimizer refused a creation, setter, or run request."""


__all__ = ["ConfigurationError", "OptimizerAdapterError"]
