"""
Error taxonomy.

File problems surface as the built-in ``OSError`` (``IOError`` is an alias,
``FileNotFoundError`` a subclass). Everything here is local to one
transformation: no partial results are returned and nothing is retried.
"""

from __future__ import annotations


class SchemaError(ValueError):
    """Input file or table has the wrong shape, columns or region index."""


class ShapeError(ValueError):
    """Draw matrix does not line up with the observation table."""


class ConvergenceError(RuntimeError):
    """Sampler reported divergences and strict diagnostics were requested."""


class ConvergenceWarning(UserWarning):
    """Elevated R-hat, low effective sample size or divergent transitions."""


class LowResolutionWarning(UserWarning):
    """Too few pooled draws to resolve 2.5% / 97.5% quantiles."""
