"""Exception hierarchy shared across the pricing engine."""

from __future__ import annotations


class FairlineError(Exception):
    """Base class for all errors raised by fairline."""


class InvalidInputError(FairlineError, ValueError):
    """Raised when quoted prices or request arguments cannot be priced."""


class ConfigurationError(FairlineError, ValueError):
    """Raised when settings or sport profile validation fails."""
