"""Logging helpers for the pricing engine."""

from __future__ import annotations

import logging
from typing import Iterable

from .config import get_settings


def configure_logging(
    level: int | str | None = None, handlers: Iterable[logging.Handler] | None = None
) -> None:
    """Configure root logging for interactive sessions.

    Solver non-convergence and distribution truncation are reported through
    module loggers; applications embedding the engine can call this helper
    to establish a consistent format for those messages.  Without an
    explicit ``level`` the ``FAIRLINE_LOG_LEVEL`` setting is used.
    """

    if level is None:
        level = get_settings().log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=list(handlers) if handlers else None,
    )
