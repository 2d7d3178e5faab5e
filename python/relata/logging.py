"""Structured logging with structlog.

Library modules only call ``structlog.get_logger(__name__)``; applications
(and the CLI) call :func:`configure_logging` once at startup.
"""

from __future__ import annotations

import logging
import sys

import structlog


def configure_logging(level: str | int = "INFO", *, json: bool = False) -> None:
    """Configure structlog to print to stderr at ``level``.

    Args:
        level: Minimum level name or number; "DEBUG" shows every statement
        json: Render JSON lines instead of the console format

    Example:
        >>> configure_logging("DEBUG")
    """
    if isinstance(level, str):
        level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        context_class=dict,
        cache_logger_on_first_use=False,
    )
