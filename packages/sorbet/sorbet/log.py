"""
Logging configuration for sorbet.

sorbet logs through structlog. Libraries only call ``get_logger``; the
host application decides output format once via ``configure_logging``.
"""
from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import FilteringBoundLogger


def configure_logging(
    level: str = "INFO",
    format_json: bool = False,
    include_timestamp: bool = True,
    cache_logger_on_first_use: bool = True,
) -> None:
    """
    Configure structlog on top of the standard library.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ...)
        format_json: Render JSON lines instead of the console renderer
        include_timestamp: Add an ISO timestamp to every event
        cache_logger_on_first_use: Freeze loggers after first use; turn off
            in tests that reconfigure structlog
    """
    log_level = getattr(logging, level.upper())

    logging.basicConfig(
        level=log_level,
        stream=sys.stdout,
        format="%(message)s",
    )

    processors: list = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))
    if format_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=cache_logger_on_first_use,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """Return a structlog logger named ``name`` (typically ``__name__``)."""
    return structlog.get_logger(name)
