"""Structured logging setup."""

import logging
import sys
from typing import Optional

import structlog

from ..config import settings


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure structlog and the stdlib root logger.

    ``fmt`` is ``json`` for machine-readable output or ``console`` for
    coloured key/value lines during development.
    """
    log_config = settings.logging
    level_name = (level or log_config.log_level).upper()
    fmt = (fmt or log_config.log_format).lower()
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=log_level, force=True
    )
    # aiosqlite logs every statement at debug level
    logging.getLogger("aiosqlite").setLevel(max(log_level, logging.INFO))

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None):
    """Get a structlog logger bound to ``name``."""
    return structlog.get_logger(name)
