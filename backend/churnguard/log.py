"""Structured logging setup.

structlog renders JSON in deployments (LOG_FORMAT=json) and human-readable
console output otherwise. Components take a bound logger in their
constructor; `get_logger` is only the default they fall back to.
"""

from __future__ import annotations

import logging
import sys

import structlog

from .config import settings

_configured = False


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure stdlib logging and structlog processors. Safe to call twice."""
    global _configured
    if _configured:
        return

    level_name = (level or settings.log_level).upper()
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if (fmt or settings.log_format) == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str):
    return structlog.get_logger(name)
