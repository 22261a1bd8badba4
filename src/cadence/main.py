"""Logging setup for hosts and the CLI."""

import logging
import sys

import structlog

from cadence.config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure structured logging.

    Console output on a TTY, JSON lines otherwise. ``level`` overrides
    ``settings.log_level`` (the CLI passes DEBUG or WARNING). Records always go to
    stderr through a ``basicConfig(force=True)`` handler, so stdout stays clean
    for command output such as ``--json``.
    """
    level = level or settings.log_level
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level),
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer()
            if sys.stderr.isatty()
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
