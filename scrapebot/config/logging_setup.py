"""Logging configuration.

The library only ever calls ``structlog.get_logger()``; wiring the output
pipeline is left to the application. ``configure_logging()`` is the one-call
setup for scripts and notebooks that want the same pipeline the package is
tested with.
"""

from __future__ import annotations

import logging
from typing import Optional

import structlog

from scrapebot.config import constants


def configure_logging(level: Optional[str] = None, json: bool = False) -> None:
    """Configure structlog on top of stdlib logging.

    Sets up stdlib logging at the configured level so that third-party
    libraries (SQLAlchemy, botocore, paramiko) emit through the same pipeline
    as package code.

    Args:
        level: Log level name. Defaults to ``constants.LOG_LEVEL``.
        json:  Render JSON lines instead of the human-readable console format.
    """
    log_level = getattr(logging, (level or constants.LOG_LEVEL).upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
