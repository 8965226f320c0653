"""Operation-boundary logging and warning helpers.

Every public operation binds a structlog logger with ``service`` and
``operation`` and, when an operational failure is caught, reports it twice:
once as a structured warning record and once through ``warnings.warn`` with
the ScrapeBotWarning category, so that interactive callers see it even
without logging configured.
"""

from __future__ import annotations

import warnings
from typing import Any, Optional

import structlog

from scrapebot.config import constants
from scrapebot.domain.exceptions import ScrapeBotWarning


def operation_logger(operation: str, **context: Any) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger("scrapebot").bind(
        service=constants.SERVICE_NAME,
        operation=operation,
        **context,
    )


def report_failure(
    log: Any,
    event: str,
    message: str,
    exc: Optional[BaseException] = None,
    stacklevel: int = 3,
    **context: Any,
) -> None:
    """Log ``event`` at warning level and emit a ScrapeBotWarning.

    Args:
        log:        Bound logger of the calling operation.
        event:      Dotted event name, e.g. ``"readers.get_runs.failed"``.
        message:    Human-readable description of what failed.
        exc:        Underlying exception; its message is appended.
        stacklevel: Passed to ``warnings.warn`` so the warning points at the
                    caller of the public operation.
    """
    if exc is not None:
        log.warning(event, status="failed", error=str(exc), error_type=type(exc).__name__, **context)
        text = f"{message} {exc}"
    else:
        log.warning(event, status="failed", **context)
        text = message
    warnings.warn(text, ScrapeBotWarning, stacklevel=stacklevel)
