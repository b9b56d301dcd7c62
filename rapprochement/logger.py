"""Structured logging for the reconciliation service.

structlog renders through the standard logging module: console output in
debug mode, one JSON object per line otherwise. Monetary ``Decimal`` values
are rendered as plain strings so amounts keep their two decimals.
"""

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import Any

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import EventDict, Processor, WrappedLogger

from rapprochement.config import settings


def _amounts_as_text(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.stdlib.add_logger_name,
    _amounts_as_text,
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
]


def configure_logging() -> None:
    """Route structlog through stdlib logging with a single stdout handler."""
    renderer: Processor = (
        structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[*SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=SHARED_PROCESSORS)
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    # SQL echo is controlled by the engine, not by the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> Iterator[dict[str, Any]]:
    """Log ``operation`` once it finishes, with its duration.

    The yielded dict collects outcome fields (per-status counts, error
    totals) that are logged alongside ``context``:

        with log_timing("reconciliation_run", logger=logger, lines=120) as ctx:
            run = ...
            ctx.update(run.counts())
    """
    log = logger or get_logger(__name__)
    outcome: dict[str, Any] = {}
    started = time.perf_counter()
    try:
        yield outcome
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        getattr(log, level, log.info)(
            f"{operation} completed",
            operation=operation,
            duration_ms=elapsed_ms,
            **context,
            **outcome,
        )


def log_exception(
    logger: BoundLogger,
    exc: BaseException,
    message: str,
    *,
    level: str = "error",
    include_traceback: bool = True,
    **extra: Any,
) -> None:
    """Log ``exc`` with its type and module; used where a failure is isolated, not raised."""
    fields: dict[str, Any] = {
        "error": str(exc),
        "error_type": type(exc).__name__,
        "error_module": type(exc).__module__,
        **extra,
    }
    if include_traceback:
        fields["exc_info"] = exc
    getattr(logger, level, logger.error)(message, **fields)
