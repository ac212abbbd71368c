"""Structured logging configuration for the newsletter outbox.

This module provides structured logging using structlog. Every component
logs dotted event names with key/value context, for example::

    logger.info(
        "delivery.task_completed",
        newsletter_issue_id="0b7c...",
        subscriber_email="ursula@example.com",
    )

Output (JSON)::

    {
        "event": "delivery.task_completed",
        "newsletter_issue_id": "0b7c...",
        "subscriber_email": "ursula@example.com",
        "timestamp": "2024-01-01T00:00:00.000000Z",
        "level": "info"
    }

Context shared by every line emitted while handling one publish request or
one delivery task is bound once with log_context() instead of being repeated
on each call::

    with log_context(worker_id="worker-0", newsletter_issue_id=issue_id):
        logger.info("delivery.sent")
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

import structlog

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_level(level: str) -> int:
    name = level.upper()
    if name not in _LEVELS:
        raise ValueError(f"Unknown log level {level!r}, expected one of {', '.join(_LEVELS)}")
    return getattr(logging, name)


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application.

    This should be called once at process startup by whatever boots the
    admission server or the worker processes.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, emit JSON logs; if False, use console format

    Raises:
        ValueError: If ``level`` is not a known level name.

    Examples:
        >>> configure_logging(level="DEBUG", json_output=True)
        >>> configure_logging(level="INFO", json_output=False)
    """
    numeric_level = _parse_level(level)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    renderer: Any
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` to every log line emitted inside the block.

    UUIDs are rendered as strings and None values are dropped. Bindings are
    task-local and restored on exit, so nested blocks and concurrent workers
    do not see each other's context.
    """
    values = {
        name: str(value) if isinstance(value, UUID) else value
        for name, value in fields.items()
        if value is not None
    }
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str) -> Any:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ from the calling module)
    """
    return structlog.get_logger(name)
