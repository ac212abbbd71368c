"""Observability utilities for the newsletter outbox.

This package provides monitoring and debugging capabilities:
- Prometheus metrics for admission, delivery and expiry
- Structured logging with contextual information
"""

from newsletter_outbox.observability.logging import configure_logging, get_logger, log_context
from newsletter_outbox.observability.metrics import (
    record_delivery,
    record_expiry,
    record_publish,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "log_context",
    "record_publish",
    "record_delivery",
    "record_expiry",
]
