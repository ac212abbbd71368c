"""Prometheus metrics for the newsletter outbox.

Metrics cover both sides of the pipeline:

- Publish requests by result (new, replay, rejected, race, error)
- Delivery task outcomes (sent, send_failed, invalid_recipient)
- Outbound send duration
- Expiry reaper passes and records removed

Examples:
    Recording a replayed publish request::

        from newsletter_outbox.observability.metrics import record_publish

        record_publish(result="replay", status_code=303)

    Recording a processed delivery task::

        from newsletter_outbox.observability.metrics import record_delivery

        record_delivery(outcome="sent")
"""

from prometheus_client import Counter, Gauge, Histogram

# Labels: result (new, replay, rejected, race, error), status_code
publish_requests_total = Counter(
    "newsletter_publish_requests_total",
    "Total number of publish requests handled",
    ["result", "status_code"],
)

# Labels: outcome (sent, send_failed, invalid_recipient)
delivery_tasks_total = Counter(
    "newsletter_delivery_tasks_total",
    "Total number of delivery tasks processed",
    ["outcome"],
)

delivery_errors_total = Counter(
    "newsletter_delivery_worker_errors_total",
    "Unexpected errors raised while executing a delivery task",
)

send_duration_seconds = Histogram(
    "newsletter_send_duration_seconds",
    "Duration of outbound send calls in seconds",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

enqueued_tasks_total = Counter(
    "newsletter_enqueued_tasks_total",
    "Total number of delivery tasks written to the outbox",
)

active_workers = Gauge(
    "newsletter_active_delivery_workers",
    "Number of delivery workers currently running",
)

expiry_passes_total = Counter(
    "newsletter_expiry_passes_total",
    "Total number of expiry reaper passes",
    ["result"],
)

expiry_records_removed_total = Counter(
    "newsletter_expiry_records_removed_total",
    "Total number of expired idempotency records removed",
)


def record_publish(result: str, status_code: int | None = None) -> None:
    """Record a handled publish request.

    Args:
        result: The result type (new, replay, rejected, race, error)
        status_code: Status code of the returned snapshot, if any

    Examples:
        >>> record_publish("new", 303)
        >>> record_publish("rejected")
    """
    publish_requests_total.labels(
        result=result,
        status_code=str(status_code) if status_code is not None else "none",
    ).inc()


def record_enqueued(task_count: int) -> None:
    """Record delivery tasks written by one publish request."""
    enqueued_tasks_total.inc(task_count)


def record_delivery(outcome: str) -> None:
    """Record a processed delivery task.

    Args:
        outcome: sent, send_failed or invalid_recipient
    """
    delivery_tasks_total.labels(outcome=outcome).inc()


def record_send_duration(seconds: float) -> None:
    """Record how long an outbound send call took."""
    send_duration_seconds.observe(seconds)


def record_worker_error() -> None:
    """Record an unexpected delivery worker error."""
    delivery_errors_total.inc()


def record_expiry(records_removed: int | None) -> None:
    """Record an expiry reaper pass.

    Args:
        records_removed: Number of records removed, or None if the pass failed

    Examples:
        >>> record_expiry(42)
        >>> record_expiry(None)
    """
    if records_removed is None:
        expiry_passes_total.labels(result="failed").inc()
        return
    expiry_passes_total.labels(result="ok").inc()
    expiry_records_removed_total.inc(records_removed)
