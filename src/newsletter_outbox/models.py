"""Core type definitions and models for the newsletter outbox.

This module provides the data structures shared by the coordinator, the
outbox, the delivery workers and the storage adapters: response snapshots,
idempotency records, newsletter issues, delivery tasks and subscribers.

Examples:
    Building the response snapshot saved for a publish request::

        from newsletter_outbox.models import ResponseSnapshot

        snapshot = ResponseSnapshot(
            status_code=303,
            headers=[("location", b"/admin/newsletters")],
            body=b"",
        )

    Inspecting an idempotency record::

        record = await storage.get_idempotency_record(actor_id, "abc123")
        if record is not None and record.state == RecordState.COMPLETED:
            replay(record.response)
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class RecordState(str, Enum):
    """Lifecycle state of an idempotency record.

    Attributes:
        PENDING: The record was inserted but no response has been saved.
        COMPLETED: The response snapshot has been written.
    """

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class SubscriptionStatus(str, Enum):
    """Subscription status. Only confirmed subscribers receive issues."""

    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"


class TaskOutcome(str, Enum):
    """Result of a single ``try_execute_task`` call.

    Attributes:
        TASK_COMPLETE: A task was claimed, processed and deleted.
        QUEUE_EMPTY: No unclaimed task was available.
    """

    TASK_COMPLETE = "TASK_COMPLETE"
    QUEUE_EMPTY = "QUEUE_EMPTY"


class ResponseSnapshot(BaseModel):
    """A saved response that is replayed verbatim for duplicate requests.

    Header order and the exact header value bytes are preserved; the same
    header name may appear more than once.

    Attributes:
        status_code: HTTP status code (e.g., 200, 303, 400).
        headers: Ordered ``(name, raw value)`` pairs.
        body: Raw response body.

    Examples:
        >>> snapshot = ResponseSnapshot(
        ...     status_code=303,
        ...     headers=[("location", b"/admin/newsletters")],
        ...     body=b"",
        ... )
        >>> snapshot.header_values("location")
        [b'/admin/newsletters']
    """

    status_code: int = Field(
        ...,
        description="HTTP status code",
        ge=100,
        le=599,
        examples=[200, 303, 400, 500],
    )
    headers: list[tuple[str, bytes]] = Field(
        default_factory=list,
        description="Ordered response header pairs",
        examples=[[("location", b"/admin/newsletters")]],
    )
    body: bytes = Field(
        default=b"",
        description="Raw response body",
    )

    model_config = {"frozen": True}

    def header_values(self, name: str) -> list[bytes]:
        """Return every value of the named header, case-insensitively.

        Args:
            name: Header name to look up.

        Returns:
            The matching values in their stored order.
        """
        wanted = name.lower()
        return [value for key, value in self.headers if key.lower() == wanted]


class IdempotencyRecord(BaseModel):
    """Persisted dedup entry for one ``(actor_id, idempotency_key)`` pair.

    Attributes:
        actor_id: Identity of the caller that owns the key.
        idempotency_key: The raw key string.
        created_at: When the record was first inserted.
        response: Saved response, present only once processing completed.
    """

    actor_id: UUID
    idempotency_key: str = Field(..., min_length=1)
    created_at: datetime
    response: ResponseSnapshot | None = None

    @property
    def state(self) -> RecordState:
        """Current lifecycle state, derived from the saved response."""
        if self.response is None:
            return RecordState.PENDING
        return RecordState.COMPLETED


class NewsletterPayload(BaseModel):
    """Business payload of a publish request."""

    title: str
    html: str
    text: str


class NewsletterIssue(BaseModel):
    """A published newsletter issue. Immutable once created.

    Attributes:
        issue_id: Unique identifier of the issue.
        title: Subject line used for delivery.
        html_content: HTML body.
        text_content: Plain-text body.
        published_at: Publication timestamp.
    """

    issue_id: UUID = Field(default_factory=uuid4)
    title: str
    html_content: str
    text_content: str
    published_at: datetime

    model_config = {"frozen": True}


class DeliveryTask(BaseModel):
    """One pending delivery of an issue to one recipient."""

    issue_id: UUID
    subscriber_email: str

    model_config = {"frozen": True}


class Subscriber(BaseModel):
    """A newsletter subscriber as stored in the subscriptions table."""

    subscriber_id: UUID = Field(default_factory=uuid4)
    email: str
    name: str
    subscribed_at: datetime = Field(default_factory=utc_now)
    status: SubscriptionStatus = SubscriptionStatus.PENDING_CONFIRMATION
