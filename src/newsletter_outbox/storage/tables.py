"""SQLAlchemy table definitions for the shared relational store.

Tables:
- idempotency: one row per (user_id, idempotency_key), with the saved response
- newsletter_issues: published issues
- issue_delivery_queue: the outbox, one row per pending (issue, recipient)
- subscriptions: recipients; only confirmed ones are enqueued

Column names follow the wire/storage layout the workers and the admission
path share, so that admission and delivery can run in separate processes
against the same database.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all outbox tables."""
    pass


class IdempotencyRow(Base):
    """Dedup record. The composite primary key is the uniqueness guarantee."""

    __tablename__ = "idempotency"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    idempotency_key: Mapped[str] = mapped_column(Text, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    response_status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # [[name, base64(value)], ...] in original order
    response_headers: Mapped[list | None] = mapped_column(JSON, nullable=True)
    response_body: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)


class NewsletterIssueRow(Base):
    __tablename__ = "newsletter_issues"

    newsletter_issue_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    html_content: Mapped[str] = mapped_column(Text, nullable=False)
    text_content: Mapped[str] = mapped_column(Text, nullable=False)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class IssueDeliveryQueueRow(Base):
    __tablename__ = "issue_delivery_queue"

    newsletter_issue_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("newsletter_issues.newsletter_issue_id"),
        primary_key=True,
    )
    subscriber_email: Mapped[str] = mapped_column(Text, primary_key=True)


class SubscriptionRow(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    subscribed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
