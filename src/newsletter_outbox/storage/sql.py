"""Relational storage adapter built on async SQLAlchemy.

This is the production backend. Every guarantee the pipeline relies on is
delegated to the database, so admission and delivery may run in any number
of processes:

- Dedup: ``INSERT ... ON CONFLICT DO NOTHING`` against the composite primary
  key of ``idempotency``. A concurrent duplicate insert blocks on the
  uncommitted row and then does nothing.
- Atomic enqueue: ``INSERT INTO issue_delivery_queue ... SELECT`` from
  confirmed subscriptions, in the admission transaction.
- Claiming: ``SELECT ... FOR UPDATE SKIP LOCKED LIMIT 1``; the row lock is held
  until the worker commits the delete.

PostgreSQL (asyncpg) is the reference database. SQLite (aiosqlite) is
supported for local runs and tests; it has no row locks, so there the claim
relies on SQLite's single-writer lock and concurrent workers are not
supported.

Examples:
    Creating an adapter from configuration::

        from newsletter_outbox.config import OutboxConfig
        from newsletter_outbox.storage.sql import SqlStorageAdapter

        storage = SqlStorageAdapter.from_config(OutboxConfig.from_env())
        await storage.create_schema()
        ...
        await storage.close()
"""

import base64
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, Uuid, delete, func, insert, literal, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from newsletter_outbox.config import OutboxConfig
from newsletter_outbox.exceptions import StorageError
from newsletter_outbox.models import (
    DeliveryTask,
    IdempotencyRecord,
    NewsletterIssue,
    ResponseSnapshot,
    Subscriber,
    SubscriptionStatus,
)
from newsletter_outbox.storage.base import StorageAdapter, StoreTransaction
from newsletter_outbox.storage.tables import (
    Base,
    IdempotencyRow,
    IssueDeliveryQueueRow,
    NewsletterIssueRow,
    SubscriptionRow,
)


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Translate SQLAlchemy errors raised inside the block into StorageError."""
    try:
        yield
    except SQLAlchemyError as e:
        raise StorageError(message=f"Failed to {action}: {e}", cause=e) from e


def insert_idempotency_statement(
    dialect_name: str,
    actor_id: UUID,
    idempotency_key: str,
    created_at: datetime,
) -> Any:
    """Build the dedup insert for the given dialect.

    Raises:
        StorageError: If the dialect has no ON CONFLICT support here.
    """
    if dialect_name == "postgresql":
        insert_fn = postgresql.insert
    elif dialect_name == "sqlite":
        insert_fn = sqlite.insert
    else:
        raise StorageError(f"Unsupported database dialect: {dialect_name}")
    return (
        insert_fn(IdempotencyRow)
        .values(
            user_id=actor_id,
            idempotency_key=idempotency_key,
            created_at=created_at,
        )
        .on_conflict_do_nothing()
    )


def enqueue_tasks_statement(issue_id: UUID) -> Any:
    """Build the set-based outbox write for one issue."""
    confirmed = select(literal(issue_id, Uuid()), SubscriptionRow.email).where(
        SubscriptionRow.status == SubscriptionStatus.CONFIRMED.value
    )
    return insert(IssueDeliveryQueueRow).from_select(
        ["newsletter_issue_id", "subscriber_email"],
        confirmed,
    )


def claim_task_statement() -> Select[Any]:
    """Build the skip-locked claim of a single delivery task. No ordering."""
    return (
        select(
            IssueDeliveryQueueRow.newsletter_issue_id,
            IssueDeliveryQueueRow.subscriber_email,
        )
        .limit(1)
        .with_for_update(skip_locked=True)
    )


def _encode_headers(headers: list[tuple[str, bytes]]) -> list[list[str]]:
    return [[name, base64.b64encode(value).decode("ascii")] for name, value in headers]


def _decode_headers(raw: list[list[str]] | None) -> list[tuple[str, bytes]]:
    return [(name, base64.b64decode(value)) for name, value in raw or []]


def _row_to_record(row: IdempotencyRow) -> IdempotencyRecord:
    response = None
    if row.response_status_code is not None:
        response = ResponseSnapshot(
            status_code=row.response_status_code,
            headers=_decode_headers(row.response_headers),
            body=row.response_body or b"",
        )
    return IdempotencyRecord(
        actor_id=row.user_id,
        idempotency_key=row.idempotency_key,
        created_at=row.created_at,
        response=response,
    )


def _row_to_issue(row: NewsletterIssueRow) -> NewsletterIssue:
    return NewsletterIssue(
        issue_id=row.newsletter_issue_id,
        title=row.title,
        html_content=row.html_content,
        text_content=row.text_content,
        published_at=row.published_at,
    )


class SqlTransaction(StoreTransaction):
    """A StoreTransaction backed by one AsyncSession.

    The session auto-begins on the first statement and is closed when the
    transaction is committed or rolled back.
    """

    def __init__(self, session: AsyncSession, dialect_name: str) -> None:
        self._session = session
        self._dialect_name = dialect_name
        self._finished = False

    async def insert_idempotency_record(
        self,
        actor_id: UUID,
        idempotency_key: str,
        created_at: datetime,
    ) -> bool:
        stmt = insert_idempotency_statement(
            self._dialect_name, actor_id, idempotency_key, created_at
        )
        with _storage_errors("insert idempotency record"):
            result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def save_response(
        self,
        actor_id: UUID,
        idempotency_key: str,
        response: ResponseSnapshot,
    ) -> None:
        stmt = (
            update(IdempotencyRow)
            .where(
                IdempotencyRow.user_id == actor_id,
                IdempotencyRow.idempotency_key == idempotency_key,
            )
            .values(
                response_status_code=response.status_code,
                response_headers=_encode_headers(response.headers),
                response_body=response.body,
            )
            .execution_options(synchronize_session=False)
        )
        with _storage_errors("save response"):
            await self._session.execute(stmt)

    async def insert_issue(self, issue: NewsletterIssue) -> None:
        stmt = insert(NewsletterIssueRow).values(
            newsletter_issue_id=issue.issue_id,
            title=issue.title,
            html_content=issue.html_content,
            text_content=issue.text_content,
            published_at=issue.published_at,
        )
        with _storage_errors("insert newsletter issue"):
            await self._session.execute(stmt)

    async def enqueue_delivery_tasks(self, issue_id: UUID) -> int:
        with _storage_errors("enqueue delivery tasks"):
            result = await self._session.execute(enqueue_tasks_statement(issue_id))
            if result.rowcount is not None and result.rowcount >= 0:
                return result.rowcount
            # Driver did not report a row count
            count = await self._session.scalar(
                select(func.count())
                .select_from(IssueDeliveryQueueRow)
                .where(IssueDeliveryQueueRow.newsletter_issue_id == issue_id)
            )
        return count or 0

    async def claim_delivery_task(self) -> DeliveryTask | None:
        with _storage_errors("claim delivery task"):
            result = await self._session.execute(claim_task_statement())
            row = result.first()
        if row is None:
            return None
        return DeliveryTask(issue_id=row[0], subscriber_email=row[1])

    async def get_issue(self, issue_id: UUID) -> NewsletterIssue:
        with _storage_errors("load newsletter issue"):
            row = await self._session.get(NewsletterIssueRow, issue_id)
        if row is None:
            raise StorageError(f"Newsletter issue {issue_id} not found")
        return _row_to_issue(row)

    async def delete_delivery_task(self, task: DeliveryTask) -> bool:
        stmt = (
            delete(IssueDeliveryQueueRow)
            .where(
                IssueDeliveryQueueRow.newsletter_issue_id == task.issue_id,
                IssueDeliveryQueueRow.subscriber_email == task.subscriber_email,
            )
            .execution_options(synchronize_session=False)
        )
        with _storage_errors("delete delivery task"):
            result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def commit(self) -> None:
        if self._finished:
            raise StorageError("Transaction has already been committed or rolled back")
        self._finished = True
        try:
            with _storage_errors("commit transaction"):
                await self._session.commit()
        finally:
            await self._session.close()

    async def rollback(self) -> None:
        if self._finished:
            return
        self._finished = True
        try:
            with _storage_errors("roll back transaction"):
                await self._session.rollback()
        finally:
            await self._session.close()


class SqlStorageAdapter(StorageAdapter):
    """StorageAdapter backed by an async SQLAlchemy engine.

    Attributes:
        engine: The async engine (owns the connection pool).
        session_factory: Factory producing one AsyncSession per transaction.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_config(cls, config: OutboxConfig) -> "SqlStorageAdapter":
        """Create an engine from configuration and wrap it."""
        return cls(create_engine(config))

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def create_schema(self) -> None:
        """Create all tables (development and tests; use migrations in production)."""
        with _storage_errors("create schema"):
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the connection pool."""
        await self.engine.dispose()

    async def begin(self) -> SqlTransaction:
        return SqlTransaction(self.session_factory(), self.dialect_name)

    async def get_idempotency_record(
        self,
        actor_id: UUID,
        idempotency_key: str,
    ) -> IdempotencyRecord | None:
        with _storage_errors("load idempotency record"):
            async with self.session_factory() as session:
                row = await session.get(IdempotencyRow, (actor_id, idempotency_key))
        return _row_to_record(row) if row is not None else None

    async def delete_expired_records(self, cutoff: datetime) -> int:
        stmt = (
            delete(IdempotencyRow)
            .where(IdempotencyRow.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        with _storage_errors("delete expired idempotency records"):
            async with self.session_factory() as session, session.begin():
                result = await session.execute(stmt)
        return result.rowcount

    async def add_subscriber(self, subscriber: Subscriber) -> None:
        row = SubscriptionRow(
            id=subscriber.subscriber_id,
            email=subscriber.email,
            name=subscriber.name,
            subscribed_at=subscriber.subscribed_at,
            status=subscriber.status.value,
        )
        with _storage_errors("add subscriber"):
            async with self.session_factory() as session, session.begin():
                session.add(row)

    async def confirm_subscriber(self, email: str) -> bool:
        stmt = (
            update(SubscriptionRow)
            .where(SubscriptionRow.email == email)
            .values(status=SubscriptionStatus.CONFIRMED.value)
            .execution_options(synchronize_session=False)
        )
        with _storage_errors("confirm subscriber"):
            async with self.session_factory() as session, session.begin():
                result = await session.execute(stmt)
        return result.rowcount > 0

    async def list_issues(self) -> list[NewsletterIssue]:
        with _storage_errors("list newsletter issues"):
            async with self.session_factory() as session:
                rows = (await session.scalars(select(NewsletterIssueRow))).all()
        return [_row_to_issue(row) for row in rows]

    async def list_delivery_tasks(self, issue_id: UUID | None = None) -> list[DeliveryTask]:
        stmt = select(
            IssueDeliveryQueueRow.newsletter_issue_id,
            IssueDeliveryQueueRow.subscriber_email,
        )
        if issue_id is not None:
            stmt = stmt.where(IssueDeliveryQueueRow.newsletter_issue_id == issue_id)
        with _storage_errors("list delivery tasks"):
            async with self.session_factory() as session:
                rows = (await session.execute(stmt)).all()
        return [DeliveryTask(issue_id=row[0], subscriber_email=row[1]) for row in rows]

    async def count_delivery_tasks(self) -> int:
        stmt = select(func.count()).select_from(IssueDeliveryQueueRow)
        with _storage_errors("count delivery tasks"):
            async with self.session_factory() as session:
                count = await session.scalar(stmt)
        return count or 0


def create_engine(config: OutboxConfig) -> AsyncEngine:
    """Create the async engine described by ``config``.

    PostgreSQL gets a sized, pre-pinged pool; SQLite uses the driver defaults.
    """
    if config.database_url.startswith("sqlite"):
        return create_async_engine(config.database_url, echo=config.db_echo)
    return create_async_engine(
        config.database_url,
        pool_size=max(5, config.worker_count + 2),
        max_overflow=10,
        echo=config.db_echo,
        pool_pre_ping=True,
    )
