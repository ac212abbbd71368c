"""Storage adapter protocol for the newsletter outbox.

This module defines the interface every storage backend implements. The
idempotency table, the issue table, the delivery queue and the subscriptions
table all live in the same store, and every mutation happens inside a
``StoreTransaction`` obtained from ``StorageAdapter.begin()``.

Examples:
    Admission, as driven by the request coordinator::

        tx = await storage.begin()
        if await tx.insert_idempotency_record(actor_id, key, now):
            await tx.insert_issue(issue)
            await tx.enqueue_delivery_tasks(issue.issue_id)
            await tx.save_response(actor_id, key, snapshot)
            await tx.commit()
        else:
            await tx.rollback()

    Draining, as driven by a delivery worker::

        tx = await storage.begin()
        task = await tx.claim_delivery_task()
        if task is not None:
            ...  # send
            await tx.delete_delivery_task(task)
            await tx.commit()

Atomicity and Concurrency Requirements:
    All StorageAdapter implementations MUST guarantee:

    1. **Atomic dedup insert**: insert_idempotency_record() succeeds for
       exactly one transaction per (actor_id, key). A concurrent insert of
       the same pair must not succeed while the first transaction is open;
       it reports False once the first commits, or succeeds if it rolled back.

    2. **All-or-nothing commit**: the record, the issue, the delivery tasks
       and the saved response become visible together on commit and vanish
       together on rollback.

    3. **Skip-locked claims**: claim_delivery_task() never returns a task
       already claimed by another open transaction and never blocks on one.
       The claim is held until that transaction commits or rolls back.

    4. **Backend errors**: failures are raised as StorageError, never as
       driver-specific exceptions.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from newsletter_outbox.models import (
    DeliveryTask,
    IdempotencyRecord,
    NewsletterIssue,
    ResponseSnapshot,
    Subscriber,
)


@runtime_checkable
class StoreTransaction(Protocol):
    """One open ACID transaction against the shared store.

    A transaction is finished by exactly one call to commit() or rollback();
    rollback() after a finished transaction is a no-op so it can be used in
    cleanup paths unconditionally.
    """

    async def insert_idempotency_record(
        self,
        actor_id: UUID,
        idempotency_key: str,
        created_at: datetime,
    ) -> bool:
        """Insert a pending record, doing nothing on conflict.

        Returns:
            True if the row was inserted, False if it already existed.
        """
        ...

    async def save_response(
        self,
        actor_id: UUID,
        idempotency_key: str,
        response: ResponseSnapshot,
    ) -> None:
        """Write the response snapshot onto the pending record."""
        ...

    async def insert_issue(self, issue: NewsletterIssue) -> None:
        """Insert a newsletter issue row."""
        ...

    async def enqueue_delivery_tasks(self, issue_id: UUID) -> int:
        """Insert one delivery task per confirmed subscriber in one write.

        Returns:
            The number of tasks enqueued.
        """
        ...

    async def claim_delivery_task(self) -> DeliveryTask | None:
        """Lock and return one unclaimed task, skipping locked ones.

        Returns:
            The claimed task, or None if no unclaimed task exists.
        """
        ...

    async def get_issue(self, issue_id: UUID) -> NewsletterIssue:
        """Load an issue.

        Raises:
            StorageError: If the issue does not exist.
        """
        ...

    async def delete_delivery_task(self, task: DeliveryTask) -> bool:
        """Delete a claimed task.

        Returns:
            True if a row was deleted.
        """
        ...

    async def commit(self) -> None:
        """Commit and finish the transaction."""
        ...

    async def rollback(self) -> None:
        """Roll back and finish the transaction."""
        ...


@runtime_checkable
class StorageAdapter(Protocol):
    """Protocol defining the interface for outbox storage backends.

    All methods are async and safe to call concurrently from multiple
    asyncio tasks. Methods other than begin() run in their own short
    transaction.
    """

    async def begin(self) -> StoreTransaction:
        """Open a new transaction."""
        ...

    async def get_idempotency_record(
        self,
        actor_id: UUID,
        idempotency_key: str,
    ) -> IdempotencyRecord | None:
        """Load a committed idempotency record, or None."""
        ...

    async def delete_expired_records(self, cutoff: datetime) -> int:
        """Delete idempotency records created strictly before ``cutoff``.

        Returns:
            The number of records removed.
        """
        ...

    async def add_subscriber(self, subscriber: Subscriber) -> None:
        """Insert a subscriber row."""
        ...

    async def confirm_subscriber(self, email: str) -> bool:
        """Mark a subscriber as confirmed.

        Returns:
            True if a subscriber was updated.
        """
        ...

    async def list_issues(self) -> list[NewsletterIssue]:
        """Return every committed issue."""
        ...

    async def list_delivery_tasks(self, issue_id: UUID | None = None) -> list[DeliveryTask]:
        """Return committed delivery tasks, optionally for one issue."""
        ...

    async def count_delivery_tasks(self) -> int:
        """Return the number of committed delivery tasks (queue depth)."""
        ...
