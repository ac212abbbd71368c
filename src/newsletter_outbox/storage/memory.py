"""In-memory storage adapter with asyncio concurrency control.

This module provides a single-process implementation of the StorageAdapter
protocol. It emulates the transactional behaviour of the SQL adapter so the
coordinator and the workers can be exercised without a database:

    - Writes are staged on the transaction and applied atomically on commit
    - A per-(actor, key) asyncio.Lock is taken by insert_idempotency_record()
      and held until commit/rollback, so a concurrent duplicate insert waits
      for the first transaction the way a unique index does
    - Claimed delivery tasks are hidden from other transactions until the
      claiming transaction finishes (skip-locked semantics)

The MemoryStorageAdapter is suitable for:
    - Development and testing
    - Single-process deployments where durability is not required

For anything that runs admission and delivery in separate processes use
SqlStorageAdapter instead.

Examples:
    Basic usage::

        from newsletter_outbox.storage.memory import MemoryStorageAdapter

        adapter = MemoryStorageAdapter()
        tx = await adapter.begin()
        inserted = await tx.insert_idempotency_record(actor_id, "abc123", utc_now())
        await tx.commit()
"""

import asyncio
from datetime import datetime
from uuid import UUID

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

RecordKey = tuple[UUID, str]
TaskKey = tuple[UUID, str]


def _task_key(task: DeliveryTask) -> TaskKey:
    return (task.issue_id, task.subscriber_email)


async def _round_trip() -> None:
    # Every store call suspends the caller, as a real round trip would
    await asyncio.sleep(0)


class MemoryTransaction(StoreTransaction):
    """A transaction against a MemoryStorageAdapter.

    Attributes:
        _adapter: The owning adapter.
        _held_locks: Record keys whose locks this transaction holds.
        _new_records: Records inserted by this transaction.
        _responses: Responses saved onto already committed records.
        _new_issues: Issues inserted by this transaction.
        _new_tasks: Delivery tasks enqueued by this transaction.
        _claimed: Committed tasks claimed by this transaction.
        _deleted: Committed tasks deleted by this transaction.
    """

    def __init__(self, adapter: "MemoryStorageAdapter") -> None:
        self._adapter = adapter
        self._held_locks: list[RecordKey] = []
        self._new_records: dict[RecordKey, IdempotencyRecord] = {}
        self._responses: dict[RecordKey, ResponseSnapshot] = {}
        self._new_issues: dict[UUID, NewsletterIssue] = {}
        self._new_tasks: dict[TaskKey, DeliveryTask] = {}
        self._claimed: set[TaskKey] = set()
        self._deleted: set[TaskKey] = set()
        self._finished = False

    def _ensure_open(self) -> None:
        if self._finished:
            raise StorageError("Transaction has already been committed or rolled back")

    async def insert_idempotency_record(
        self,
        actor_id: UUID,
        idempotency_key: str,
        created_at: datetime,
    ) -> bool:
        """Insert a pending record, doing nothing on conflict.

        If another open transaction inserted the same pair, this waits until
        that transaction finishes, then re-checks.
        """
        self._ensure_open()
        await _round_trip()
        key = (actor_id, idempotency_key)
        if key in self._new_records:
            return False

        adapter = self._adapter
        # Ensure lock exists for this key (protected by global lock)
        async with adapter._global_lock:
            lock = adapter._locks.setdefault(key, asyncio.Lock())
            adapter._lock_waiters[key] = adapter._lock_waiters.get(key, 0) + 1

        try:
            await lock.acquire()
        finally:
            adapter._lock_waiters[key] -= 1
            if adapter._lock_waiters[key] == 0:
                del adapter._lock_waiters[key]

        if key in adapter._records:
            lock.release()
            adapter._discard_lock(key)
            return False

        # Lock stays held until commit/rollback
        self._held_locks.append(key)
        self._new_records[key] = IdempotencyRecord(
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            created_at=created_at,
        )
        return True

    async def save_response(
        self,
        actor_id: UUID,
        idempotency_key: str,
        response: ResponseSnapshot,
    ) -> None:
        self._ensure_open()
        await _round_trip()
        key = (actor_id, idempotency_key)
        if key in self._new_records:
            self._new_records[key] = self._new_records[key].model_copy(
                update={"response": response}
            )
        elif key in self._adapter._records:
            self._responses[key] = response

    async def insert_issue(self, issue: NewsletterIssue) -> None:
        self._ensure_open()
        await _round_trip()
        if issue.issue_id in self._new_issues or issue.issue_id in self._adapter._issues:
            raise StorageError(f"Newsletter issue {issue.issue_id} already exists")
        self._new_issues[issue.issue_id] = issue

    async def enqueue_delivery_tasks(self, issue_id: UUID) -> int:
        """Snapshot confirmed subscribers into delivery tasks."""
        self._ensure_open()
        await _round_trip()
        count = 0
        for subscriber in self._adapter._subscribers.values():
            if subscriber.status != SubscriptionStatus.CONFIRMED:
                continue
            task = DeliveryTask(issue_id=issue_id, subscriber_email=subscriber.email)
            self._new_tasks[_task_key(task)] = task
            count += 1
        return count

    async def claim_delivery_task(self) -> DeliveryTask | None:
        """Claim the first committed task not held by another transaction."""
        self._ensure_open()
        await _round_trip()
        for key, task in self._adapter._tasks.items():
            if key in self._adapter._claimed or key in self._deleted:
                continue
            self._adapter._claimed.add(key)
            self._claimed.add(key)
            return task
        return None

    async def get_issue(self, issue_id: UUID) -> NewsletterIssue:
        self._ensure_open()
        await _round_trip()
        issue = self._new_issues.get(issue_id) or self._adapter._issues.get(issue_id)
        if issue is None:
            raise StorageError(f"Newsletter issue {issue_id} not found")
        return issue

    async def delete_delivery_task(self, task: DeliveryTask) -> bool:
        self._ensure_open()
        await _round_trip()
        key = _task_key(task)
        if key in self._new_tasks:
            del self._new_tasks[key]
            return True
        if key in self._adapter._tasks and key not in self._deleted:
            self._deleted.add(key)
            return True
        return False

    async def commit(self) -> None:
        """Apply every staged write, then release claims and locks."""
        self._ensure_open()
        await _round_trip()
        adapter = self._adapter
        adapter._records.update(self._new_records)
        for key, response in self._responses.items():
            if key in adapter._records:
                adapter._records[key] = adapter._records[key].model_copy(
                    update={"response": response}
                )
        adapter._issues.update(self._new_issues)
        adapter._tasks.update(self._new_tasks)
        for key in self._deleted:
            adapter._tasks.pop(key, None)
        self._release()

    async def rollback(self) -> None:
        """Discard staged writes and release claims and locks."""
        if self._finished:
            return
        self._release()

    def _release(self) -> None:
        self._finished = True
        self._adapter._claimed.difference_update(self._claimed)
        for key in self._held_locks:
            lock = self._adapter._locks.get(key)
            if lock is not None and lock.locked():
                lock.release()
            self._adapter._discard_lock(key)
        self._held_locks.clear()


class MemoryStorageAdapter(StorageAdapter):
    """In-memory storage adapter with asyncio concurrency control.

    Attributes:
        _records: Committed idempotency records keyed by (actor_id, key).
        _issues: Committed newsletter issues keyed by id.
        _tasks: Committed delivery tasks keyed by (issue_id, email).
        _subscribers: Subscribers keyed by email.
        _locks: Per-record-key locks held by inserting transactions.
        _lock_waiters: Number of inserts waiting on each lock in _locks.
        _claimed: Committed tasks currently claimed by an open transaction.
        _global_lock: Lock protecting the _locks dictionary.
    """

    def __init__(self) -> None:
        """Initialize empty tables and the global lock."""
        self._records: dict[RecordKey, IdempotencyRecord] = {}
        self._issues: dict[UUID, NewsletterIssue] = {}
        self._tasks: dict[TaskKey, DeliveryTask] = {}
        self._subscribers: dict[str, Subscriber] = {}
        self._locks: dict[RecordKey, asyncio.Lock] = {}
        self._lock_waiters: dict[RecordKey, int] = {}
        self._claimed: set[TaskKey] = set()
        self._global_lock = asyncio.Lock()

    def _discard_lock(self, key: RecordKey) -> None:
        # Locks that are held or awaited stay mapped
        lock = self._locks.get(key)
        if lock is not None and not lock.locked() and key not in self._lock_waiters:
            del self._locks[key]

    async def begin(self) -> MemoryTransaction:
        await _round_trip()
        return MemoryTransaction(self)

    async def get_idempotency_record(
        self,
        actor_id: UUID,
        idempotency_key: str,
    ) -> IdempotencyRecord | None:
        await _round_trip()
        return self._records.get((actor_id, idempotency_key))

    async def delete_expired_records(self, cutoff: datetime) -> int:
        """Remove records created before ``cutoff`` and their unused locks."""
        await _round_trip()
        removed = 0
        async with self._global_lock:
            expired_keys = [
                key for key, record in self._records.items() if record.created_at < cutoff
            ]
            for key in expired_keys:
                if self._records.pop(key, None) is not None:
                    removed += 1
                # Clean up lock if it's neither held nor awaited
                self._discard_lock(key)

        return removed

    async def add_subscriber(self, subscriber: Subscriber) -> None:
        await _round_trip()
        if subscriber.email in self._subscribers:
            raise StorageError(f"Subscriber {subscriber.email} already exists")
        self._subscribers[subscriber.email] = subscriber

    async def confirm_subscriber(self, email: str) -> bool:
        await _round_trip()
        subscriber = self._subscribers.get(email)
        if subscriber is None:
            return False
        self._subscribers[email] = subscriber.model_copy(
            update={"status": SubscriptionStatus.CONFIRMED}
        )
        return True

    async def list_issues(self) -> list[NewsletterIssue]:
        await _round_trip()
        return list(self._issues.values())

    async def list_delivery_tasks(self, issue_id: UUID | None = None) -> list[DeliveryTask]:
        await _round_trip()
        return [
            task
            for task in self._tasks.values()
            if issue_id is None or task.issue_id == issue_id
        ]

    async def count_delivery_tasks(self) -> int:
        await _round_trip()
        return len(self._tasks)
