"""Storage adapters for the newsletter outbox.

All adapters implement the StorageAdapter protocol defined in base.py. The
idempotency table, the issues, the delivery queue and the subscriptions live
in one store so that admission commits them in a single transaction.

Available Adapters:
    - SqlStorageAdapter: SQLAlchemy-backed store (PostgreSQL, SQLite for tests)
    - MemoryStorageAdapter: In-process store for tests and local runs
"""

from newsletter_outbox.storage.base import StorageAdapter, StoreTransaction
from newsletter_outbox.storage.memory import MemoryStorageAdapter
from newsletter_outbox.storage.sql import SqlStorageAdapter

__all__ = [
    "StorageAdapter",
    "StoreTransaction",
    "MemoryStorageAdapter",
    "SqlStorageAdapter",
]
