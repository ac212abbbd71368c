"""
Idempotent newsletter publishing with a transactional outbox.

This package admits publish requests at most once per (actor, idempotency
key), records one delivery task per confirmed subscriber in the same
transaction, and drains those tasks with background delivery workers.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
