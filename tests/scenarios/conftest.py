"""
Shared fixtures for end-to-end scenario tests.
"""

from collections.abc import AsyncIterator

import pytest_asyncio

from newsletter_outbox.config import OutboxConfig
from newsletter_outbox.storage.base import StorageAdapter
from newsletter_outbox.storage.memory import MemoryStorageAdapter
from newsletter_outbox.storage.sql import SqlStorageAdapter


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def storage(request, tmp_path) -> AsyncIterator[StorageAdapter]:
    """Run a sequential scenario against each storage backend."""
    if request.param == "memory":
        yield MemoryStorageAdapter()
        return

    config = OutboxConfig(database_url=f"sqlite+aiosqlite:///{tmp_path / 'scenario.db'}")
    sql_storage = SqlStorageAdapter.from_config(config)
    await sql_storage.create_schema()
    yield sql_storage
    await sql_storage.close()
