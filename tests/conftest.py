"""
Pytest configuration and shared fixtures for newsletter_outbox tests.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from newsletter_outbox.config import OutboxConfig
from newsletter_outbox.domain import SubscriberEmail
from newsletter_outbox.models import NewsletterPayload, Subscriber
from newsletter_outbox.storage.base import StorageAdapter
from newsletter_outbox.storage.memory import MemoryStorageAdapter
from newsletter_outbox.storage.sql import SqlStorageAdapter


class RecordingEmailClient:
    """Email client that records every send instead of talking to a provider.

    Sends to any address in ``fail_for`` raise ``ConnectionError``. With
    ``yield_to_loop`` every send suspends, like a real network call.
    """

    def __init__(self, fail_for: set[str] | None = None, yield_to_loop: bool = False) -> None:
        self.sent: list[tuple[str, str, str, str]] = []
        self.attempts: list[str] = []
        self.fail_for = fail_for or set()
        self.yield_to_loop = yield_to_loop

    async def send_email(
        self,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        self.attempts.append(str(recipient))
        if self.yield_to_loop:
            await asyncio.sleep(0)
        if str(recipient) in self.fail_for:
            raise ConnectionError(f"provider rejected {recipient}")
        self.sent.append((str(recipient), subject, html_content, text_content))

    @property
    def recipients(self) -> list[str]:
        return [entry[0] for entry in self.sent]


@pytest.fixture
def actor_id() -> UUID:
    """Provide a publisher identity for tests."""
    return uuid4()


@pytest.fixture
def sample_idempotency_key() -> str:
    """Provide a sample idempotency key for tests."""
    return "test-key-12345"


@pytest.fixture
def payload() -> NewsletterPayload:
    """Provide a sample newsletter payload."""
    return NewsletterPayload(
        title="Issue #1",
        html="<p>Hello subscribers</p>",
        text="Hello subscribers",
    )


@pytest.fixture
def memory_storage() -> MemoryStorageAdapter:
    """Create a fresh memory storage adapter for each test."""
    return MemoryStorageAdapter()


@pytest_asyncio.fixture
async def sql_storage(tmp_path) -> AsyncIterator[SqlStorageAdapter]:
    """Create a SQLite-backed storage adapter with a fresh schema."""
    config = OutboxConfig(database_url=f"sqlite+aiosqlite:///{tmp_path / 'outbox.db'}")
    storage = SqlStorageAdapter.from_config(config)
    await storage.create_schema()
    yield storage
    await storage.close()


@pytest.fixture
def email_client() -> RecordingEmailClient:
    """Create an email client that records sends."""
    return RecordingEmailClient()


@pytest.fixture
def make_email_client() -> Callable[..., RecordingEmailClient]:
    """Provide a factory for email clients with custom behaviour."""
    return RecordingEmailClient


@pytest.fixture
def add_confirmed() -> Callable[[StorageAdapter, str], Awaitable[Subscriber]]:
    """Provide a helper that adds and confirms a subscriber."""

    async def _add(storage: StorageAdapter, email: str) -> Subscriber:
        subscriber = Subscriber(email=email, name=email.split("@")[0])
        await storage.add_subscriber(subscriber)
        await storage.confirm_subscriber(email)
        return subscriber

    return _add
