"""Scenario 2: Concurrent Duplicate Submissions

This module tests simultaneous submissions sharing key "dup-1":
- Exactly one reaches StartProcessing and publishes
- The others replay the completed snapshot (or see a conflict race)
- Exactly one issue and one set of delivery tasks exist afterwards
- A key whose record has no saved response surfaces as ConflictRaceError

Concurrency runs on the memory adapter, which blocks a duplicate insert until
the first transaction finishes, the way a unique index does.
"""

import asyncio
from uuid import uuid4

import pytest

from newsletter_outbox.core.coordinator import RequestCoordinator, StartProcessing
from newsletter_outbox.core.publish import NEWSLETTERS_PAGE, NewsletterPublisher, see_other
from newsletter_outbox.domain import IdempotencyKey
from newsletter_outbox.exceptions import ConflictRaceError
from newsletter_outbox.models import NewsletterPayload, Subscriber
from newsletter_outbox.storage.memory import MemoryStorageAdapter


@pytest.fixture
def storage() -> MemoryStorageAdapter:
    return MemoryStorageAdapter()


@pytest.fixture
def issue_payload() -> NewsletterPayload:
    return NewsletterPayload(title="Weekly", html="<p>Weekly</p>", text="Weekly")


async def seed_subscribers(storage, count: int) -> None:
    for i in range(count):
        email = f"reader{i}@example.com"
        await storage.add_subscriber(Subscriber(email=email, name=f"reader{i}"))
        await storage.confirm_subscriber(email)


@pytest.mark.asyncio
async def test_two_simultaneous_submissions(storage, issue_payload):
    """Test that exactly one of two simultaneous submissions publishes."""
    await seed_subscribers(storage, 3)
    actor_id = uuid4()
    publisher = NewsletterPublisher(storage)

    results = await asyncio.gather(
        publisher.publish(actor_id, "dup-1", issue_payload),
        publisher.publish(actor_id, "dup-1", issue_payload),
        return_exceptions=True,
    )

    outcomes = [r for r in results if not isinstance(r, BaseException)]
    errors = [r for r in results if isinstance(r, BaseException)]
    assert all(isinstance(e, ConflictRaceError) for e in errors)
    assert [o.was_replayed for o in outcomes].count(False) == 1
    assert all(o.response == outcomes[0].response for o in outcomes)

    assert len(await storage.list_issues()) == 1
    assert await storage.count_delivery_tasks() == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("submissions", [5, 20])
async def test_many_simultaneous_submissions(storage, issue_payload, submissions):
    """Test that N racing submissions yield one issue and identical responses."""
    await seed_subscribers(storage, 4)
    actor_id = uuid4()
    publisher = NewsletterPublisher(storage)

    outcomes = await asyncio.gather(
        *(publisher.publish(actor_id, "dup-1", issue_payload) for _ in range(submissions))
    )

    assert [o.was_replayed for o in outcomes].count(False) == 1
    assert all(o.response == outcomes[0].response for o in outcomes)
    assert len(await storage.list_issues()) == 1
    assert await storage.count_delivery_tasks() == 4


@pytest.mark.asyncio
async def test_only_one_start_processing(storage):
    """Test the coordinator directly: one StartProcessing, one replay."""
    coordinator = RequestCoordinator(storage)
    actor_id = uuid4()
    key = IdempotencyKey.parse("dup-1")

    first = await coordinator.try_processing(actor_id, key)
    assert isinstance(first, StartProcessing)

    second_task = asyncio.create_task(coordinator.try_processing(actor_id, key))
    await asyncio.sleep(0)
    assert not second_task.done()

    saved = await coordinator.save_response(
        first.transaction, actor_id, key, see_other(NEWSLETTERS_PAGE)
    )
    second = await second_task

    assert second.response == saved


@pytest.mark.asyncio
async def test_record_without_response_is_conflict_race(storage, issue_payload):
    """Test that a committed record missing its response is a conflict race."""
    coordinator = RequestCoordinator(storage)
    actor_id = uuid4()
    key = IdempotencyKey.parse("dup-1")

    action = await coordinator.try_processing(actor_id, key)
    await action.transaction.commit()

    with pytest.raises(ConflictRaceError):
        await NewsletterPublisher(storage).publish(actor_id, "dup-1", issue_payload)
    assert await storage.list_issues() == []
