"""Scenario 1: Happy Path

This module tests the publish-then-deliver flow end to end:
- A new key publishes one issue and enqueues one task per confirmed subscriber
- The response is a 303 redirect to the newsletters page
- Resubmitting the same key returns the identical response and writes nothing
- Delivery workers drain the queue, sending the issue to every recipient
"""

from uuid import uuid4

import pytest

from newsletter_outbox.adapters.starlette import snapshot_to_response
from newsletter_outbox.core.delivery import DeliveryWorker
from newsletter_outbox.core.publish import NEWSLETTERS_PAGE, NewsletterPublisher
from newsletter_outbox.models import NewsletterPayload, RecordState, Subscriber, TaskOutcome

RECIPIENTS = ["ada@example.com", "grace@example.com", "linus@example.com"]


@pytest.fixture
def issue_payload() -> NewsletterPayload:
    return NewsletterPayload(
        title="Release notes",
        html="<h1>Release notes</h1>",
        text="Release notes",
    )


async def seed_subscribers(storage) -> None:
    for email in RECIPIENTS:
        await storage.add_subscriber(Subscriber(email=email, name=email.split("@")[0]))
        await storage.confirm_subscriber(email)
    # Never confirmed, must not receive anything
    await storage.add_subscriber(Subscriber(email="pending@example.com", name="pending"))


@pytest.mark.asyncio
async def test_publish_creates_issue_and_tasks(storage, issue_payload):
    """Test the first submission of key "abc123"."""
    await seed_subscribers(storage)
    actor_id = uuid4()

    outcome = await NewsletterPublisher(storage).publish(actor_id, "abc123", issue_payload)

    assert outcome.was_replayed is False
    assert outcome.response.status_code == 303
    assert outcome.response.header_values("location") == [NEWSLETTERS_PAGE.encode()]
    assert outcome.response.body == b""
    assert outcome.task_count == 3

    tasks = await storage.list_delivery_tasks(outcome.issue_id)
    assert sorted(t.subscriber_email for t in tasks) == RECIPIENTS

    record = await storage.get_idempotency_record(actor_id, "abc123")
    assert record.state == RecordState.COMPLETED


@pytest.mark.asyncio
async def test_resubmission_replays_without_new_rows(storage, issue_payload):
    """Test that resubmitting "abc123" changes nothing."""
    await seed_subscribers(storage)
    actor_id = uuid4()
    publisher = NewsletterPublisher(storage)

    first = await publisher.publish(actor_id, "abc123", issue_payload)
    second = await publisher.publish(actor_id, "abc123", issue_payload)
    third = await publisher.publish(actor_id, "abc123", issue_payload)

    assert second.was_replayed is True
    assert third.was_replayed is True
    assert second.response == first.response
    assert third.response == first.response
    assert len(await storage.list_issues()) == 1
    assert await storage.count_delivery_tasks() == 3

    # The replayed HTTP response is byte-identical to the original
    original = snapshot_to_response(first.response)
    replayed = snapshot_to_response(second.response)
    assert replayed.status_code == original.status_code
    assert replayed.raw_headers == original.raw_headers
    assert replayed.body == original.body


@pytest.mark.asyncio
async def test_worker_delivers_to_every_recipient(storage, issue_payload, email_client):
    """Test that a worker drains the tasks created by the publish."""
    await seed_subscribers(storage)
    await NewsletterPublisher(storage).publish(uuid4(), "abc123", issue_payload)
    worker = DeliveryWorker(storage, email_client)

    while await worker.try_execute_task() is TaskOutcome.TASK_COMPLETE:
        pass

    assert sorted(email_client.recipients) == RECIPIENTS
    assert all(
        sent[1:] == (issue_payload.title, issue_payload.html, issue_payload.text)
        for sent in email_client.sent
    )
    assert await storage.count_delivery_tasks() == 0


@pytest.mark.asyncio
async def test_later_confirmations_do_not_receive_issue(storage, issue_payload, email_client):
    """Test that recipients are fixed when the issue is published."""
    await seed_subscribers(storage)
    await NewsletterPublisher(storage).publish(uuid4(), "abc123", issue_payload)
    await storage.confirm_subscriber("pending@example.com")

    worker = DeliveryWorker(storage, email_client)
    while await worker.try_execute_task() is TaskOutcome.TASK_COMPLETE:
        pass

    assert "pending@example.com" not in email_client.recipients
