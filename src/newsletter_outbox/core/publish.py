"""Idempotent admission of newsletter publish requests.

This module ties the pieces of the admission path together:

1. Validate the idempotency key (rejected before touching the store)
2. Ask the coordinator whether the request is new or a duplicate
3. For a new request, insert the issue and enqueue its delivery tasks on the
   coordinator's transaction
4. Save the response snapshot and commit everything at once

A failure anywhere before the commit rolls back the issue, the delivery
tasks and the idempotency record together.

Examples:
    Publishing from an HTTP handler::

        publisher = NewsletterPublisher(storage)

        try:
            outcome = await publisher.publish(
                actor_id=user_id,
                raw_key=form["idempotency_key"],
                payload=NewsletterPayload(
                    title=form["title"], html=form["html"], text=form["text"]
                ),
            )
        except InputValidationError:
            return Response(status_code=400)

        return snapshot_to_response(outcome.response)
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from newsletter_outbox.core.coordinator import RequestCoordinator, ReturnSavedResponse
from newsletter_outbox.core.outbox import enqueue_delivery_tasks, insert_newsletter_issue
from newsletter_outbox.domain import IdempotencyKey
from newsletter_outbox.exceptions import ConflictRaceError, InputValidationError
from newsletter_outbox.models import NewsletterPayload, ResponseSnapshot, utc_now
from newsletter_outbox.observability.logging import get_logger, log_context
from newsletter_outbox.observability.metrics import record_enqueued, record_publish
from newsletter_outbox.storage.base import StorageAdapter

logger = get_logger(__name__)

# Where the admin is sent after publishing
NEWSLETTERS_PAGE = "/admin/newsletters"


def see_other(location: str) -> ResponseSnapshot:
    """Build a ``303 See Other`` redirect snapshot."""
    return ResponseSnapshot(
        status_code=303,
        headers=[("location", location.encode("utf-8"))],
        body=b"",
    )


class PublishOutcome:
    """Result of a publish request.

    Attributes:
        response: The response to hand back (fresh or replayed)
        was_replayed: True if the response came from a saved snapshot
        issue_id: Id of the issue created by this call (None for replays)
        task_count: Delivery tasks enqueued by this call (0 for replays)
    """

    def __init__(
        self,
        response: ResponseSnapshot,
        was_replayed: bool,
        issue_id: UUID | None = None,
        task_count: int = 0,
    ) -> None:
        self.response = response
        self.was_replayed = was_replayed
        self.issue_id = issue_id
        self.task_count = task_count


class NewsletterPublisher:
    """Publishes newsletter issues at most once per (actor, idempotency key).

    Attributes:
        storage: Storage adapter shared by the idempotency table and the outbox
        coordinator: Request coordinator built on the same storage
        clock: Source of record creation and publication timestamps
    """

    def __init__(
        self,
        storage: StorageAdapter,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.clock = clock
        self.coordinator = RequestCoordinator(storage, clock=clock)

    async def publish(
        self,
        actor_id: UUID,
        raw_key: str,
        payload: NewsletterPayload,
    ) -> PublishOutcome:
        """Publish ``payload`` unless this (actor, key) was already handled.

        Args:
            actor_id: Authenticated identity of the publisher
            raw_key: Idempotency key exactly as submitted
            payload: Title and bodies of the issue

        Returns:
            PublishOutcome with either the fresh or the replayed response

        Raises:
            InputValidationError: If the key is malformed
            ConflictRaceError: If an identical request is still in flight
            StorageError: If the store fails; nothing has been persisted
        """
        try:
            key = IdempotencyKey.parse(raw_key)
        except InputValidationError as e:
            record_publish("rejected")
            logger.info("publish.rejected", actor_id=str(actor_id), error=e.message)
            raise

        with log_context(actor_id=actor_id, key=key.value):
            return await self._publish(actor_id, key, payload)

    async def _publish(
        self,
        actor_id: UUID,
        key: IdempotencyKey,
        payload: NewsletterPayload,
    ) -> PublishOutcome:
        try:
            action = await self.coordinator.try_processing(actor_id, key)
        except ConflictRaceError:
            record_publish("race")
            raise
        except Exception:
            record_publish("error")
            raise

        if isinstance(action, ReturnSavedResponse):
            record_publish("replay", action.response.status_code)
            return PublishOutcome(response=action.response, was_replayed=True)

        transaction = action.transaction
        try:
            issue = await insert_newsletter_issue(transaction, payload, self.clock())
            task_count = await enqueue_delivery_tasks(transaction, issue.issue_id)
            response = await self.coordinator.save_response(
                transaction, actor_id, key, see_other(NEWSLETTERS_PAGE)
            )
        except BaseException:
            await transaction.rollback()
            record_publish("error")
            logger.error("publish.failed", exc_info=True)
            raise

        # Only committed tasks are counted
        record_enqueued(task_count)
        record_publish("new", response.status_code)
        logger.info(
            "publish.completed",
            newsletter_issue_id=str(issue.issue_id),
            task_count=task_count,
        )
        return PublishOutcome(
            response=response,
            was_replayed=False,
            issue_id=issue.issue_id,
            task_count=task_count,
        )
