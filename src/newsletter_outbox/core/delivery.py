"""Delivery workers that drain the issue delivery queue.

Each call to ``DeliveryWorker.try_execute_task()``:

1. Opens a transaction and claims one task with a skip-locked read
2. Validates the recipient address; an invalid one is logged and dropped
3. Loads the issue and calls the email client
4. Deletes the task and commits, whether the send succeeded or not

The claim's row lock is held for the whole send, so no other worker can pick
up the same task. A failed send is logged and not retried. If the process
dies after a successful send but before the commit, the task reappears and
is sent again: delivery is at-least-once, not exactly-once.

Examples:
    Running a worker until shutdown::

        worker = DeliveryWorker(storage, email_client)
        stop_event = asyncio.Event()
        task = asyncio.create_task(worker.run_until_stopped(stop_event))
        ...
        stop_event.set()
        await task
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from newsletter_outbox.domain import SubscriberEmail
from newsletter_outbox.exceptions import DeliveryError, InputValidationError
from newsletter_outbox.models import DeliveryTask, NewsletterIssue, TaskOutcome
from newsletter_outbox.observability.logging import get_logger, log_context
from newsletter_outbox.observability.metrics import (
    active_workers,
    record_delivery,
    record_send_duration,
    record_worker_error,
)
from newsletter_outbox.storage.base import StorageAdapter

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_ERROR_BACKOFF_SECONDS = 1.0


@runtime_checkable
class EmailClient(Protocol):
    """Outbound "send one email" capability.

    Implementations raise on failure; returning normally means the message
    was accepted for delivery.
    """

    async def send_email(
        self,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        ...


class DeliveryWorker:
    """Claims and processes delivery tasks one at a time.

    Any number of workers, in any number of processes, may drain the same
    queue concurrently.

    Attributes:
        storage: Storage adapter holding the delivery queue
        email_client: Outbound send capability
        poll_interval_seconds: Sleep after finding the queue empty
        error_backoff_seconds: Sleep after an unexpected error
        worker_id: Label used in logs
    """

    def __init__(
        self,
        storage: StorageAdapter,
        email_client: EmailClient,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        error_backoff_seconds: float = DEFAULT_ERROR_BACKOFF_SECONDS,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        worker_id: str = "worker-0",
    ) -> None:
        """Initialize the worker.

        Args:
            storage: Storage adapter holding the delivery queue
            email_client: Outbound send capability
            poll_interval_seconds: Sleep after finding the queue empty
            error_backoff_seconds: Sleep after an unexpected error
            sleep: Replacement for the interruptible sleep (tests inject a fake)
            worker_id: Label used in logs
        """
        self.storage = storage
        self.email_client = email_client
        self.poll_interval_seconds = poll_interval_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self.worker_id = worker_id
        self._sleep_override = sleep
        self._stop_event = asyncio.Event()

    async def try_execute_task(self) -> TaskOutcome:
        """Claim, process and delete at most one delivery task.

        Returns:
            TaskOutcome.TASK_COMPLETE if a task was handled,
            TaskOutcome.QUEUE_EMPTY if there was nothing to claim.

        Raises:
            StorageError: If the store fails. The transaction is rolled back
                and the task, if claimed, becomes visible again.
        """
        transaction = await self.storage.begin()
        try:
            task = await transaction.claim_delivery_task()
            if task is None:
                await transaction.rollback()
                return TaskOutcome.QUEUE_EMPTY

            with log_context(
                worker_id=self.worker_id,
                newsletter_issue_id=task.issue_id,
                subscriber_email=task.subscriber_email,
            ):
                logger.debug("delivery.task_claimed")

                try:
                    recipient = SubscriberEmail.parse(task.subscriber_email)
                except InputValidationError as e:
                    record_delivery("invalid_recipient")
                    logger.warning(
                        "delivery.invalid_recipient",
                        message="Skipping a confirmed subscriber, their stored contact details are invalid",
                        error=e.message,
                    )
                else:
                    issue = await transaction.get_issue(task.issue_id)
                    await self._send(recipient, issue, task)

                await transaction.delete_delivery_task(task)
                await transaction.commit()
                logger.debug("delivery.task_completed")
            return TaskOutcome.TASK_COMPLETE
        except BaseException:
            await transaction.rollback()
            raise

    async def _send(
        self,
        recipient: SubscriberEmail,
        issue: NewsletterIssue,
        task: DeliveryTask,
    ) -> None:
        """Send one issue to one recipient, logging instead of raising on failure."""
        started = time.perf_counter()
        try:
            await self.email_client.send_email(
                recipient,
                issue.title,
                issue.html_content,
                issue.text_content,
            )
        except Exception as e:
            error = DeliveryError(
                message="Failed to deliver issue to subscriber",
                recipient=task.subscriber_email,
                issue_id=task.issue_id,
                cause=e,
            )
            record_delivery("send_failed")
            logger.error(
                "delivery.send_failed",
                message=f"{error.message}. Skipping...",
                error=str(e),
                error_type=type(e).__name__,
            )
        else:
            record_delivery("sent")
            logger.info("delivery.sent")
        finally:
            record_send_duration(time.perf_counter() - started)

    async def run_until_stopped(self, stop_event: asyncio.Event | None = None) -> None:
        """Drain the queue until ``stop_event`` is set.

        Sleeps ``poll_interval_seconds`` after an empty poll and
        ``error_backoff_seconds`` after an unexpected error, then tries again.

        Args:
            stop_event: Event to signal the loop to stop (optional)
        """
        if stop_event is not None:
            self._stop_event = stop_event

        logger.info(
            "delivery.worker_started",
            worker_id=self.worker_id,
            poll_interval_seconds=self.poll_interval_seconds,
        )
        active_workers.inc()
        try:
            while not self._stop_event.is_set():
                try:
                    outcome = await self.try_execute_task()
                except Exception as e:
                    record_worker_error()
                    logger.error(
                        "delivery.task_failed",
                        worker_id=self.worker_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    await self._sleep(self.error_backoff_seconds)
                    continue

                if outcome is TaskOutcome.QUEUE_EMPTY:
                    await self._sleep(self.poll_interval_seconds)
        finally:
            active_workers.dec()

        logger.info("delivery.worker_stopped", worker_id=self.worker_id)

    async def _sleep(self, seconds: float) -> None:
        if self._sleep_override is not None:
            await self._sleep_override(seconds)
            return

        # Wait for the interval or the stop signal, whichever comes first
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
