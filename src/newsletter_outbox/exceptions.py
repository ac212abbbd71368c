"""Custom exceptions for the newsletter outbox pipeline.

This module defines the exception hierarchy used throughout the package to
signal validation failures, duplicate-request races, storage failures and
failed deliveries. Every exception carries the underlying cause (when there
is one) so that logs can show the full chain.

Examples:
    Rejecting a malformed idempotency key::

        from newsletter_outbox.exceptions import InputValidationError

        try:
            key = IdempotencyKey.parse(raw_key)
        except InputValidationError as e:
            logger.info("publish.rejected", field=e.field, error=e.message)
            return Response(status_code=400)

    Surfacing a duplicate request that is still in flight::

        from newsletter_outbox.exceptions import ConflictRaceError

        try:
            outcome = await publisher.publish(actor_id, raw_key, payload)
        except ConflictRaceError:
            # The winning request has not committed yet; the client may retry
            return Response(status_code=500)
"""

from typing import Any


class OutboxError(Exception):
    """Base exception for all errors raised by the outbox pipeline.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception, if any.

    Examples:
        Catching every pipeline error::

            try:
                await publisher.publish(actor_id, raw_key, payload)
            except OutboxError as e:
                logger.error("publish.failed", error=e.message)
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        """Initialize the exception with a message and optional cause.

        Args:
            message: Human-readable error description.
            cause: The underlying exception that triggered this error.
        """
        self.message = message
        self.cause = cause
        super().__init__(message)


class InputValidationError(OutboxError):
    """A caller-supplied or stored value failed validation.

    Raised for malformed idempotency keys (rejected before any processing)
    and for recipient addresses that cannot be delivered to (the delivery
    task is dropped). Never retried by the system itself.

    Attributes:
        message: Human-readable error description.
        field: Name of the offending field, e.g. ``"idempotency_key"``.
        value: The rejected value.
        cause: The underlying exception, if any.

    Examples:
        Raising a validation error::

            if not raw:
                raise InputValidationError(
                    message="The idempotency key cannot be empty",
                    field="idempotency_key",
                    value=raw,
                )
    """

    def __init__(
        self,
        message: str,
        field: str,
        value: Any,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize the validation error with details.

        Args:
            message: Human-readable error description.
            field: Name of the offending field.
            value: The rejected value.
            cause: The underlying exception, if any.
        """
        super().__init__(message, cause)
        self.field = field
        self.value = value


class ConflictRaceError(OutboxError):
    """A duplicate request arrived while the original has no saved response.

    The idempotency record for ``(actor_id, key)`` exists but its response
    snapshot has not been written yet. The caller should treat this as
    retryable; there is no waiting or queueing on the losing side.

    Attributes:
        message: Human-readable error description.
        actor_id: The actor that submitted the request.
        key: The idempotency key that raced.
    """

    def __init__(self, message: str, actor_id: Any, key: str) -> None:
        """Initialize the race error with details.

        Args:
            message: Human-readable error description.
            actor_id: The actor that submitted the request.
            key: The idempotency key that raced.
        """
        super().__init__(message)
        self.actor_id = actor_id
        self.key = key


class StorageError(OutboxError):
    """Storage backend operation failed.

    Raised when the underlying store cannot complete an operation, e.g.
    connection failures, timeouts or a failing query. On the admission path
    it propagates to the caller as an internal error; background loops log
    it and retry after a backoff.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception that caused the storage error.

    Examples:
        Wrapping a driver error::

            try:
                await session.execute(stmt)
            except SQLAlchemyError as e:
                raise StorageError(
                    message=f"Failed to claim delivery task: {e}",
                    cause=e,
                ) from e
    """


class DeliveryError(OutboxError):
    """Sending a newsletter issue to one recipient failed.

    The delivery task is deleted regardless; a failed send is logged and
    never retried for that task.

    Attributes:
        message: Human-readable error description.
        recipient: Address the send was attempted to.
        issue_id: Identifier of the newsletter issue.
        cause: The exception raised by the email client.
    """

    def __init__(
        self,
        message: str,
        recipient: str,
        issue_id: Any,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize the delivery error with details.

        Args:
            message: Human-readable error description.
            recipient: Address the send was attempted to.
            issue_id: Identifier of the newsletter issue.
            cause: The exception raised by the email client.
        """
        super().__init__(message, cause)
        self.recipient = recipient
        self.issue_id = issue_id
