"""Request coordinator: decides whether a publish request is new or a replay.

This module implements the admission half of the idempotency protocol:

    try_processing:  INSERT (actor, key, now) ON CONFLICT DO NOTHING
                     inserted  -> StartProcessing(open transaction)
                     no effect -> ReturnSavedResponse(saved snapshot)
                                  or ConflictRaceError if none saved yet

    save_response:   write the snapshot onto the pending record and commit
                     the same transaction that carried the business writes

Mutual exclusion comes only from the store's unique index, so the
coordinator is safe across any number of admission processes.

Examples:
    Driving the protocol by hand::

        coordinator = RequestCoordinator(storage)
        action = await coordinator.try_processing(actor_id, key)
        if isinstance(action, ReturnSavedResponse):
            return action.response

        try:
            await do_business_writes(action.transaction)
            return await coordinator.save_response(
                action.transaction, actor_id, key, snapshot
            )
        except BaseException:
            await action.transaction.rollback()
            raise
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from newsletter_outbox.domain import IdempotencyKey
from newsletter_outbox.exceptions import ConflictRaceError
from newsletter_outbox.models import ResponseSnapshot, utc_now
from newsletter_outbox.observability.logging import get_logger
from newsletter_outbox.storage.base import StorageAdapter, StoreTransaction

logger = get_logger(__name__)


class StartProcessing:
    """The request is new; the caller owns ``transaction`` until save_response.

    Attributes:
        transaction: Open transaction holding the pending idempotency record.
    """

    def __init__(self, transaction: StoreTransaction) -> None:
        self.transaction = transaction


class ReturnSavedResponse:
    """The request is a duplicate; replay ``response`` verbatim.

    Attributes:
        response: The snapshot saved by the original request.
    """

    def __init__(self, response: ResponseSnapshot) -> None:
        self.response = response


NextAction = StartProcessing | ReturnSavedResponse


class RequestCoordinator:
    """Atomic new-vs-duplicate decision backed by the idempotency table.

    Attributes:
        storage: Storage adapter holding the idempotency table.
        clock: Source of the record creation time.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.clock = clock

    async def try_processing(self, actor_id: UUID, key: IdempotencyKey) -> NextAction:
        """Claim ``(actor_id, key)`` or fetch the response saved for it.

        Args:
            actor_id: Identity of the caller.
            key: Validated idempotency key.

        Returns:
            StartProcessing with the open transaction if the key is new,
            ReturnSavedResponse with the snapshot if it was already handled.

        Raises:
            ConflictRaceError: The key exists but has no saved response yet.
            StorageError: If the store fails.
        """
        transaction = await self.storage.begin()
        try:
            inserted = await transaction.insert_idempotency_record(
                actor_id, key.value, self.clock()
            )
        except BaseException:
            await transaction.rollback()
            raise

        if inserted:
            logger.debug("idempotency.start_processing", actor_id=str(actor_id), key=key.value)
            return StartProcessing(transaction)

        await transaction.rollback()

        record = await self.storage.get_idempotency_record(actor_id, key.value)
        if record is None or record.response is None:
            logger.warning(
                "idempotency.conflict_race",
                actor_id=str(actor_id),
                key=key.value,
                record_found=record is not None,
            )
            raise ConflictRaceError(
                message="Expected a saved response, but failed to get it",
                actor_id=actor_id,
                key=key.value,
            )

        logger.info("idempotency.replay", actor_id=str(actor_id), key=key.value)
        return ReturnSavedResponse(record.response)

    async def save_response(
        self,
        transaction: StoreTransaction,
        actor_id: UUID,
        key: IdempotencyKey,
        response: ResponseSnapshot,
    ) -> ResponseSnapshot:
        """Persist ``response`` for the pending record and commit.

        The business writes made on ``transaction`` become durable together
        with the snapshot. If this raises, nothing is durable and a retry
        with the same key redoes the work.

        Returns:
            The same snapshot, for handing back to the caller.
        """
        await transaction.save_response(actor_id, key.value, response)
        await transaction.commit()
        logger.debug("idempotency.response_saved", actor_id=str(actor_id), key=key.value)
        return response
