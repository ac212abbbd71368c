"""TTL-based expiry of idempotency records.

Idempotency records are kept for a fixed time-to-live after creation. Once
a record is older than the TTL, the reaper deletes it and the same
(actor, key) pair is free to be processed again as a new request.

The reaper:
1. Runs at a fixed interval (default 10 seconds)
2. Deletes every record whose ``created_at + ttl`` lies in the past
3. Reports metrics and logs for every pass
4. Logs and survives a failed pass; the next pass retries

Examples:
    Run a single pass, e.g. from a cron job::

        reaper = ExpiryReaper(storage, ttl_seconds=86400)
        removed = await reaper.run_once()

    Run the loop in the background::

        task = await start_expiry_reaper(storage, config)
        ...
        await stop_background_task(task)
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

from newsletter_outbox.models import utc_now
from newsletter_outbox.observability.logging import get_logger
from newsletter_outbox.observability.metrics import record_expiry
from newsletter_outbox.storage.base import StorageAdapter

logger = get_logger(__name__)

DEFAULT_REAPER_INTERVAL_SECONDS = 10.0


class ExpiryReaper:
    """Deletes idempotency records older than the TTL.

    Attributes:
        storage: Storage adapter holding the idempotency table
        ttl_seconds: Record lifetime measured from ``created_at``
        interval_seconds: Time between passes when looping
        clock: Source of the current time
    """

    def __init__(
        self,
        storage: StorageAdapter,
        ttl_seconds: float,
        interval_seconds: float = DEFAULT_REAPER_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.ttl_seconds = ttl_seconds
        self.interval_seconds = interval_seconds
        self.clock = clock

    async def run_once(self) -> int:
        """Delete every record created before ``now - ttl``.

        Returns:
            Number of records removed.

        Raises:
            StorageError: If the store fails.
        """
        cutoff = self.clock() - timedelta(seconds=self.ttl_seconds)
        return await self.storage.delete_expired_records(cutoff)

    async def run_until_stopped(self, stop_event: asyncio.Event | None = None) -> None:
        """Run passes every ``interval_seconds`` until ``stop_event`` is set.

        A failed pass is logged and counted; the loop keeps going.

        Args:
            stop_event: Event to signal the loop to stop (optional)
        """
        if stop_event is None:
            stop_event = asyncio.Event()

        logger.info(
            "expiry.started",
            ttl_seconds=self.ttl_seconds,
            interval_seconds=self.interval_seconds,
        )

        while not stop_event.is_set():
            try:
                count = await self.run_once()
            except Exception as e:
                record_expiry(None)
                logger.error(
                    "expiry.failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            else:
                record_expiry(count)
                if count > 0:
                    logger.info("expiry.completed", records_removed=count)
                else:
                    logger.debug("expiry.completed", records_removed=0)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

        logger.info("expiry.stopped")
