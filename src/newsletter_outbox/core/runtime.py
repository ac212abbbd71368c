"""Start and stop helpers for the background loops.

Delivery workers and the expiry reaper run as asyncio tasks next to the web
application. Each task carries its own stop event so it can be shut down
gracefully.

Examples:
    Wire the loops into a Starlette lifespan::

        @contextlib.asynccontextmanager
        async def lifespan(app):
            workers = await start_delivery_workers(storage, email_client, config)
            reaper = await start_expiry_reaper(storage, config)
            yield
            for task in [*workers, reaper]:
                await stop_background_task(task)
"""

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

from newsletter_outbox.config import OutboxConfig
from newsletter_outbox.core.delivery import DeliveryWorker, EmailClient
from newsletter_outbox.core.expiry import ExpiryReaper
from newsletter_outbox.observability.logging import get_logger
from newsletter_outbox.storage.base import StorageAdapter

logger = get_logger(__name__)


def _spawn(
    loop_factory: Callable[[asyncio.Event], Coroutine[Any, Any, None]],
    name: str,
) -> asyncio.Task[None]:
    stop_event = asyncio.Event()
    task = asyncio.create_task(loop_factory(stop_event), name=name)

    # Store the stop_event in the task for later use
    task._stop_event = stop_event  # type: ignore[attr-defined]

    return task


async def start_delivery_workers(
    storage: StorageAdapter,
    email_client: EmailClient,
    config: OutboxConfig,
    worker_count: int | None = None,
) -> list[asyncio.Task[None]]:
    """Start ``worker_count`` delivery workers draining the same queue.

    Args:
        storage: Storage adapter holding the delivery queue
        email_client: Outbound send capability shared by all workers
        config: Supplies poll interval, error backoff and default worker count
        worker_count: Overrides ``config.worker_count``

    Returns:
        One task per worker
    """
    count = worker_count if worker_count is not None else config.worker_count
    if count < 1:
        raise ValueError(f"worker_count must be at least 1, got {count}")

    tasks = []
    for index in range(count):
        worker = DeliveryWorker(
            storage,
            email_client,
            poll_interval_seconds=config.worker_poll_interval_seconds,
            error_backoff_seconds=config.worker_error_backoff_seconds,
            worker_id=f"worker-{index}",
        )
        tasks.append(_spawn(worker.run_until_stopped, name=f"delivery-worker-{index}"))

    logger.info("runtime.workers_started", worker_count=count)
    return tasks


async def start_expiry_reaper(
    storage: StorageAdapter,
    config: OutboxConfig,
) -> asyncio.Task[None]:
    """Start the expiry reaper with the TTL and interval from ``config``."""
    reaper = ExpiryReaper(
        storage,
        ttl_seconds=config.idempotency_ttl_seconds,
        interval_seconds=config.reaper_interval_seconds,
    )
    return _spawn(reaper.run_until_stopped, name="expiry-reaper")


async def stop_background_task(task: asyncio.Task[None], timeout: float = 5.0) -> None:
    """Stop a task started by this module.

    Signals the task to stop and waits for it, cancelling it if it has not
    finished within ``timeout`` seconds.

    Args:
        task: A task returned by start_delivery_workers or start_expiry_reaper
        timeout: Seconds to wait before cancelling
    """
    stop_event: asyncio.Event | None = getattr(task, "_stop_event", None)

    if stop_event:
        stop_event.set()

    try:
        await asyncio.wait_for(task, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "runtime.stop_timeout",
            task=task.get_name(),
            message="Background task did not stop in time",
        )
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("runtime.cancelled", task=task.get_name())
