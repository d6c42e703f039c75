"""Offline queue: holds undeliverable errors and retries them on a timer or when back online."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from errorpipe.models import NormalizedError, QueueItem
from errorpipe.network import NetworkMonitor
from errorpipe.storage import StorageManager

logger = logging.getLogger(__name__)


class RetryScheduler:
    """Single cancellable timer that runs a coroutine function when it fires.

    Scheduling again replaces the pending timer.
    """

    def __init__(self, callback: Callable[[], Awaitable]):
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def due_in(self) -> float | None:
        """Seconds until the pending timer fires, or None."""
        if self._handle is None:
            return None
        return max(0.0, self._handle.when() - asyncio.get_running_loop().time())

    def schedule(self, delay: float):
        self.cancel_timer()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire)

    def cancel_timer(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def cancel(self):
        """Cancel the timer and any run it already started."""
        self.cancel_timer()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _fire(self):
        self._handle = None
        self._task = asyncio.ensure_future(self._run())

    async def _run(self):
        try:
            await self._callback()
        except Exception:
            logger.exception("Scheduled queue processing failed")


class OfflineQueue:
    """Bounded FIFO of errors waiting for delivery, drained through one adapter."""

    def __init__(
        self,
        storage: StorageManager,
        network: NetworkMonitor,
        max_size: int = 100,
        retry_delay: float = 30.0,
        max_retries: int = 3,
        backoff_multiplier: float = 1.0,
        max_retry_delay: float = 300.0,
        online_retry_delay: float = 1.0,
    ):
        self._storage = storage
        self._network = network
        self.max_size = max_size
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self.backoff_multiplier = backoff_multiplier
        self.max_retry_delay = max_retry_delay
        self.online_retry_delay = online_retry_delay

        self._storage.set_max_queue_size(max_size)
        self._scheduler = RetryScheduler(self.process_queue)
        self._adapter = None
        self._provider: str | None = None
        self._processing = False
        self._running = False
        self._idle_passes = 0
        self._unsubscribe_online: Callable[[], None] | None = None

    @property
    def scheduler(self) -> RetryScheduler:
        return self._scheduler

    @property
    def processing(self) -> bool:
        return self._processing

    def start(self, adapter, provider: str | None = None):
        """Drain through `adapter`, which handles items queued under `provider`."""
        self._adapter = adapter
        self._provider = provider or adapter.name
        self._running = True
        self._idle_passes = 0
        if self._unsubscribe_online is None:
            self._unsubscribe_online = self._network.on("online", self._on_online)
        self._schedule_next()

    def stop(self):
        self._running = False
        self._scheduler.cancel()
        if self._unsubscribe_online is not None:
            self._unsubscribe_online()
            self._unsubscribe_online = None

    async def enqueue(self, error: NormalizedError, provider: str) -> QueueItem:
        item = await self._storage.queue_error(error, provider)
        await self._storage.update_metrics(
            lambda m: {**m, "total_errors": m.get("total_errors", 0) + 1}
        )
        logger.debug("Queued error %s for %s", item.id, provider)
        if self._running and not self._scheduler.pending:
            self._schedule_next()
        return item

    async def process_queue(self):
        """Try every queued item once, oldest first.

        Re-entrant calls return immediately. A failure while online counts
        as an attempt; a failure that coincides with going offline stops the
        pass without counting.
        """
        if self._processing or self._adapter is None:
            return

        if not self._network.is_online():
            self._schedule_next()
            return

        self._processing = True
        delivered = 0
        try:
            for item in await self._storage.get_error_queue():
                if item.retry_count >= self.max_retries:
                    await self._drop(item, "retry limit reached")
                    continue

                if item.provider != self._provider:
                    continue

                try:
                    await self._adapter.log_error(item.error)
                except Exception as e:
                    if not self._network.is_online():
                        logger.info("Went offline while draining queue, stopping pass")
                        break
                    await self._record_failure(item, e)
                    continue

                await self._storage.remove_from_queue(item.id)
                await self._storage.update_metrics(
                    lambda m: {**m, "successful_errors": m.get("successful_errors", 0) + 1}
                )
                delivered += 1
        finally:
            self._processing = False

        # items for other providers cannot drain through this adapter
        remaining = await self._storage.get_provider_queue(self._provider)
        if not remaining:
            self._idle_passes = 0
            self._scheduler.cancel_timer()
            return

        self._idle_passes = 0 if delivered else self._idle_passes + 1
        self._schedule_next()

    async def flush(self) -> bool:
        """Process the queue now; True when it ends up empty."""
        await self.process_queue()
        return not await self._storage.get_error_queue()

    async def prune_old_items(self, max_age: float) -> int:
        return await self._storage.prune_old_items(max_age)

    async def clear(self, provider: str | None = None):
        await self._storage.clear_queue(provider)

    async def get_statistics(self) -> dict:
        queue = await self._storage.get_error_queue()
        distribution: dict[int, int] = {}
        for item in queue:
            distribution[item.retry_count] = distribution.get(item.retry_count, 0) + 1
        return {
            "queue_size": len(queue),
            "oldest_item": min((item.timestamp for item in queue), default=None),
            "retry_distribution": distribution,
            "processing": self._processing,
            "retry_scheduled": self._scheduler.pending,
        }

    def next_delay(self) -> float:
        delay = self.retry_delay * (self.backoff_multiplier ** self._idle_passes)
        return min(delay, self.max_retry_delay)

    def _schedule_next(self, delay: float | None = None):
        if not self._running:
            return
        self._scheduler.schedule(self.next_delay() if delay is None else delay)

    def _on_online(self):
        self._schedule_next(self.online_retry_delay)

    async def _record_failure(self, item: QueueItem, exc: Exception):
        retry_count = item.retry_count + 1
        await self._storage.update_metrics(
            lambda m: {**m, "failed_errors": m.get("failed_errors", 0) + 1}
        )
        logger.warning(
            "Failed to send queued error %s (attempt %d/%d): %s",
            item.id, retry_count, self.max_retries, exc,
        )
        if retry_count >= self.max_retries:
            await self._drop(item, "retry limit reached")
        else:
            await self._storage.update_retry_count(item.id, retry_count)

    async def _drop(self, item: QueueItem, reason: str):
        await self._storage.remove_from_queue(item.id)
        await self._storage.update_metrics(
            lambda m: {**m, "dropped_errors": m.get("dropped_errors", 0) + 1}
        )
        logger.warning("Dropped queued error %s: %s", item.id, reason)
