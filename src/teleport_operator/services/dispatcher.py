"""
Work queue for cluster reconciliations.

- at most one attempt per cluster key runs at a time; triggers that arrive
  while it runs are coalesced into one follow-up attempt
- a semaphore bounds how many attempts run concurrently across the fleet
- after a successful attempt the key is requeued after the interval the
  attempt asked for; that timer is what notices proxy-side token expiry
- retryable failures back off exponentially per key; non-retryable ones
  (malformed external state) wait for the normal interval
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..models.cluster import ClusterKey
from ..observability.metrics import metrics_collector
from .cluster_reconciler import ReconcileResult

logger = logging.getLogger(__name__)


class ReconcileDispatcher:
    def __init__(
        self,
        reconcile: Callable[[ClusterKey], Awaitable[ReconcileResult]],
        max_workers: int = 20,
        requeue_after: float = 60.0,
        initial_delay: float = 1.0,
        backoff_factor: float = 2.0,
        max_delay: float = 300.0,
    ):
        self._reconcile = reconcile
        self.requeue_after = requeue_after
        self.initial_delay = initial_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay

        self._semaphore = asyncio.Semaphore(max_workers)
        self._active: dict[ClusterKey, asyncio.Task] = {}
        self._pending: set[ClusterKey] = set()
        self._failures: dict[ClusterKey, int] = {}
        self._timers: dict[ClusterKey, asyncio.TimerHandle] = {}
        self._stopped = False

    def trigger(self, key: ClusterKey) -> None:
        """Request an attempt for ``key`` as soon as a worker is free."""
        if self._stopped:
            return

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

        if key in self._active:
            self._pending.add(key)
            return

        loop = asyncio.get_running_loop()
        self._active[key] = loop.create_task(self._run(key), name=f"reconcile:{key}")
        metrics_collector.set_in_flight(len(self._active))

    def backoff_delay(self, failures: int) -> float:
        delay = self.initial_delay * self.backoff_factor ** (failures - 1)
        return min(delay, self.max_delay)

    async def _run(self, key: ClusterKey) -> None:
        delay: float | None = None
        try:
            while True:
                self._pending.discard(key)
                async with self._semaphore:
                    delay = await self._attempt(key)
                if key not in self._pending:
                    break
        finally:
            self._active.pop(key, None)
            metrics_collector.set_in_flight(len(self._active))

        if delay is not None:
            self._schedule(key, delay)

    async def _attempt(self, key: ClusterKey) -> float | None:
        """Run one attempt and return when to run the next one, if at all."""
        try:
            result = await self._reconcile(key)
        except Exception as e:
            if getattr(e, "retryable", True):
                failures = self._failures.get(key, 0) + 1
                self._failures[key] = failures
                delay = self.backoff_delay(failures)
                logger.debug(f"Retrying {key} in {delay}s after {failures} failure(s)")
                return delay
            self._failures.pop(key, None)
            return self.requeue_after

        self._failures.pop(key, None)
        return result.requeue_after

    def _schedule(self, key: ClusterKey, delay: float) -> None:
        if self._stopped:
            return
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self.trigger, key)

    def scheduled_in(self, key: ClusterKey) -> float | None:
        """Seconds until the timer of ``key`` fires, None if none is armed."""
        timer = self._timers.get(key)
        if timer is None or timer.cancelled():
            return None
        return timer.when() - asyncio.get_running_loop().time()

    def is_active(self, key: ClusterKey) -> bool:
        return key in self._active

    async def join(self) -> None:
        """Wait until no attempt is running."""
        while self._active:
            await asyncio.gather(*list(self._active.values()), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel timers and running attempts."""
        self._stopped = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        tasks = list(self._active.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
