# src/trackmate/sync/scheduler.py

from __future__ import annotations

"""
Sync scheduling.

- EntrySyncScheduler turns "this entry changed" into a background push attempt,
  retrying transient failures with a RetryPolicy.
- run_sync_loop is the periodic trigger: pull remote state, then push whatever is
  still pending.

Both are stopped by cancellation.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Protocol

from ..core.result import ErrorType, Permanent, SyncError, SyncResult
from .engine import EntrySyncEngine, deleted_key, done_key

logger = logging.getLogger(__name__)


class RetryPolicy(Protocol):
    async def should_retry(self, attempt: int, error: ErrorType) -> bool: ...


class ExponentialBackoffPolicy:
    """
    Permanent errors are never retried. Transient ones wait
    min(initial_delay * (attempt + 1), max_delay) seconds first.
    """

    def __init__(
            self,
            initial_delay: float = 2.0,
            max_delay: float = 300.0,
            *,
            sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.initial_delay = max(0.0, float(initial_delay))
        self.max_delay = max(self.initial_delay, float(max_delay))
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return min(self.initial_delay * (attempt + 1), self.max_delay)

    async def should_retry(self, attempt: int, error: ErrorType) -> bool:
        if isinstance(error, Permanent):
            return False
        await self._sleep(self.delay_for(attempt))
        return True


class EntrySyncScheduler:
    """
    Background sync triggers, one task per key.

    A request for a key that already has a task in flight is coalesced into it:
    the running task makes one more pass once its current attempt finishes, so
    the latest local state is what ends up pushed.
    """

    def __init__(
            self,
            engine: EntrySyncEngine,
            retry_policy: RetryPolicy,
            *,
            max_attempts: int = 5,
    ) -> None:
        self._engine = engine
        self._retry = retry_policy
        self._max_attempts = max(1, int(max_attempts))
        self._tasks: dict[str, asyncio.Task[SyncResult]] = {}
        self._rerun: set[str] = set()

    @property
    def in_flight(self) -> list[str]:
        return sorted(self._tasks)

    def _schedule(self, key: str, attempt: Callable[[], Awaitable[SyncResult]]) -> asyncio.Task[SyncResult]:
        existing = self._tasks.get(key)
        if existing is not None and not existing.done():
            logger.debug("Sync %s already scheduled; coalescing", key)
            self._rerun.add(key)
            return existing

        task = asyncio.create_task(self._run(key, attempt), name=f"sync:{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return task

    def _forget(self, key: str, task: asyncio.Task[SyncResult]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    async def _run(self, key: str, attempt: Callable[[], Awaitable[SyncResult]]) -> SyncResult:
        while True:
            self._rerun.discard(key)
            result = await self._run_with_retry(key, attempt)
            if key not in self._rerun:
                return result
            logger.debug("Sync %s requested again while running; another pass", key)

    async def _run_with_retry(self, key: str, attempt: Callable[[], Awaitable[SyncResult]]) -> SyncResult:
        n = 0
        while True:
            result = await attempt()
            if not isinstance(result, SyncError):
                return result
            n += 1
            if n >= self._max_attempts:
                logger.warning("Sync %s gave up after %d attempts", key, n)
                return result
            if not await self._retry.should_retry(n - 1, result.error_type):
                return result
            logger.info("Retrying sync %s (attempt %d)", key, n + 1)

    def schedule_entry_sync(self, entry_id: str) -> asyncio.Task[SyncResult]:
        return self._schedule(entry_id, lambda: self._engine.sync_entry(entry_id))

    def schedule_deleted_entry_sync(self, entry_id: str) -> asyncio.Task[SyncResult]:
        return self._schedule(deleted_key(entry_id), lambda: self._engine.sync_deleted_entry(entry_id))

    def schedule_done_entry_sync(self, entry_id: str, day: date) -> asyncio.Task[SyncResult]:
        return self._schedule(
            done_key(entry_id, day),
            lambda: self._engine.sync_done_entry(entry_id, day),
        )

    async def aclose(self) -> None:
        """Cancel every in-flight attempt and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._rerun.clear()


async def run_sync_loop(
        engine: EntrySyncEngine,
        *,
        interval_seconds: float = 300.0,
) -> None:
    """
    Periodic sync.

    Every interval_seconds:
    - pull_remote(): merge remote entries, completions and tombstones
    - sync_pending_entries(): push what is still pending locally

    Failures are logged and the loop keeps going. To stop it, cancel the task.
    """
    sleep_s = max(0.5, float(interval_seconds))

    while True:
        try:
            await engine.pull_remote()
        except Exception:
            logger.exception("pull_remote failed")

        try:
            await engine.sync_pending_entries()
        except Exception:
            logger.exception("sync_pending_entries failed")

        await asyncio.sleep(sleep_s)
