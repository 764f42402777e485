# tests/test_sync_scheduler.py

from __future__ import annotations

import asyncio
from datetime import date

import httpx
import pytest

from trackmate.core.errors import RemoteApiError
from trackmate.core.result import SYNC_OK, Permanent, SyncError, SyncResult, Transient
from trackmate.sync.scheduler import EntrySyncScheduler, ExponentialBackoffPolicy, run_sync_loop

TRANSIENT = SyncError(Transient(httpx.ConnectError("down")))
PERMANENT = SyncError(Permanent(RemoteApiError("rejected", status_code=400)))


class ScriptedEngine:
    """
    Engine stand-in: each sync_* call pops the next scripted result
    (SYNC_OK once the script runs out).
    """

    def __init__(self, *results: SyncResult) -> None:
        self.script = list(results)
        self.calls: list[tuple[str, ...]] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def _next(self, call: tuple[str, ...]) -> SyncResult:
        self.calls.append(call)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        return self.script.pop(0) if self.script else SYNC_OK

    async def sync_entry(self, entry_id: str) -> SyncResult:
        return await self._next(("entry", entry_id))

    async def sync_deleted_entry(self, entry_id: str) -> SyncResult:
        return await self._next(("deleted", entry_id))

    async def sync_done_entry(self, entry_id: str, day: date) -> SyncResult:
        return await self._next(("done", entry_id, day.isoformat()))


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def test_backoff_delay_grows_linearly_and_is_capped() -> None:
    policy = ExponentialBackoffPolicy(initial_delay=2.0, max_delay=5.0)
    assert [policy.delay_for(n) for n in range(4)] == [2.0, 4.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_backoff_never_retries_permanent_errors() -> None:
    sleep = RecordingSleep()
    policy = ExponentialBackoffPolicy(1.0, 10.0, sleep=sleep)

    assert await policy.should_retry(0, PERMANENT.error_type) is False
    assert await policy.should_retry(1, TRANSIENT.error_type) is True
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_transient_failures_are_retried_until_success() -> None:
    sleep = RecordingSleep()
    engine = ScriptedEngine(TRANSIENT, TRANSIENT, SYNC_OK)
    scheduler = EntrySyncScheduler(engine, ExponentialBackoffPolicy(1.0, 60.0, sleep=sleep), max_attempts=5)

    result = await scheduler.schedule_entry_sync("t1")

    assert result == SYNC_OK
    assert engine.calls == [("entry", "t1")] * 3
    assert sleep.delays == [1.0, 2.0]
    assert scheduler.in_flight == []


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried() -> None:
    sleep = RecordingSleep()
    engine = ScriptedEngine(PERMANENT)
    scheduler = EntrySyncScheduler(engine, ExponentialBackoffPolicy(sleep=sleep))

    result = await scheduler.schedule_deleted_entry_sync("t1")

    assert result == PERMANENT
    assert engine.calls == [("deleted", "t1")]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts() -> None:
    sleep = RecordingSleep()
    engine = ScriptedEngine(TRANSIENT, TRANSIENT, TRANSIENT, TRANSIENT)
    scheduler = EntrySyncScheduler(engine, ExponentialBackoffPolicy(sleep=sleep), max_attempts=3)

    result = await scheduler.schedule_done_entry_sync("h1", date(2024, 5, 1))

    assert result == TRANSIENT
    assert engine.calls == [("done", "h1", "2024-05-01")] * 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_requests_for_a_running_key_are_coalesced() -> None:
    engine = ScriptedEngine()
    engine.gate = asyncio.Event()
    scheduler = EntrySyncScheduler(engine, ExponentialBackoffPolicy(sleep=RecordingSleep()))

    first = scheduler.schedule_entry_sync("t1")
    await asyncio.wait_for(engine.entered.wait(), timeout=5)
    second = scheduler.schedule_entry_sync("t1")
    third = scheduler.schedule_entry_sync("t1")

    assert first is second is third
    assert scheduler.in_flight == ["t1"]

    engine.gate.set()
    assert await first == SYNC_OK
    # One extra pass picks up whatever changed while the first was in flight.
    assert engine.calls == [("entry", "t1")] * 2


@pytest.mark.asyncio
async def test_different_keys_run_independently() -> None:
    engine = ScriptedEngine()
    scheduler = EntrySyncScheduler(engine, ExponentialBackoffPolicy(sleep=RecordingSleep()))

    tasks = [
        scheduler.schedule_entry_sync("t1"),
        scheduler.schedule_deleted_entry_sync("t1"),
        scheduler.schedule_entry_sync("t2"),
    ]
    await asyncio.gather(*tasks)

    assert sorted(engine.calls) == [("deleted", "t1"), ("entry", "t1"), ("entry", "t2")]


@pytest.mark.asyncio
async def test_aclose_cancels_in_flight_attempts() -> None:
    engine = ScriptedEngine()
    engine.gate = asyncio.Event()
    scheduler = EntrySyncScheduler(engine, ExponentialBackoffPolicy(sleep=RecordingSleep()))

    task = scheduler.schedule_entry_sync("t1")
    await asyncio.wait_for(engine.entered.wait(), timeout=5)

    await scheduler.aclose()

    assert task.cancelled()
    assert scheduler.in_flight == []


class LoopEngine:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.pushed = asyncio.Event()

    async def pull_remote(self):
        self.calls.append("pull")
        raise RuntimeError("pull blew up")

    async def sync_pending_entries(self):
        self.calls.append("push")
        self.pushed.set()


@pytest.mark.asyncio
async def test_sync_loop_pulls_then_pushes_and_stops_on_cancel() -> None:
    engine = LoopEngine()

    runner = asyncio.create_task(run_sync_loop(engine, interval_seconds=60.0))

    await asyncio.wait_for(engine.pushed.wait(), timeout=5)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    # A failing pull does not prevent the push.
    assert engine.calls == ["pull", "push"]
