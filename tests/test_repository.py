# tests/test_repository.py

from __future__ import annotations

import asyncio
import sqlite3
from datetime import date, timedelta
from datetime import time as dtime
from pathlib import Path

import pytest

from trackmate.core.errors import EntryNotFoundError, RemoteAuthError
from trackmate.core.result import Error, Permanent, Success
from trackmate.entries.models import EntryType, Reminder, SyncState
from trackmate.entries.repository import EntryRepository
from trackmate.entries.store import EntryStore
from trackmate.entries.tracking import TrackingEntryStore
from trackmate.sync.classifier import default_sync_classifier
from trackmate.sync.engine import EntrySyncEngine

from .fakes import T0, FakeClock, FakeEntryApi, RecordingReminderScheduler, RecordingTrigger, make_habit, make_task

DAY = date(2024, 5, 1)


class LockedStore(EntryStore):
    async def get_all_by_type(self, entry_type: EntryType):
        raise sqlite3.OperationalError("database is locked")

    async def list_visible_on(self, day: date):
        raise sqlite3.OperationalError("no such table: entries")


def _repository_over(store: EntryStore, clock: FakeClock) -> EntryRepository:
    tracking = TrackingEntryStore(store, clock)
    classifier = default_sync_classifier()
    engine = EntrySyncEngine(tracking, FakeEntryApi(), classifier, clock)
    return EntryRepository(tracking, engine, classifier, clock)


@pytest.mark.asyncio
async def test_get_entry_by_id_missing_is_not_found(repository: EntryRepository) -> None:
    result = await repository.get_entry_by_id("ghost")

    assert isinstance(result, Error)
    assert isinstance(result.failure, EntryNotFoundError)
    assert result.is_retriable is False


@pytest.mark.asyncio
async def test_save_entry_writes_pending_and_triggers_sync(
    repository: EntryRepository, trigger: RecordingTrigger, clock: FakeClock
) -> None:
    result = await repository.save_entry(make_task(title="Buy milk"))

    assert isinstance(result, Success)
    assert result.value.updated_at == clock.now()
    assert trigger.calls == [("entry", "t1")]

    stored = await repository.get_stored_entry("t1")
    assert isinstance(stored, Success)
    assert stored.value.sync_state == SyncState.PENDING


@pytest.mark.asyncio
async def test_save_entry_schedules_and_cancels_reminder(
    repository: EntryRepository, reminders: RecordingReminderScheduler
) -> None:
    task = make_task(due=DAY + timedelta(days=1), at=dtime(9, 0), reminder=Reminder.ON_TIME)
    await repository.save_entry(task)
    assert "t1" in reminders.scheduled
    delay, interval = reminders.scheduled["t1"]
    assert delay > timedelta(0)
    assert interval is None

    await repository.save_entry(make_task(due=DAY + timedelta(days=1), reminder=None))
    assert "t1" not in reminders.scheduled
    assert reminders.cancelled == ["t1"]


@pytest.mark.asyncio
async def test_get_tasks_and_habits_split_by_type(repository: EntryRepository) -> None:
    await repository.save_entry(make_task("t1"))
    await repository.save_entry(make_habit("h1"))

    tasks = await repository.get_tasks()
    habits = await repository.get_habits()
    pending = await repository.get_pending_entries()

    assert isinstance(tasks, Success) and [t.id for t in tasks.value] == ["t1"]
    assert isinstance(habits, Success) and [h.id for h in habits.value] == ["h1"]
    assert isinstance(pending, Success) and sorted(s.id for s in pending.value) == ["h1", "t1"]


@pytest.mark.asyncio
async def test_delete_entry_tombstones_and_triggers(
    repository: EntryRepository, trigger: RecordingTrigger, store: EntryStore
) -> None:
    await repository.save_entry(make_task())
    trigger.calls.clear()

    result = await repository.delete_entry("t1")

    assert isinstance(result, Success)
    assert trigger.calls == [("deleted", "t1")]
    assert await store.get_deleted_entry("t1") is not None
    missing = await repository.get_entry_by_id("t1")
    assert isinstance(missing, Error)


@pytest.mark.asyncio
async def test_mark_done_triggers_completion_and_entry_sync(
    repository: EntryRepository, trigger: RecordingTrigger
) -> None:
    saved = await repository.save_entry(make_habit())
    assert isinstance(saved, Success)
    trigger.calls.clear()

    result = await repository.mark_entry_done(saved.value, DAY)

    assert isinstance(result, Success)
    assert result.value.streak_count == 1
    assert trigger.calls == [("done", "h1", "2024-05-01"), ("entry", "h1")]

    visible = await repository.get_entries_visible_on(DAY)
    assert isinstance(visible, Success)
    assert [e.is_done for e in visible.value] == [True]


@pytest.mark.asyncio
async def test_unmark_done_triggers_entry_sync(repository: EntryRepository, trigger: RecordingTrigger) -> None:
    saved = await repository.save_entry(make_task())
    assert isinstance(saved, Success)
    await repository.mark_entry_done(saved.value, DAY)
    trigger.calls.clear()

    result = await repository.unmark_entry_done(saved.value, DAY)

    assert isinstance(result, Success)
    assert result.value.is_done is False
    assert trigger.calls == [("entry", "t1")]


@pytest.mark.asyncio
async def test_mark_done_failure_does_not_trigger(repository: EntryRepository, trigger: RecordingTrigger) -> None:
    result = await repository.mark_entry_done(make_task("ghost"), DAY)

    assert isinstance(result, Error)
    assert trigger.calls == []


@pytest.mark.asyncio
async def test_store_contention_becomes_retriable_error(tmp_path: Path, clock: FakeClock) -> None:
    repo = _repository_over(LockedStore(tmp_path / "entries.sqlite3"), clock)

    result = await repo.get_tasks()

    assert isinstance(result, Error)
    assert isinstance(result.failure, sqlite3.OperationalError)
    assert result.is_retriable is True


@pytest.mark.asyncio
async def test_sync_now_pulls_then_pushes(
    repository: EntryRepository, remote: FakeEntryApi, store: EntryStore
) -> None:
    await repository.save_entry(make_task("local"))
    remote.remote_entries = [make_task("remote", updated_at=T0)]

    result = await repository.sync_now()

    assert isinstance(result, Success)
    assert result.value.synced == ["local"]
    assert [e.id for e in remote.pushed] == ["local"]
    assert await store.get_by_id("remote") is not None
    assert result.value.pull_error is None
    assert result.value.ok


@pytest.mark.asyncio
async def test_sync_now_reports_failed_pull_and_still_pushes(
    repository: EntryRepository, remote: FakeEntryApi
) -> None:
    await repository.save_entry(make_task("local"))
    denied = RemoteAuthError("access denied", status_code=401)
    remote.fetch_failures.append(denied)

    result = await repository.sync_now()

    assert isinstance(result, Success)
    report = result.value
    assert report.synced == ["local"]
    assert isinstance(report.pull_error, Permanent)
    assert report.pull_error.cause is denied
    assert report.ok is False


@pytest.mark.asyncio
async def test_stream_emits_after_every_change(repository: EntryRepository) -> None:
    stream = repository.stream_entries_visible_on(DAY)
    try:
        first = await asyncio.wait_for(stream.__anext__(), timeout=5)
        assert isinstance(first, Success) and first.value == []

        await repository.save_entry(make_task(due=DAY))

        second = await asyncio.wait_for(stream.__anext__(), timeout=5)
        assert isinstance(second, Success)
        assert [e.id for e in second.value] == ["t1"]
    finally:
        await stream.aclose()


@pytest.mark.asyncio
async def test_stream_failure_is_emitted_then_ends(tmp_path: Path, clock: FakeClock) -> None:
    repo = _repository_over(LockedStore(tmp_path / "entries.sqlite3"), clock)
    stream = repo.stream_entries_visible_on(DAY)

    first = await asyncio.wait_for(stream.__anext__(), timeout=5)
    assert isinstance(first, Error)
    assert first.is_retriable is False

    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()


@pytest.mark.asyncio
async def test_done_history_lists_completions_newest_first(repository: EntryRepository, clock: FakeClock) -> None:
    saved = await repository.save_entry(make_habit("h1"))
    assert isinstance(saved, Success)
    await repository.mark_entry_done(saved.value, DAY)
    clock.advance(days=1)
    await repository.mark_entry_done(saved.value, DAY + timedelta(days=1))

    result = await repository.get_done_history("h1")

    assert isinstance(result, Success)
    assert [d.date for d in result.value] == [DAY + timedelta(days=1), DAY]
    assert [d.done_at for d in result.value] == [T0 + timedelta(days=1), T0]
    assert {d.sync_state for d in result.value} == {SyncState.PENDING}
    assert await repository.get_done_history("ghost") == Success([])
