# tests/test_tracking_store.py

from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path

import pytest

from trackmate.core.errors import EntryNotFoundError
from trackmate.entries.models import Entry, Habit, SyncState, Task
from trackmate.entries.store import EntryStore
from trackmate.entries.tracking import TrackingEntryStore

from .fakes import T0, FakeClock, make_habit, make_task

DAY = date(2024, 5, 1)


class FailingMetadataStore(EntryStore):
    """Real store whose final write of a multi-row mutation blows up."""

    async def update_sync_metadata(self, entry: Entry, state: SyncState) -> None:
        raise RuntimeError("disk full")


@pytest.mark.asyncio
async def test_save_local_stamps_and_marks_pending(tracking: TrackingEntryStore, clock: FakeClock) -> None:
    saved = await tracking.save_local(make_task(updated_at=None))

    assert saved.updated_at == clock.now()
    stored = await tracking.get_by_id("t1")
    assert stored is not None
    assert stored.sync_state == SyncState.PENDING
    assert stored.entry.updated_at == clock.now()


@pytest.mark.asyncio
async def test_save_local_keeps_original_created_at(tracking: TrackingEntryStore, clock: FakeClock) -> None:
    await tracking.save_local(make_task(title="first"))
    clock.advance(hours=1)

    edited = await tracking.save_local(make_task(title="second", created_at=T0 + timedelta(days=9)))

    assert edited.created_at == T0
    assert edited.updated_at == T0 + timedelta(hours=1)


@pytest.mark.asyncio
async def test_save_local_resets_synced_row_to_pending(tracking: TrackingEntryStore, store: EntryStore) -> None:
    await store.insert_or_replace(make_task(updated_at=T0 - timedelta(days=1)), SyncState.SYNCED)

    await tracking.save_local(make_task(title="edited"))

    stored = await store.get_by_id("t1")
    assert stored is not None
    assert stored.sync_state == SyncState.PENDING
    assert stored.entry.title == "edited"


@pytest.mark.asyncio
async def test_mark_task_done_writes_record_and_flag(tracking: TrackingEntryStore, store: EntryStore, clock: FakeClock) -> None:
    await store.insert_or_replace(make_task(updated_at=T0 - timedelta(hours=1)), SyncState.SYNCED)

    updated = await tracking.mark_entry_done("t1", DAY)

    assert isinstance(updated, Task)
    assert updated.is_done is True
    done = await store.get_done_entry("t1", DAY)
    assert done is not None
    assert done.done_at == clock.now()
    assert done.sync_state == SyncState.PENDING
    stored = await store.get_by_id("t1")
    assert stored is not None
    assert stored.entry.is_done is True
    assert stored.entry.updated_at == clock.now()
    assert stored.sync_state == SyncState.PENDING


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("streak", "last_completed", "expected"),
    [
        (None, None, 1),
        (4, T0 - timedelta(days=1), 5),
        (4, T0, 4),
        (4, T0 - timedelta(days=3), 1),
    ],
)
async def test_mark_habit_done_updates_streak(
    tracking: TrackingEntryStore,
    store: EntryStore,
    clock: FakeClock,
    streak: int | None,
    last_completed,
    expected: int,
) -> None:
    await store.insert_or_replace(make_habit(streak=streak, last_completed=last_completed), SyncState.SYNCED)

    updated = await tracking.mark_entry_done("h1", DAY)

    assert isinstance(updated, Habit)
    assert updated.streak_count == expected
    assert updated.last_completed_date == clock.now()
    stored = await store.get_by_id("h1")
    assert stored is not None
    assert isinstance(stored.entry, Habit)
    assert stored.entry.streak_count == expected


@pytest.mark.asyncio
async def test_mark_done_for_missing_entry_writes_nothing(tracking: TrackingEntryStore, store: EntryStore) -> None:
    with pytest.raises(EntryNotFoundError):
        await tracking.mark_entry_done("ghost", DAY)

    assert await store.get_done_entry("ghost", DAY) is None


@pytest.mark.asyncio
async def test_mark_done_is_all_or_nothing(tmp_path: Path, clock: FakeClock) -> None:
    store = FailingMetadataStore(tmp_path / "entries.sqlite3")
    tracking = TrackingEntryStore(store, clock)
    original = make_task(updated_at=T0 - timedelta(hours=1))
    await store.insert_or_replace(original, SyncState.SYNCED)

    with pytest.raises(RuntimeError):
        await tracking.mark_entry_done("t1", DAY)

    assert await store.get_done_entry("t1", DAY) is None
    stored = await store.get_by_id("t1")
    assert stored is not None
    assert stored.entry == original
    assert stored.sync_state == SyncState.SYNCED


@pytest.mark.asyncio
async def test_unmark_task_clears_record_and_flag(tracking: TrackingEntryStore, store: EntryStore, clock: FakeClock) -> None:
    await store.insert_or_replace(make_task(updated_at=T0 - timedelta(hours=1)), SyncState.SYNCED)
    await tracking.mark_entry_done("t1", DAY)
    clock.advance(minutes=5)

    updated = await tracking.unmark_entry_done("t1", DAY)

    assert updated.is_done is False
    assert updated.updated_at == clock.now()
    assert await store.get_done_entry("t1", DAY) is None
    stored = await store.get_by_id("t1")
    assert stored is not None
    assert stored.entry.is_done is False
    assert stored.sync_state == SyncState.PENDING


@pytest.mark.asyncio
async def test_unmark_habit_keeps_streak(tracking: TrackingEntryStore, store: EntryStore) -> None:
    await store.insert_or_replace(make_habit(streak=2, last_completed=T0 - timedelta(days=1)), SyncState.SYNCED)
    await tracking.mark_entry_done("h1", DAY)

    updated = await tracking.unmark_entry_done("h1", DAY)

    assert isinstance(updated, Habit)
    assert updated.streak_count == 3
    assert await store.get_done_entry("h1", DAY) is None


@pytest.mark.asyncio
async def test_delete_entry_replaces_row_with_tombstone(tracking: TrackingEntryStore, store: EntryStore, clock: FakeClock) -> None:
    await store.insert_or_replace(make_task(), SyncState.SYNCED)

    tombstone = await tracking.delete_entry("t1")

    assert tombstone.deleted_at == clock.now()
    assert await store.get_by_id("t1") is None
    saved = await store.get_deleted_entry("t1")
    assert saved is not None
    assert saved.sync_state == SyncState.PENDING
    assert saved.deleted_at == clock.now()


@pytest.mark.asyncio
async def test_delete_entry_rolls_back_tombstone_when_delete_fails(tmp_path: Path, clock: FakeClock) -> None:
    class FailingDeleteStore(EntryStore):
        async def delete(self, entry_id: str) -> None:
            raise RuntimeError("locked out")

    store = FailingDeleteStore(tmp_path / "entries.sqlite3")
    tracking = TrackingEntryStore(store, clock)
    await store.insert_or_replace(make_task(), SyncState.SYNCED)

    with pytest.raises(RuntimeError):
        await tracking.delete_entry("t1")

    assert await store.get_deleted_entry("t1") is None
    assert await store.get_by_id("t1") is not None


@pytest.mark.asyncio
async def test_unknown_attributes_forward_to_wrapped_store(tracking: TrackingEntryStore, store: EntryStore) -> None:
    assert tracking.wrapped is store
    assert tracking.notifier is store.notifier
    assert await tracking.count_entries() == 0
