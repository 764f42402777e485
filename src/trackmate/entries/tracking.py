# src/trackmate/entries/tracking.py

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Any

from ..core.errors import EntryNotFoundError
from ..core.ports import Clock, LocalEntryStore
from .models import DeletedEntry, DoneEntry, Entry, Habit, SyncState, Task, next_streak

logger = logging.getLogger(__name__)


class TrackingEntryStore:
    """
    Wraps a LocalEntryStore and adds bookkeeping around local mutations.

    - local writes get updated_at = now and sync_state = pending
    - multi-row mutations (done, undone, delete) run inside one transaction
    - every local mutation is logged

    Calls it does not override are forwarded to the wrapped store unchanged.
    """

    def __init__(self, store: LocalEntryStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    def __getattr__(self, name: str) -> Any:
        return getattr(self._store, name)

    @property
    def wrapped(self) -> LocalEntryStore:
        return self._store

    async def _require(self, entry_id: str) -> Entry:
        stored = await self._store.get_by_id(entry_id)
        if stored is None:
            raise EntryNotFoundError(entry_id)
        return stored.entry

    async def save_local(self, entry: Entry) -> Entry:
        """
        Persist a user edit: stamp updated_at, keep created_at of an existing row,
        mark it pending. Returns the entry as written.
        """
        now = self._clock.now()
        existing = await self._store.get_by_id(entry.id)
        created_at = existing.entry.created_at if existing is not None else entry.created_at
        stamped = replace(entry, created_at=created_at, updated_at=now)
        await self._store.insert_or_replace(stamped, SyncState.PENDING)
        logger.info(
            "Entry %s id=%s type=%s",
            "updated" if existing is not None else "created",
            stamped.id,
            stamped.entry_type.value,
        )
        return stamped

    async def mark_entry_done(self, entry_id: str, day: date) -> Entry:
        """Record a completion for `day` and advance the entry, all-or-nothing."""

        async def unit() -> Entry:
            now = self._clock.now()
            entry = await self._require(entry_id)
            await self._store.insert_done_entry(DoneEntry(entry_id, day, now))
            if isinstance(entry, Habit):
                updated: Entry = replace(
                    entry,
                    streak_count=next_streak(entry, day),
                    last_completed_date=now,
                    updated_at=now,
                )
            else:
                updated = replace(entry, is_done=True, updated_at=now)
            await self._store.update_sync_metadata(updated, SyncState.PENDING)
            return updated

        updated = await self._store.run_transactional(unit)
        logger.info("Entry marked done id=%s day=%s", entry_id, day.isoformat())
        return updated

    async def unmark_entry_done(self, entry_id: str, day: date) -> Entry:
        """Drop the completion for `day`. Streak history is left as is."""

        async def unit() -> Entry:
            now = self._clock.now()
            entry = await self._require(entry_id)
            await self._store.delete_done_entry(entry_id, day)
            if isinstance(entry, Task):
                updated: Entry = replace(entry, is_done=False, updated_at=now)
            else:
                updated = replace(entry, updated_at=now)
            await self._store.update_sync_metadata(updated, SyncState.PENDING)
            return updated

        updated = await self._store.run_transactional(unit)
        logger.info("Entry unmarked id=%s day=%s", entry_id, day.isoformat())
        return updated

    async def delete_entry(self, entry_id: str) -> DeletedEntry:
        """Replace the live row with a pending tombstone, all-or-nothing."""

        async def unit() -> DeletedEntry:
            tombstone = DeletedEntry(entry_id, self._clock.now(), SyncState.PENDING)
            await self._store.save_deleted_entry(tombstone)
            await self._store.delete(entry_id)
            return tombstone

        tombstone = await self._store.run_transactional(unit)
        logger.info("Entry deleted id=%s (tombstone pending)", entry_id)
        return tombstone
