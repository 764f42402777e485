# src/trackmate/entries/repository.py

"""
Entry repository: the one surface the UI/CLI talks to.

Reads hit the local store only; remote state arrives through background merges.
Writes go to the local store first and then trigger a sync. Every operation
returns Success(value) | Error(failure, is_retriable) and never raises.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import date

from ..core.errors import EntryNotFoundError
from ..core.ports import Clock, ErrorClassifier, ReminderScheduler, SyncTrigger
from ..core.result import Error, Result, Success, Transient, safe_call
from ..sync.engine import EntrySyncEngine, SyncReport
from .models import DoneEntry, Entry, EntryType, Habit, StoredEntry, Task
from .reminders import plan_reminder
from .tracking import TrackingEntryStore

logger = logging.getLogger(__name__)


class EntryRepository:
    def __init__(
            self,
            store: TrackingEntryStore,
            engine: EntrySyncEngine,
            classifier: ErrorClassifier,
            clock: Clock,
            *,
            trigger: SyncTrigger | None = None,
            reminders: ReminderScheduler | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._classifier = classifier
        self._clock = clock
        self._trigger = trigger
        self._reminders = reminders

    def _is_transient(self, failure: BaseException) -> bool:
        return isinstance(self._classifier.classify(failure), Transient)

    # ---- reads ----

    async def get_tasks(self) -> Result[list[Task]]:
        result = await safe_call(
            lambda: self._store.get_all_by_type(EntryType.TASK),
            is_retriable_when=self._is_transient,
        )
        if isinstance(result, Error):
            return result
        return Success([s.entry for s in result.value if isinstance(s.entry, Task)])

    async def get_habits(self) -> Result[list[Habit]]:
        result = await safe_call(
            lambda: self._store.get_all_by_type(EntryType.HABIT),
            is_retriable_when=self._is_transient,
        )
        if isinstance(result, Error):
            return result
        return Success([s.entry for s in result.value if isinstance(s.entry, Habit)])

    async def list_stored(self, entry_type: EntryType) -> Result[list[StoredEntry]]:
        """Entries of one type together with their sync state (for status displays)."""
        return await safe_call(
            lambda: self._store.get_all_by_type(entry_type),
            is_retriable_when=self._is_transient,
        )

    async def get_stored_entry(self, entry_id: str) -> Result[StoredEntry]:
        result = await safe_call(lambda: self._store.get_by_id(entry_id), is_retriable_when=self._is_transient)
        if isinstance(result, Error):
            return result
        if result.value is None:
            return Error(EntryNotFoundError(entry_id))
        return Success(result.value)

    async def get_entry_by_id(self, entry_id: str) -> Result[Entry]:
        result = await self.get_stored_entry(entry_id)
        if isinstance(result, Error):
            return result
        return Success(result.value.entry)

    async def get_pending_entries(self) -> Result[list[StoredEntry]]:
        return await safe_call(self._store.list_pending, is_retriable_when=self._is_transient)

    async def get_entries_visible_on(self, day: date) -> Result[list[Entry]]:
        return await safe_call(lambda: self._store.list_visible_on(day), is_retriable_when=self._is_transient)

    async def get_done_history(self, entry_id: str) -> Result[list[DoneEntry]]:
        """Completion records of one entry, newest day first."""
        return await safe_call(lambda: self._store.list_done_entries(entry_id), is_retriable_when=self._is_transient)

    async def stream_entries_visible_on(self, day: date) -> AsyncIterator[Result[list[Entry]]]:
        """
        Live view of `day`: a fresh Success(list) after every local change.

        A failing read is emitted as Error and ends the stream.
        """
        stream = self._store.stream_visible_on(day)
        try:
            async for entries in stream:
                yield Success(entries)
        except Exception as e:
            logger.warning("Visible-entries stream for %s failed: %r", day.isoformat(), e)
            yield Error(e, is_retriable=self._is_transient(e))
        finally:
            await stream.aclose()

    # ---- writes ----

    def _sync_reminder(self, entry: Entry) -> None:
        if self._reminders is None:
            return
        try:
            plan = plan_reminder(entry, self._clock.now())
            if plan is None:
                self._reminders.cancel_reminder(entry.id)
            else:
                self._reminders.schedule_reminder(entry.id, plan.delay, plan.interval)
        except Exception:
            logger.exception("Reminder update failed entry=%s", entry.id)

    async def save_entry(self, entry: Entry) -> Result[Entry]:
        """Write locally (pending, fresh updated_at), update its reminder, trigger a push."""
        result = await safe_call(lambda: self._store.save_local(entry), is_retriable_when=self._is_transient)
        if isinstance(result, Error):
            logger.warning("save_entry failed id=%s: %r", entry.id, result.failure)
            return result

        saved = result.value
        self._sync_reminder(saved)
        if self._trigger is not None:
            self._trigger.schedule_entry_sync(saved.id)
        return Success(saved)

    async def delete_entry(self, entry_id: str) -> Result[None]:
        result = await self._engine.delete_entry(entry_id)
        if isinstance(result, Error):
            logger.warning("delete_entry failed id=%s: %r", entry_id, result.failure)
            return result
        if self._trigger is not None:
            self._trigger.schedule_deleted_entry_sync(entry_id)
        return Success(None)

    async def mark_entry_done(self, entry: Entry, day: date) -> Result[Entry]:
        result = await self._engine.mark_entry_done(entry, day)
        if isinstance(result, Error):
            logger.warning("mark_entry_done failed id=%s: %r", entry.id, result.failure)
            return result
        if self._trigger is not None:
            self._trigger.schedule_done_entry_sync(entry.id, day)
            self._trigger.schedule_entry_sync(entry.id)
        return result

    async def unmark_entry_done(self, entry: Entry, day: date) -> Result[Entry]:
        result = await self._engine.unmark_entry_done(entry, day)
        if isinstance(result, Error):
            logger.warning("unmark_entry_done failed id=%s: %r", entry.id, result.failure)
            return result
        if self._trigger is not None:
            self._trigger.schedule_entry_sync(entry.id)
        return result

    async def sync_now(self) -> Result[SyncReport]:
        """
        Pull remote state, then push everything pending.

        A failed pull does not stop the push; its classified cause is carried in
        report.pull_error.
        """
        pulled = await self._engine.pull_remote()
        report = await self._engine.sync_pending_entries()
        if isinstance(pulled, Error):
            logger.warning("Pull before push failed: %r", pulled.failure)
            report.pull_error = self._classifier.classify(pulled.failure)
        return Success(report)
