# src/trackmate/sync/engine.py

from __future__ import annotations

"""
Entry sync engine.

Keeps the local store and the remote document store eventually consistent:
- pushes pending entries, tombstones and completion records (one attempt each),
- merges remote state into the local store with last-writer-wins,
- performs the multi-row local mutations (delete, done, undone) atomically.

Every attempt is caught at its boundary, classified (transient vs permanent) and
turned into a sync state transition plus a returned value. Retrying transient
failures is the caller's business (see sync.scheduler).
"""

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from ..core.errors import EntryNotFoundError
from ..core.ports import Clock, ErrorClassifier, RemoteEntryApi, ReminderScheduler
from ..core.result import (
    SYNC_OK,
    Error,
    ErrorType,
    Permanent,
    Result,
    Success,
    SyncError,
    SyncResult,
    Transient,
    safe_call,
    to_sync_result,
)
from ..entries.models import DeletedEntry, DoneEntry, Entry, SyncState
from ..entries.tracking import TrackingEntryStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncReport:
    """
    Outcome of one sync_pending_entries() pass, by item key.

    pull_error is set by callers that pull before pushing and saw the pull fail.
    """

    synced: list[str] = field(default_factory=list)
    transient: list[str] = field(default_factory=list)
    permanent: list[str] = field(default_factory=list)
    listing_errors: list[ErrorType] = field(default_factory=list)
    pull_error: ErrorType | None = None

    @property
    def total(self) -> int:
        return len(self.synced) + len(self.transient) + len(self.permanent)

    @property
    def ok(self) -> bool:
        return not (self.transient or self.permanent or self.listing_errors or self.pull_error)

    def record(self, key: str, result: SyncResult) -> None:
        if isinstance(result, SyncError):
            (self.transient if result.is_transient else self.permanent).append(key)
        else:
            self.synced.append(key)


@dataclass(slots=True)
class PullReport:
    """Outcome of one pull_remote() pass."""

    merged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    done_merged: int = 0


def deleted_key(entry_id: str) -> str:
    return f"deleted:{entry_id}"


def done_key(entry_id: str, day: date) -> str:
    return f"done:{entry_id}@{day.isoformat()}"


class EntrySyncEngine:
    def __init__(
            self,
            store: TrackingEntryStore,
            remote: RemoteEntryApi,
            classifier: ErrorClassifier,
            clock: Clock,
            *,
            reminders: ReminderScheduler | None = None,
            concurrency: int = 4,
    ) -> None:
        self._store = store
        self._remote = remote
        self._classifier = classifier
        self._clock = clock
        self._reminders = reminders
        self._concurrency = max(1, int(concurrency))
        # Per-id locks; entries disappear once no coroutine holds the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # ---- helpers ----

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _is_transient(self, failure: BaseException) -> bool:
        return isinstance(self._classifier.classify(failure), Transient)

    async def _call(self, block: Callable[[], Awaitable[Any]]) -> Success | Error:
        return await safe_call(block, is_retriable_when=self._is_transient)

    async def _attempt(
            self,
            key: str,
            push: Callable[[], Awaitable[Any]],
            on_success: Callable[[], Awaitable[Any]],
            on_permanent: Callable[[], Awaitable[Any]],
    ) -> SyncResult:
        """
        One push attempt with its state transition.

        success   -> on_success()
        transient -> nothing (row stays pending)
        permanent -> on_permanent() (row becomes failed)

        A failing transition is reported like a failing push.
        """
        pushed = await self._call(push)
        if isinstance(pushed, Success):
            moved = await self._call(on_success)
            if isinstance(moved, Error):
                logger.warning("Sync %s pushed but local state update failed: %r", key, moved.failure)
                return to_sync_result(moved)
            logger.debug("Sync %s -> synced", key)
            return SYNC_OK

        result = to_sync_result(pushed)
        if isinstance(result, SyncError) and result.is_transient:
            logger.warning("Sync %s failed (transient, stays pending): %r", key, pushed.failure)
            return result

        logger.error("Sync %s failed (permanent): %r", key, pushed.failure)
        marked = await self._call(on_permanent)
        if isinstance(marked, Error):
            logger.error("Sync %s: could not mark as failed: %r", key, marked.failure)
        return result

    # ---- push side ----

    async def sync_entry(self, entry_id: str) -> SyncResult:
        """Push one entry if it is pending."""
        async with self._lock_for(entry_id):
            loaded = await self._call(lambda: self._store.get_by_id(entry_id))
            if isinstance(loaded, Error):
                logger.warning("Sync %s: load failed: %r", entry_id, loaded.failure)
                return to_sync_result(loaded)

            stored = loaded.value
            if stored is None:
                return SyncError(Permanent(EntryNotFoundError(entry_id)))
            if stored.sync_state != SyncState.PENDING:
                return SYNC_OK

            entry = stored.entry

            # Guarded by updated_at: an edit made while the push was in flight keeps the row pending.
            return await self._attempt(
                entry_id,
                push=lambda: self._remote.push(entry),
                on_success=lambda: self._store.update_sync_state(
                    entry_id, SyncState.SYNCED, expected_updated_at=entry.updated_at
                ),
                on_permanent=lambda: self._store.update_sync_state(
                    entry_id, SyncState.FAILED, expected_updated_at=entry.updated_at
                ),
            )

    async def sync_deleted_entry(self, entry_id: str) -> SyncResult:
        """Push one tombstone; purge it locally once the remote confirms."""
        key = deleted_key(entry_id)
        async with self._lock_for(entry_id):
            loaded = await self._call(lambda: self._store.get_deleted_entry(entry_id))
            if isinstance(loaded, Error):
                logger.warning("Sync %s: load failed: %r", key, loaded.failure)
                return to_sync_result(loaded)

            tombstone: DeletedEntry | None = loaded.value
            if tombstone is None or tombstone.sync_state != SyncState.PENDING:
                return SYNC_OK

            return await self._attempt(
                key,
                push=lambda: self._remote.push_deleted(tombstone),
                on_success=lambda: self._store.purge_deleted_entry(entry_id),
                on_permanent=lambda: self._store.update_deleted_sync_state(entry_id, SyncState.FAILED),
            )

    async def sync_done_entry(self, entry_id: str, day: date) -> SyncResult:
        """Push one completion record."""
        key = done_key(entry_id, day)
        async with self._lock_for(key):
            loaded = await self._call(lambda: self._store.get_done_entry(entry_id, day))
            if isinstance(loaded, Error):
                logger.warning("Sync %s: load failed: %r", key, loaded.failure)
                return to_sync_result(loaded)

            done: DoneEntry | None = loaded.value
            if done is None or done.sync_state != SyncState.PENDING:
                return SYNC_OK

            return await self._attempt(
                key,
                push=lambda: self._remote.push_done(done),
                on_success=lambda: self._store.update_done_sync_state(entry_id, day, SyncState.SYNCED),
                on_permanent=lambda: self._store.update_done_sync_state(entry_id, day, SyncState.FAILED),
            )

    async def sync_pending_entries(self) -> SyncReport:
        """
        Push everything pending: entries, tombstones, completion records.

        Each item is an independent attempt; a failure of one never stops the
        others. Cancelling the call cancels the in-flight attempts; items keep
        whatever transition they already made.
        """
        report = SyncReport()
        jobs: list[tuple[str, Callable[[], Awaitable[SyncResult]]]] = []

        pending = await self._call(self._store.list_pending)
        if isinstance(pending, Success):
            for stored in pending.value:
                jobs.append((stored.id, lambda i=stored.id: self.sync_entry(i)))
        else:
            report.listing_errors.append(self._classifier.classify(pending.failure))
            logger.warning("Listing pending entries failed: %r", pending.failure)

        tombstones = await self._call(self._store.list_pending_deleted)
        if isinstance(tombstones, Success):
            for deleted in tombstones.value:
                jobs.append((deleted_key(deleted.id), lambda i=deleted.id: self.sync_deleted_entry(i)))
        else:
            report.listing_errors.append(self._classifier.classify(tombstones.failure))
            logger.warning("Listing pending tombstones failed: %r", tombstones.failure)

        done_entries = await self._call(self._store.list_pending_done)
        if isinstance(done_entries, Success):
            for done in done_entries.value:
                jobs.append((
                    done_key(done.id, done.date),
                    lambda i=done.id, d=done.date: self.sync_done_entry(i, d),
                ))
        else:
            report.listing_errors.append(self._classifier.classify(done_entries.failure))
            logger.warning("Listing pending completions failed: %r", done_entries.failure)

        if not jobs:
            return report

        sem = asyncio.Semaphore(self._concurrency)

        async def run_one(job: Callable[[], Awaitable[SyncResult]]) -> SyncResult:
            async with sem:
                return await job()

        results = await asyncio.gather(*(run_one(job) for _, job in jobs))
        for (key, _), result in zip(jobs, results):
            report.record(key, result)

        logger.info(
            "Sync pass done: synced=%d transient=%d permanent=%d",
            len(report.synced),
            len(report.transient),
            len(report.permanent),
        )
        return report

    # ---- pull side ----

    async def merge_remote_entry(self, remote: Entry) -> bool:
        """
        Apply a remote copy with upsert-if-newest. Returns True if it was written.

        An id with a local tombstone (pending or failed) is never written back.
        A failing merge leaves the local row untouched and returns False.
        """

        async def merge() -> bool:
            if await self._store.get_deleted_entry(remote.id) is not None:
                logger.debug("Remote copy of %s ignored: deleted locally", remote.id)
                return False
            return await self._store.upsert_if_newest(remote, SyncState.SYNCED)

        async with self._lock_for(remote.id):
            merged = await self._call(merge)
        if isinstance(merged, Error):
            logger.warning("Merge of remote entry %s failed: %r", remote.id, merged.failure)
            return False
        return bool(merged.value)

    async def _apply_remote_tombstone(self, entry_id: str, report: PullReport) -> None:
        async with self._lock_for(entry_id):
            loaded = await self._call(lambda: self._store.get_by_id(entry_id))
            if isinstance(loaded, Error):
                logger.warning("Remote delete of %s: load failed: %r", entry_id, loaded.failure)
                return
            stored = loaded.value
            if stored is None:
                return
            if stored.sync_state == SyncState.PENDING:
                # Local unsynced edit vs remote delete: keep the edit.
                logger.warning("Conflict: entry %s deleted remotely but has pending local changes", entry_id)
                report.conflicts.append(entry_id)
                return
            removed = await self._call(lambda: self._store.delete(entry_id))
            if isinstance(removed, Error):
                logger.warning("Remote delete of %s failed locally: %r", entry_id, removed.failure)
                return
            if self._reminders is not None:
                self._reminders.cancel_reminder(entry_id)
            report.deleted.append(entry_id)

    async def pull_remote(self) -> Result[PullReport]:
        """
        Fetch remote entries, tombstones and completions (concurrently) and merge them.

        Entries deleted on either side are not merged. A failed fetch, or a failed
        read of the local tombstones, aborts the pull and is returned as Error.
        """
        fetched = await asyncio.gather(
            self._call(self._remote.fetch_all),
            self._call(self._remote.fetch_deleted),
            self._call(self._remote.fetch_done),
        )
        for outcome in fetched:
            if isinstance(outcome, Error):
                logger.warning("Pull failed: %r", outcome.failure)
                return outcome

        remote_entries: list[Entry] = fetched[0].value
        remote_deleted: list[DeletedEntry] = fetched[1].value
        remote_done: list[DoneEntry] = fetched[2].value

        report = PullReport()
        deleted_ids = {d.id for d in remote_deleted}

        # Pending and failed tombstones alike.
        local_tombstones = await self._call(self._store.list_deleted_ids)
        if isinstance(local_tombstones, Error):
            logger.warning("Pull aborted, listing local tombstones failed: %r", local_tombstones.failure)
            return local_tombstones
        locally_deleted: set[str] = local_tombstones.value

        for entry in remote_entries:
            if entry.id in deleted_ids or entry.id in locally_deleted:
                report.skipped.append(entry.id)
                continue
            if await self.merge_remote_entry(entry):
                report.merged.append(entry.id)

        for done in remote_done:
            if done.id in deleted_ids or done.id in locally_deleted:
                continue
            synced_copy = DoneEntry(done.id, done.date, done.done_at, SyncState.SYNCED)
            merged = await self._call(lambda d=synced_copy: self._store.upsert_done_entry_if_oldest(d))
            if isinstance(merged, Success) and merged.value:
                report.done_merged += 1
            elif isinstance(merged, Error):
                logger.warning("Merge of completion %s failed: %r", done_key(done.id, done.date), merged.failure)

        for entry_id in sorted(deleted_ids):
            await self._apply_remote_tombstone(entry_id, report)

        logger.info(
            "Pull done: merged=%d skipped=%d deleted=%d conflicts=%d completions=%d",
            len(report.merged),
            len(report.skipped),
            len(report.deleted),
            len(report.conflicts),
            report.done_merged,
        )
        return Success(report)

    # ---- local multi-row mutations ----

    async def delete_entry(self, entry_id: str) -> Result[DeletedEntry]:
        """Tombstone + row removal in one transaction; cancels the entry's reminder."""
        async with self._lock_for(entry_id):
            result = await self._call(lambda: self._store.delete_entry(entry_id))
        if isinstance(result, Success) and self._reminders is not None:
            self._reminders.cancel_reminder(entry_id)
        return result

    async def mark_entry_done(self, entry: Entry, day: date) -> Result[Entry]:
        async with self._lock_for(entry.id):
            return await self._call(lambda: self._store.mark_entry_done(entry.id, day))

    async def unmark_entry_done(self, entry: Entry, day: date) -> Result[Entry]:
        async with self._lock_for(entry.id):
            return await self._call(lambda: self._store.unmark_entry_done(entry.id, day))
