# src/trackmate/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The sync engine and the repository depend on Protocols instead of concrete
implementations. This keeps the SQLite store, the HTTP remote and the reminder
backend swappable and makes testing easier.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

if TYPE_CHECKING:
    from ..entries.models import (
        DeletedEntry,
        DoneEntry,
        Entry,
        EntryType,
        StoredEntry,
        SyncState,
    )
    from .result import ErrorType

T = TypeVar("T")


class Clock(Protocol):
    def now(self) -> datetime: ...
    def today(self) -> date: ...


class ErrorClassifier(Protocol):
    def classify(self, failure: BaseException) -> ErrorType: ...


class LocalEntryStore(Protocol):
    """
    Local persistence contract.

    Every method is a coroutine; the implementation decides how it reaches storage.
    Writes are per-row atomic. run_transactional groups several writes into one
    all-or-nothing unit.
    """

    # Entries
    async def get_by_id(self, entry_id: str) -> StoredEntry | None: ...
    async def get_all_by_type(self, entry_type: EntryType) -> list[StoredEntry]: ...
    async def insert_or_replace(self, entry: Entry, sync_state: SyncState = ...) -> None: ...
    async def upsert_if_newest(self, entry: Entry, sync_state: SyncState = ...) -> bool: ...
    async def update_sync_state(
            self,
            entry_id: str,
            state: SyncState,
            *,
            expected_updated_at: datetime | None = None,
    ) -> bool: ...
    async def update_sync_metadata(self, entry: Entry, state: SyncState) -> None: ...
    async def delete(self, entry_id: str) -> None: ...
    async def list_pending(self) -> list[StoredEntry]: ...
    async def list_visible_on(self, day: date) -> list[Entry]: ...
    def stream_visible_on(self, day: date) -> AsyncIterator[list[Entry]]: ...
    def stream_pending(self) -> AsyncIterator[list[StoredEntry]]: ...

    # Tombstones
    async def save_deleted_entry(self, deleted: DeletedEntry) -> None: ...
    async def get_deleted_entry(self, entry_id: str) -> DeletedEntry | None: ...
    async def update_deleted_sync_state(self, entry_id: str, state: SyncState) -> None: ...
    async def purge_deleted_entry(self, entry_id: str) -> None: ...
    async def list_pending_deleted(self) -> list[DeletedEntry]: ...
    async def list_deleted_ids(self) -> set[str]: ...

    # Completion records
    async def insert_done_entry(self, done: DoneEntry) -> None: ...
    async def delete_done_entry(self, entry_id: str, day: date) -> None: ...
    async def get_done_entry(self, entry_id: str, day: date) -> DoneEntry | None: ...
    async def upsert_done_entry_if_oldest(self, done: DoneEntry) -> bool: ...
    async def update_done_sync_state(self, entry_id: str, day: date, state: SyncState) -> None: ...
    async def list_pending_done(self) -> list[DoneEntry]: ...
    async def list_done_entries(self, entry_id: str) -> list[DoneEntry]: ...

    # Unit of work
    async def run_transactional(self, unit_of_work: Callable[[], Awaitable[T]]) -> T: ...


class RemoteEntryApi(Protocol):
    """Remote document store. Methods raise on failure; the engine classifies."""

    async def push(self, entry: Entry) -> None: ...
    async def fetch_all(self) -> list[Entry]: ...
    async def push_deleted(self, deleted: DeletedEntry) -> None: ...
    async def fetch_deleted(self) -> list[DeletedEntry]: ...
    async def push_done(self, done: DoneEntry) -> None: ...
    async def fetch_done(self) -> list[DoneEntry]: ...


class ReminderScheduler(Protocol):
    """Reminder delivery capability. The core only asks; it never delivers."""

    def schedule_reminder(
            self,
            entry_id: str,
            delay: timedelta,
            interval: timedelta | None = None,
    ) -> None: ...

    def cancel_reminder(self, entry_id: str) -> None: ...


class SyncTrigger(Protocol):
    """Whatever turns a local mutation into a (possibly deferred) sync attempt."""

    def schedule_entry_sync(self, entry_id: str) -> Any: ...
    def schedule_deleted_entry_sync(self, entry_id: str) -> Any: ...
    def schedule_done_entry_sync(self, entry_id: str, day: date) -> Any: ...
