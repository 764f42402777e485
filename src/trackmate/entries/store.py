# src/trackmate/entries/store.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
import threading
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextvars import ContextVar
from dataclasses import replace
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, TypeVar

from ..core.clock import from_epoch_ms, to_epoch_ms
from ..core.errors import EntryNotFoundError, EntryTypeChangedError, MalformedEntryError
from ..sync.resolver import should_replace, should_replace_done
from .models import (
    DeletedEntry,
    DoneEntry,
    Entry,
    EntryType,
    Habit,
    Recurrence,
    Reminder,
    StoredEntry,
    SyncState,
    Task,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Connection of the transaction the current task is running in (if any).
# asyncio.to_thread copies the context, so worker threads see it too.
_tx_conn: ContextVar[sqlite3.Connection | None] = ContextVar("trackmate_tx_conn", default=None)


class Subscription:
    """Cancellable handle returned by ChangeNotifier.subscribe()."""

    def __init__(self, notifier: ChangeNotifier, loop: asyncio.AbstractEventLoop) -> None:
        self._notifier = notifier
        self._loop = loop
        self._event = asyncio.Event()
        self.cancelled = False

    def _wake(self) -> None:
        try:
            self._loop.call_soon_threadsafe(self._event.set)
        except RuntimeError:
            # loop already closed
            self.cancel()

    async def wait(self) -> None:
        await self._event.wait()
        self._event.clear()

    def cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            self._notifier._remove(self)


class ChangeNotifier:
    """Fan-out of "something changed" signals from writer threads to asyncio readers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: set[Subscription] = set()

    def subscribe(self) -> Subscription:
        sub = Subscription(self, asyncio.get_running_loop())
        with self._lock:
            self._subs.add(sub)
        return sub

    def notify(self) -> None:
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            sub._wake()

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            self._subs.discard(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)


class EntryStore:
    """
    SQLite entry store.

    Tables:
    - entries          live task/habit rows + sync_state
    - done_entries     one completion record per (entry_id, entry_date)
    - deleted_entries  tombstones waiting for remote confirmation

    The schema is migration-safe: create tables if missing, then add missing
    columns with ALTER TABLE.

    Concurrency:
    - public methods are coroutines; SQL runs in a worker thread (asyncio.to_thread)
    - each call opens its own connection unless it runs inside run_transactional
    - read-compare-write operations take the write lock up front (BEGIN IMMEDIATE)
    """

    def __init__(self, db_path: str | Path = "entries.sqlite3", *, timeout_seconds: float = 30.0) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._timeout = float(timeout_seconds)
        self._notifier = ChangeNotifier()
        self._ensure_schema()
        try:
            total = self._count_entries()
        except sqlite3.Error:
            total = -1
        logger.info("EntryStore ready db=%s total=%s", self._db_path, total)

    @property
    def notifier(self) -> ChangeNotifier:
        return self._notifier

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        # check_same_thread=False: a transaction's connection is used from several
        # worker threads, one statement batch at a time.
        conn = sqlite3.connect(str(self._db_path), timeout=self._timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _connection(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        conn = _tx_conn.get()
        if conn is not None:
            yield conn
            return

        conn = self._get_conn()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def _read(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(fn, *args)

    async def _write(self, fn: Callable[..., T], *args: Any) -> T:
        result = await asyncio.to_thread(fn, *args)
        # Inside a transaction, subscribers hear about it after commit.
        if _tx_conn.get() is None:
            self._notifier.notify()
        return result

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS entries (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    description TEXT NOT NULL DEFAULT '',
                    is_done INTEGER NOT NULL DEFAULT 0,
                    time TEXT,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER,
                    due_date TEXT,
                    start_date TEXT,
                    recurrence TEXT,
                    streak_count INTEGER,
                    last_completed_date INTEGER,
                    reminder TEXT,
                    sync_state TEXT NOT NULL DEFAULT 'pending'
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS done_entries (
                    entry_id TEXT NOT NULL,
                    entry_date TEXT NOT NULL,
                    done_at INTEGER NOT NULL,
                    sync_state TEXT NOT NULL DEFAULT 'pending',
                    PRIMARY KEY (entry_id, entry_date)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS deleted_entries (
                    id TEXT PRIMARY KEY,
                    deleted_at INTEGER NOT NULL,
                    sync_state TEXT NOT NULL DEFAULT 'pending'
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(entries)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE entries ADD COLUMN {name} {decl}")
                logger.info("EntryStore migration: added column %s", name)

            add_col("time", "TEXT")
            add_col("updated_at", "INTEGER")
            add_col("due_date", "TEXT")
            add_col("start_date", "TEXT")
            add_col("recurrence", "TEXT")
            add_col("streak_count", "INTEGER")
            add_col("last_completed_date", "INTEGER")
            add_col("reminder", "TEXT")
            add_col("sync_state", "TEXT NOT NULL DEFAULT 'pending'")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_entries_sync_state ON entries(sync_state)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_entries_type_dates ON entries(type, due_date, start_date)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_done_entries_sync_state ON done_entries(sync_state)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_deleted_entries_sync_state ON deleted_entries(sync_state)")

            conn.commit()
        finally:
            conn.close()

    # ---- row mapping ----

    @staticmethod
    def _required_instant(row: sqlite3.Row, column: str, key: str) -> datetime:
        value = from_epoch_ms(row[column])
        if value is None:
            raise MalformedEntryError(f"stored row {row[key]!r} has no {column}")
        return value

    @classmethod
    def _row_to_entry(cls, row: sqlite3.Row) -> Entry:
        created_at = cls._required_instant(row, "created_at", "id")
        common: dict[str, Any] = {
            "id": str(row["id"]),
            "title": str(row["title"] or ""),
            "description": str(row["description"] or ""),
            "is_done": bool(row["is_done"]),
            "time": time.fromisoformat(row["time"]) if row["time"] else None,
            "created_at": created_at,
            "updated_at": from_epoch_ms(row["updated_at"]),
            "reminder": Reminder.parse(row["reminder"]),
        }
        if row["type"] == EntryType.HABIT:
            start = row["start_date"]
            return Habit(
                **common,
                start_date=date.fromisoformat(start) if start else created_at.date(),
                recurrence=Recurrence.parse(row["recurrence"]),
                streak_count=int(row["streak_count"]) if row["streak_count"] is not None else None,
                last_completed_date=from_epoch_ms(row["last_completed_date"]),
            )
        due = row["due_date"]
        return Task(**common, due_date=date.fromisoformat(due) if due else created_at.date())

    def _row_to_stored(self, row: sqlite3.Row) -> StoredEntry:
        return StoredEntry(entry=self._row_to_entry(row), sync_state=SyncState.from_db(row["sync_state"]))

    @staticmethod
    def _entry_params(entry: Entry, sync_state: SyncState) -> tuple[Any, ...]:
        due_date = start_date = recurrence = None
        streak = last_completed = None
        if isinstance(entry, Task):
            due_date = entry.due_date.isoformat()
        elif isinstance(entry, Habit):
            start_date = entry.start_date.isoformat()
            recurrence = entry.recurrence.value
            streak = entry.streak_count
            last_completed = to_epoch_ms(entry.last_completed_date)
        return (
            entry.id,
            entry.entry_type.value,
            entry.title,
            entry.description or "",
            int(entry.is_done),
            entry.time.isoformat() if entry.time else None,
            to_epoch_ms(entry.created_at),
            to_epoch_ms(entry.updated_at),
            due_date,
            start_date,
            recurrence,
            streak,
            last_completed,
            entry.reminder.value if entry.reminder else None,
            sync_state.value,
        )

    @classmethod
    def _row_to_done(cls, row: sqlite3.Row) -> DoneEntry:
        done_at = cls._required_instant(row, "done_at", "entry_id")
        return DoneEntry(
            id=str(row["entry_id"]),
            date=date.fromisoformat(row["entry_date"]),
            done_at=done_at,
            sync_state=SyncState.from_db(row["sync_state"]),
        )

    @classmethod
    def _row_to_deleted(cls, row: sqlite3.Row) -> DeletedEntry:
        deleted_at = cls._required_instant(row, "deleted_at", "id")
        return DeletedEntry(
            id=str(row["id"]),
            deleted_at=deleted_at,
            sync_state=SyncState.from_db(row["sync_state"]),
        )

    @staticmethod
    def _check_type(conn: sqlite3.Connection, entry: Entry) -> sqlite3.Row | None:
        row = conn.execute("SELECT * FROM entries WHERE id = ?", (entry.id,)).fetchone()
        if row is not None and row["type"] != entry.entry_type.value:
            raise EntryTypeChangedError(entry.id, row["type"], entry.entry_type.value)
        return row

    _INSERT_ENTRY_SQL = """
        INSERT OR REPLACE INTO entries(
            id, type, title, description, is_done, time,
            created_at, updated_at,
            due_date, start_date, recurrence, streak_count, last_completed_date,
            reminder, sync_state
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """

    # ---- entries: sync implementations ----

    def _count_entries(self) -> int:
        with self._connection() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM entries").fetchone()
            return int(n)

    def _get_by_id(self, entry_id: str) -> StoredEntry | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM entries WHERE id = ?", (entry_id,)).fetchone()
            return self._row_to_stored(row) if row else None

    def _get_all_by_type(self, entry_type: EntryType) -> list[StoredEntry]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM entries WHERE type = ? ORDER BY created_at ASC",
                (entry_type.value,),
            ).fetchall()
            return [self._row_to_stored(r) for r in rows]

    def _insert_or_replace(self, entry: Entry, sync_state: SyncState) -> None:
        with self._connection(immediate=True) as conn:
            self._check_type(conn, entry)
            conn.execute(self._INSERT_ENTRY_SQL, self._entry_params(entry, sync_state))
        logger.debug("Entry saved id=%s type=%s state=%s", entry.id, entry.entry_type.value, sync_state.value)

    def _upsert_if_newest(self, entry: Entry, sync_state: SyncState) -> bool:
        with self._connection(immediate=True) as conn:
            row = self._check_type(conn, entry)
            current = self._row_to_entry(row) if row is not None else None
            if not should_replace(current, entry):
                logger.debug("Upsert skipped id=%s (stored copy is as new or newer)", entry.id)
                return False
            conn.execute(self._INSERT_ENTRY_SQL, self._entry_params(entry, sync_state))
            return True

    def _update_sync_state(self, entry_id: str, state: SyncState, expected_updated_ms: int | None, guarded: bool) -> bool:
        with self._connection() as conn:
            if guarded:
                cur = conn.execute(
                    "UPDATE entries SET sync_state = ? WHERE id = ? AND updated_at IS ?",
                    (state.value, entry_id, expected_updated_ms),
                )
            else:
                cur = conn.execute(
                    "UPDATE entries SET sync_state = ? WHERE id = ?",
                    (state.value, entry_id),
                )
            return cur.rowcount == 1

    def _update_sync_metadata(self, entry: Entry, state: SyncState) -> None:
        params = self._entry_params(entry, state)
        with self._connection() as conn:
            cur = conn.execute(
                """
                UPDATE entries
                SET title = ?, description = ?, is_done = ?, time = ?,
                    updated_at = ?, streak_count = ?, last_completed_date = ?,
                    reminder = ?, sync_state = ?
                WHERE id = ?
                """,
                (
                    params[2],
                    params[3],
                    params[4],
                    params[5],
                    params[7],
                    params[11],
                    params[12],
                    params[13],
                    params[14],
                    entry.id,
                ),
            )
            if cur.rowcount != 1:
                raise EntryNotFoundError(entry.id)

    def _delete(self, entry_id: str) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
            conn.execute("DELETE FROM done_entries WHERE entry_id = ?", (entry_id,))

    def _list_pending(self) -> list[StoredEntry]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM entries WHERE sync_state = ? ORDER BY updated_at ASC",
                (SyncState.PENDING.value,),
            ).fetchall()
            return [self._row_to_stored(r) for r in rows]

    def _list_visible_on(self, day: date) -> list[Entry]:
        """
        Entries shown on `day`:
        - tasks due that day
        - habits that apply to that day (start_date <= day, then recurrence rules)

        Habit is_done comes from that day's completion record only.
        """
        iso = day.isoformat()
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT e.*, d.entry_id IS NOT NULL AS done_on_day
                FROM entries e
                LEFT JOIN done_entries d ON d.entry_id = e.id AND d.entry_date = ?
                WHERE (e.type = 'task' AND e.due_date = ?)
                   OR (e.type = 'habit' AND e.start_date <= ?)
                ORDER BY e.time IS NOT NULL, e.time, e.created_at
                """,
                (iso, iso, iso),
            ).fetchall()

        out: list[Entry] = []
        for row in rows:
            entry = self._row_to_entry(row)
            done_on_day = bool(row["done_on_day"])
            if isinstance(entry, Habit):
                if not entry.applies_to(day):
                    continue
                entry = replace(entry, is_done=done_on_day)
            elif done_on_day and not entry.is_done:
                entry = replace(entry, is_done=True)
            out.append(entry)
        return out

    # ---- tombstones: sync implementations ----

    def _save_deleted_entry(self, deleted: DeletedEntry) -> None:
        with self._connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO deleted_entries(id, deleted_at, sync_state) VALUES (?, ?, ?)",
                (deleted.id, to_epoch_ms(deleted.deleted_at), deleted.sync_state.value),
            )

    def _get_deleted_entry(self, entry_id: str) -> DeletedEntry | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM deleted_entries WHERE id = ?", (entry_id,)).fetchone()
            return self._row_to_deleted(row) if row else None

    def _update_deleted_sync_state(self, entry_id: str, state: SyncState) -> None:
        with self._connection() as conn:
            conn.execute("UPDATE deleted_entries SET sync_state = ? WHERE id = ?", (state.value, entry_id))

    def _purge_deleted_entry(self, entry_id: str) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM deleted_entries WHERE id = ?", (entry_id,))

    def _list_pending_deleted(self) -> list[DeletedEntry]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM deleted_entries WHERE sync_state = ? ORDER BY deleted_at ASC",
                (SyncState.PENDING.value,),
            ).fetchall()
            return [self._row_to_deleted(r) for r in rows]

    def _list_deleted_ids(self) -> set[str]:
        with self._connection() as conn:
            return {str(r["id"]) for r in conn.execute("SELECT id FROM deleted_entries")}

    # ---- completion records: sync implementations ----

    def _insert_done_entry(self, done: DoneEntry) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO done_entries(entry_id, entry_date, done_at, sync_state)
                VALUES (?, ?, ?, ?)
                """,
                (done.id, done.date.isoformat(), to_epoch_ms(done.done_at), done.sync_state.value),
            )

    def _delete_done_entry(self, entry_id: str, day: date) -> None:
        with self._connection() as conn:
            conn.execute(
                "DELETE FROM done_entries WHERE entry_id = ? AND entry_date = ?",
                (entry_id, day.isoformat()),
            )

    def _get_done_entry(self, entry_id: str, day: date) -> DoneEntry | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM done_entries WHERE entry_id = ? AND entry_date = ?",
                (entry_id, day.isoformat()),
            ).fetchone()
            return self._row_to_done(row) if row else None

    def _upsert_done_entry_if_oldest(self, done: DoneEntry) -> bool:
        with self._connection(immediate=True) as conn:
            row = conn.execute(
                "SELECT * FROM done_entries WHERE entry_id = ? AND entry_date = ?",
                (done.id, done.date.isoformat()),
            ).fetchone()
            current = self._row_to_done(row) if row else None
            if not should_replace_done(current, done):
                return False
            conn.execute(
                """
                INSERT OR REPLACE INTO done_entries(entry_id, entry_date, done_at, sync_state)
                VALUES (?, ?, ?, ?)
                """,
                (done.id, done.date.isoformat(), to_epoch_ms(done.done_at), done.sync_state.value),
            )
            return True

    def _update_done_sync_state(self, entry_id: str, day: date, state: SyncState) -> None:
        with self._connection() as conn:
            conn.execute(
                "UPDATE done_entries SET sync_state = ? WHERE entry_id = ? AND entry_date = ?",
                (state.value, entry_id, day.isoformat()),
            )

    def _list_pending_done(self) -> list[DoneEntry]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM done_entries WHERE sync_state = ? ORDER BY done_at ASC",
                (SyncState.PENDING.value,),
            ).fetchall()
            return [self._row_to_done(r) for r in rows]

    def _list_done_entries(self, entry_id: str) -> list[DoneEntry]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM done_entries WHERE entry_id = ? ORDER BY entry_date DESC",
                (entry_id,),
            ).fetchall()
            return [self._row_to_done(r) for r in rows]

    # ---- public API ----

    async def count_entries(self) -> int:
        return await self._read(self._count_entries)

    async def get_by_id(self, entry_id: str) -> StoredEntry | None:
        return await self._read(self._get_by_id, entry_id)

    async def get_all_by_type(self, entry_type: EntryType) -> list[StoredEntry]:
        return await self._read(self._get_all_by_type, entry_type)

    async def insert_or_replace(self, entry: Entry, sync_state: SyncState = SyncState.PENDING) -> None:
        """Unconditional write (local user edits). The variant of an existing id must match."""
        await self._write(self._insert_or_replace, entry, sync_state)

    async def upsert_if_newest(self, entry: Entry, sync_state: SyncState = SyncState.SYNCED) -> bool:
        """
        Write `entry` only if it is strictly newer than the stored copy.

        Returns True if the row was written. Equal timestamps are a no-op, which
        makes repeated application of the same update idempotent.
        """
        return await self._write(self._upsert_if_newest, entry, sync_state)

    async def update_sync_state(
        self,
        entry_id: str,
        state: SyncState,
        *,
        expected_updated_at: Any = None,
    ) -> bool:
        """
        Set the sync state of one entry.

        With expected_updated_at, the row is only touched if it still carries that
        updated_at; a row edited since then keeps its state. Returns True if a row
        was updated.
        """
        guarded = expected_updated_at is not None
        expected_ms = to_epoch_ms(expected_updated_at) if guarded else None
        return await self._write(self._update_sync_state, entry_id, state, expected_ms, guarded)

    async def update_sync_metadata(self, entry: Entry, state: SyncState) -> None:
        """Rewrite the mutable columns of an existing row; raises EntryNotFoundError if it is gone."""
        await self._write(self._update_sync_metadata, entry, state)

    async def delete(self, entry_id: str) -> None:
        await self._write(self._delete, entry_id)

    async def list_pending(self) -> list[StoredEntry]:
        return await self._read(self._list_pending)

    async def list_visible_on(self, day: date) -> list[Entry]:
        return await self._read(self._list_visible_on, day)

    async def save_deleted_entry(self, deleted: DeletedEntry) -> None:
        await self._write(self._save_deleted_entry, deleted)

    async def get_deleted_entry(self, entry_id: str) -> DeletedEntry | None:
        return await self._read(self._get_deleted_entry, entry_id)

    async def update_deleted_sync_state(self, entry_id: str, state: SyncState) -> None:
        await self._write(self._update_deleted_sync_state, entry_id, state)

    async def purge_deleted_entry(self, entry_id: str) -> None:
        await self._write(self._purge_deleted_entry, entry_id)

    async def list_pending_deleted(self) -> list[DeletedEntry]:
        return await self._read(self._list_pending_deleted)

    async def list_deleted_ids(self) -> set[str]:
        """Ids of every local tombstone, whatever its sync state."""
        return await self._read(self._list_deleted_ids)

    async def insert_done_entry(self, done: DoneEntry) -> None:
        await self._write(self._insert_done_entry, done)

    async def delete_done_entry(self, entry_id: str, day: date) -> None:
        await self._write(self._delete_done_entry, entry_id, day)

    async def get_done_entry(self, entry_id: str, day: date) -> DoneEntry | None:
        return await self._read(self._get_done_entry, entry_id, day)

    async def upsert_done_entry_if_oldest(self, done: DoneEntry) -> bool:
        return await self._write(self._upsert_done_entry_if_oldest, done)

    async def update_done_sync_state(self, entry_id: str, day: date, state: SyncState) -> None:
        await self._write(self._update_done_sync_state, entry_id, day, state)

    async def list_pending_done(self) -> list[DoneEntry]:
        return await self._read(self._list_pending_done)

    async def list_done_entries(self, entry_id: str) -> list[DoneEntry]:
        """Completion records of one entry, newest day first."""
        return await self._read(self._list_done_entries, entry_id)

    async def run_transactional(self, unit_of_work: Callable[[], Awaitable[T]]) -> T:
        """
        Run unit_of_work() as one all-or-nothing transaction.

        Every store call made while it runs joins the same connection. The
        transaction commits when unit_of_work returns and rolls back on any
        exception, cancellation included. The connection is always closed.
        Nested calls join the outer transaction.
        """
        if _tx_conn.get() is not None:
            return await unit_of_work()

        conn = await asyncio.to_thread(self._begin)
        token = _tx_conn.set(conn)
        try:
            result = await unit_of_work()
            await asyncio.to_thread(conn.commit)
        except BaseException:
            with contextlib.suppress(sqlite3.Error):
                conn.rollback()
            raise
        finally:
            _tx_conn.reset(token)
            conn.close()

        self._notifier.notify()
        return result

    def _begin(self) -> sqlite3.Connection:
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except Exception:
            conn.close()
            raise
        return conn

    async def stream_visible_on(self, day: date) -> AsyncIterator[list[Entry]]:
        """Live view: yields the visible entries now and again after every local change."""
        sub = self._notifier.subscribe()
        try:
            while True:
                yield await self.list_visible_on(day)
                await sub.wait()
        finally:
            sub.cancel()

    async def stream_pending(self) -> AsyncIterator[list[StoredEntry]]:
        sub = self._notifier.subscribe()
        try:
            while True:
                yield await self.list_pending()
                await sub.wait()
        finally:
            sub.cancel()
