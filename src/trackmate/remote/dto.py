# src/trackmate/remote/dto.py

"""
Wire representation of entries, tombstones and completion records.

Documents are flat JSON objects with camelCase keys. Instants travel as epoch
milliseconds, dates as ISO strings, time-of-day as "HH:MM[:SS]".
Missing optional fields take defaults: description "", isDone false,
recurrence "none", type "task".
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any

from ..core.clock import from_epoch_ms, to_epoch_ms
from ..core.errors import MalformedEntryError
from ..entries.models import (
    DeletedEntry,
    DoneEntry,
    Entry,
    EntryType,
    Habit,
    Recurrence,
    Reminder,
    SyncState,
    Task,
)
from ..sync.resolver import EPOCH


def done_document_id(entry_id: str, day: date) -> str:
    return f"{entry_id}_{day.isoformat()}"


def _instant(raw: Any, field_name: str) -> datetime | None:
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise MalformedEntryError(f"{field_name}: expected epoch milliseconds, got {raw!r}")
    try:
        return from_epoch_ms(raw)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedEntryError(f"{field_name}: instant out of range {raw!r}") from e


def _count(raw: Any, field_name: str) -> int | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise MalformedEntryError(f"{field_name}: expected a number, got {raw!r}")
    try:
        return int(raw)
    except (OverflowError, TypeError, ValueError) as e:
        raise MalformedEntryError(f"{field_name}: expected a number, got {raw!r}") from e


def _day(raw: Any, field_name: str) -> date | None:
    if raw in (None, ""):
        return None
    try:
        return date.fromisoformat(str(raw))
    except ValueError as e:
        raise MalformedEntryError(f"{field_name}: invalid date {raw!r}") from e


def _time_of_day(raw: Any) -> time | None:
    if raw in (None, ""):
        return None
    try:
        return time.fromisoformat(str(raw))
    except ValueError as e:
        raise MalformedEntryError(f"time: invalid time of day {raw!r}") from e


def _required_id(doc: Any) -> str:
    if not isinstance(doc, dict):
        raise MalformedEntryError(f"expected an object, got {type(doc).__name__}")
    entry_id = str(doc.get("id") or "").strip()
    if not entry_id:
        raise MalformedEntryError("document has no id")
    return entry_id


def entry_to_doc(entry: Entry) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "id": entry.id,
        "type": entry.entry_type.value,
        "title": entry.title,
        "description": entry.description,
        "isDone": entry.is_done,
        "time": entry.time.isoformat() if entry.time else None,
        "createdAt": to_epoch_ms(entry.created_at),
        "updatedAt": to_epoch_ms(entry.updated_at),
        "reminder": entry.reminder.value if entry.reminder else None,
    }
    if isinstance(entry, Task):
        doc["dueDate"] = entry.due_date.isoformat()
    elif isinstance(entry, Habit):
        doc["startDate"] = entry.start_date.isoformat()
        doc["recurrence"] = entry.recurrence.value
        doc["streakCount"] = entry.streak_count
        doc["lastCompletedDate"] = to_epoch_ms(entry.last_completed_date)
    return doc


def entry_from_doc(doc: dict[str, Any]) -> Entry:
    entry_id = _required_id(doc)
    updated_at = _instant(doc.get("updatedAt"), "updatedAt")
    created_at = _instant(doc.get("createdAt"), "createdAt") or updated_at or EPOCH

    common: dict[str, Any] = {
        "id": entry_id,
        "title": str(doc.get("title") or ""),
        "description": str(doc.get("description") or ""),
        "is_done": bool(doc.get("isDone", False)),
        "time": _time_of_day(doc.get("time")),
        "created_at": created_at,
        "updated_at": updated_at,
        "reminder": Reminder.parse(doc.get("reminder")),
    }

    raw_type = str(doc.get("type") or EntryType.TASK.value).strip().lower()
    if raw_type == EntryType.HABIT:
        return Habit(
            **common,
            start_date=_day(doc.get("startDate"), "startDate") or created_at.date(),
            recurrence=Recurrence.parse(doc.get("recurrence")),
            streak_count=_count(doc.get("streakCount"), "streakCount"),
            last_completed_date=_instant(doc.get("lastCompletedDate"), "lastCompletedDate"),
        )
    if raw_type != EntryType.TASK:
        raise MalformedEntryError(f"entry {entry_id}: unknown type {raw_type!r}")
    return Task(**common, due_date=_day(doc.get("dueDate"), "dueDate") or created_at.date())


def deleted_to_doc(deleted: DeletedEntry) -> dict[str, Any]:
    return {"id": deleted.id, "deletedAt": to_epoch_ms(deleted.deleted_at)}


def deleted_from_doc(doc: dict[str, Any]) -> DeletedEntry:
    entry_id = _required_id(doc)
    deleted_at = _instant(doc.get("deletedAt"), "deletedAt") or EPOCH
    return DeletedEntry(entry_id, deleted_at, SyncState.SYNCED)


def done_to_doc(done: DoneEntry) -> dict[str, Any]:
    return {
        "id": done.id,
        "date": done.date.isoformat(),
        "doneAt": to_epoch_ms(done.done_at),
    }


def done_from_doc(doc: dict[str, Any]) -> DoneEntry:
    entry_id = _required_id(doc)
    day = _day(doc.get("date"), "date")
    if day is None:
        raise MalformedEntryError(f"completion of {entry_id} has no date")
    done_at = _instant(doc.get("doneAt"), "doneAt")
    if done_at is None:
        raise MalformedEntryError(f"completion of {entry_id} has no doneAt")
    return DoneEntry(entry_id, day, done_at, SyncState.SYNCED)
