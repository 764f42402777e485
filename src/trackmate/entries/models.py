# src/trackmate/entries/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from datetime import time as dtime
from enum import StrEnum


class SyncState(StrEnum):
    """
    Per-row sync lifecycle.

    pending -> synced   after a confirmed push
    pending -> pending  on a transient failure (retried by a later trigger)
    pending -> failed   on a permanent failure (terminal, never retried automatically)
    """

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> SyncState:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class EntryType(StrEnum):
    TASK = "task"
    HABIT = "habit"


class Recurrence(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"
    NONE = "none"

    @classmethod
    def parse(cls, raw: str | None) -> Recurrence:
        if not raw:
            return cls.NONE
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.NONE


class Reminder(StrEnum):
    NONE = "none"
    ON_TIME = "on_time"
    FIVE_MINUTES_EARLY = "five_minutes_early"
    THIRTY_MINUTES_EARLY = "thirty_minutes_early"
    ONE_HOUR_EARLY = "one_hour_early"
    ON_DAY = "on_day"
    DAY_EARLY = "day_early"
    TWO_DAYS_EARLY = "two_days_early"
    THREE_DAYS_EARLY = "three_days_early"

    @property
    def offset(self) -> timedelta:
        return _REMINDER_OFFSETS[self]

    @classmethod
    def parse(cls, raw: str | None) -> Reminder | None:
        if not raw:
            return None
        try:
            return cls(raw)
        except ValueError:
            return None


_REMINDER_OFFSETS = {
    Reminder.NONE: timedelta(0),
    Reminder.ON_TIME: timedelta(0),
    Reminder.FIVE_MINUTES_EARLY: timedelta(minutes=5),
    Reminder.THIRTY_MINUTES_EARLY: timedelta(minutes=30),
    Reminder.ONE_HOUR_EARLY: timedelta(hours=1),
    Reminder.ON_DAY: timedelta(0),
    Reminder.DAY_EARLY: timedelta(days=1),
    Reminder.TWO_DAYS_EARLY: timedelta(days=2),
    Reminder.THREE_DAYS_EARLY: timedelta(days=3),
}


@dataclass(frozen=True, slots=True, kw_only=True)
class Entry:
    """Fields shared by every entry variant. Not stored on its own."""

    id: str
    title: str
    description: str = ""
    is_done: bool = False
    time: dtime | None = None
    created_at: datetime
    updated_at: datetime | None = None
    reminder: Reminder | None = None

    @property
    def entry_type(self) -> EntryType:
        raise NotImplementedError


@dataclass(frozen=True, slots=True, kw_only=True)
class Task(Entry):
    due_date: date

    @property
    def entry_type(self) -> EntryType:
        return EntryType.TASK


@dataclass(frozen=True, slots=True, kw_only=True)
class Habit(Entry):
    start_date: date
    recurrence: Recurrence = Recurrence.NONE
    streak_count: int | None = None
    last_completed_date: datetime | None = None

    @property
    def entry_type(self) -> EntryType:
        return EntryType.HABIT

    def applies_to(self, day: date) -> bool:
        if day < self.start_date:
            return False
        if self.recurrence == Recurrence.DAILY:
            return True
        if self.recurrence == Recurrence.WEEKLY:
            return day.weekday() == self.start_date.weekday()
        return day == self.start_date

    def next_occurrence(self, on_or_after: date) -> date | None:
        """First day >= on_or_after this habit applies to (None if it never will again)."""
        day = max(on_or_after, self.start_date)
        if self.recurrence == Recurrence.DAILY:
            return day
        if self.recurrence == Recurrence.WEEKLY:
            delta = (self.start_date.weekday() - day.weekday()) % 7
            return day + timedelta(days=delta)
        return self.start_date if self.start_date >= on_or_after else None


@dataclass(frozen=True, slots=True)
class StoredEntry:
    """An entry as the local store holds it: the entry plus its sync state."""

    entry: Entry
    sync_state: SyncState

    @property
    def id(self) -> str:
        return self.entry.id


@dataclass(frozen=True, slots=True)
class DoneEntry:
    id: str
    date: date
    done_at: datetime
    sync_state: SyncState = field(default=SyncState.PENDING, compare=False)


@dataclass(frozen=True, slots=True)
class DeletedEntry:
    id: str
    deleted_at: datetime
    sync_state: SyncState = field(default=SyncState.PENDING, compare=False)


def next_streak(habit: Habit, day: date) -> int:
    """
    Streak after completing `habit` on `day`.

    - last completion the day before -> streak + 1
    - last completion the same day   -> unchanged
    - anything else                  -> 1
    """
    current = habit.streak_count or 0
    last = habit.last_completed_date
    if last is None:
        return 1
    last_day = last.astimezone().date()
    if last_day == day:
        return max(current, 1)
    if (day - last_day).days == 1:
        return current + 1
    return 1
