# src/trackmate/entries/reminders.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from .models import Entry, Habit, Recurrence, Reminder, Task

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_TIME = time(8, 0)

_HABIT_INTERVALS = {
    Recurrence.DAILY: timedelta(days=1),
    Recurrence.WEEKLY: timedelta(days=7),
}


@dataclass(frozen=True, slots=True)
class ReminderPlan:
    delay: timedelta
    interval: timedelta | None = None


def _at(day: date, at_time: time | None, tz: tzinfo | None) -> datetime:
    naive = datetime.combine(day, at_time or DEFAULT_REMINDER_TIME)
    if tz is None:
        return naive.astimezone()
    return naive.replace(tzinfo=tz)


def plan_reminder(entry: Entry, now: datetime, *, tz: tzinfo | None = None) -> ReminderPlan | None:
    """
    When (and how often) to remind about `entry`, relative to `now`.

    Fire time = (day at entry.time, or 08:00) - reminder offset.
    - tasks: day = due_date, one-shot
    - habits: day = next day the habit applies to whose fire time is still ahead;
      repeats every 1 day (daily) / 7 days (weekly), shortened by the offset

    Returns None when there is nothing to schedule (no reminder, or it is in the past).
    `tz` defaults to the local timezone.
    """
    reminder = entry.reminder
    if reminder is None or reminder == Reminder.NONE:
        return None
    offset = reminder.offset

    if isinstance(entry, Task):
        delay = _at(entry.due_date, entry.time, tz) - offset - now
        if delay < timedelta(0):
            return None
        return ReminderPlan(delay=delay)

    if isinstance(entry, Habit):
        local_today = now.astimezone(tz).date()
        day = entry.next_occurrence(local_today)
        while day is not None:
            delay = _at(day, entry.time, tz) - offset - now
            if delay >= timedelta(0):
                interval = _HABIT_INTERVALS.get(entry.recurrence)
                return ReminderPlan(delay=delay, interval=interval - offset if interval else None)
            day = entry.next_occurrence(day + timedelta(days=1))
        return None

    return None


class LoggingReminderScheduler:
    """
    Default reminder capability: remembers and logs what would be scheduled.

    Delivery (notifications, alarms) lives outside this package.
    """

    def __init__(self) -> None:
        self.scheduled: dict[str, ReminderPlan] = {}

    def schedule_reminder(self, entry_id: str, delay: timedelta, interval: timedelta | None = None) -> None:
        self.scheduled[entry_id] = ReminderPlan(delay=delay, interval=interval)
        logger.info("Reminder scheduled entry=%s delay=%s interval=%s", entry_id, delay, interval)

    def cancel_reminder(self, entry_id: str) -> None:
        if self.scheduled.pop(entry_id, None) is not None:
            logger.info("Reminder cancelled entry=%s", entry_id)
