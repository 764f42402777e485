# src/trackmate/core/clock.py

from __future__ import annotations

from datetime import date, datetime, time, timezone


class SystemClock:
    """
    Wall clock in UTC, truncated to milliseconds.

    Instants are persisted as epoch milliseconds, so truncating here keeps
    in-memory values equal to what a round trip through the store returns.
    """

    def now(self) -> datetime:
        ts = datetime.now(timezone.utc)
        return ts.replace(microsecond=(ts.microsecond // 1000) * 1000)

    def today(self) -> date:
        return self.now().astimezone().date()

    def local_time(self) -> time:
        return self.now().astimezone().time()


def to_epoch_ms(ts: datetime | None) -> int | None:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(round(ts.timestamp() * 1000))


def from_epoch_ms(raw: int | float | None) -> datetime | None:
    if raw is None:
        return None
    return datetime.fromtimestamp(int(raw) / 1000.0, tz=timezone.utc)
