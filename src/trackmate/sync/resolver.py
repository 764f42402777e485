# src/trackmate/sync/resolver.py

"""
Last-writer-wins merge policy.

An incoming copy of an entry replaces the stored one only when its updated_at is
strictly newer. A missing updated_at counts as the epoch. Equal timestamps keep
the stored row, so applying the same update twice changes nothing the second time.
"""

from __future__ import annotations

from datetime import datetime, timezone

from ..entries.models import DoneEntry, Entry

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _stamp(ts: datetime | None) -> datetime:
    if ts is None:
        return EPOCH
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def should_replace(current: Entry | None, candidate: Entry) -> bool:
    if current is None:
        return True
    return _stamp(candidate.updated_at) > _stamp(current.updated_at)


def should_replace_done(current: DoneEntry | None, candidate: DoneEntry) -> bool:
    """Completion records keep the earliest done_at seen for (id, date)."""
    if current is None:
        return True
    return _stamp(candidate.done_at) < _stamp(current.done_at)
