# src/trackmate/remote/offline.py

from __future__ import annotations

from ..core.errors import RemoteUnavailableError
from ..entries.models import DeletedEntry, DoneEntry, Entry


class OfflineEntryApi:
    """
    Remote stand-in used when no remote store is configured.

    Behavior:
    - pushes fail with RemoteUnavailableError (transient), so rows stay pending
      and go out once a real remote is configured
    - fetches return nothing
    """

    async def push(self, entry: Entry) -> None:
        raise RemoteUnavailableError("remote sync is not configured (set TRACKMATE_REMOTE_URL)")

    async def fetch_all(self) -> list[Entry]:
        return []

    async def push_deleted(self, deleted: DeletedEntry) -> None:
        raise RemoteUnavailableError("remote sync is not configured (set TRACKMATE_REMOTE_URL)")

    async def fetch_deleted(self) -> list[DeletedEntry]:
        return []

    async def push_done(self, done: DoneEntry) -> None:
        raise RemoteUnavailableError("remote sync is not configured (set TRACKMATE_REMOTE_URL)")

    async def fetch_done(self) -> list[DoneEntry]:
        return []
