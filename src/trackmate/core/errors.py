# src/trackmate/core/errors.py

from __future__ import annotations


class TrackmateError(Exception):
    pass


class EntryNotFoundError(TrackmateError):
    def __init__(self, entry_id: str, what: str = "entry") -> None:
        self.entry_id = entry_id
        super().__init__(f"Invalid or missing {what} with id {entry_id}")


class EntryTypeChangedError(TrackmateError):
    """An id keeps its variant (task/habit) for its whole lifetime."""

    def __init__(self, entry_id: str, stored: str, incoming: str) -> None:
        self.entry_id = entry_id
        super().__init__(f"entry {entry_id} is a {stored}, refusing to store it as {incoming}")


class MalformedEntryError(TrackmateError):
    pass


class RemoteApiError(TrackmateError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RemoteAuthError(RemoteApiError):
    pass


class RemoteUnavailableError(RemoteApiError):
    pass
