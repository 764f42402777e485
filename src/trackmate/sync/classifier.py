# src/trackmate/sync/classifier.py

"""
Failure classification.

Every classifier answers one question: may this failure go away on its own
(Transient) or will retrying it fail the same way (Permanent)? Anything not
recognised as transient is permanent, so unknown failures are never retried
forever.
"""

from __future__ import annotations

import sqlite3

import httpx

from ..core.errors import RemoteApiError, RemoteAuthError, RemoteUnavailableError
from ..core.ports import ErrorClassifier
from ..core.result import ErrorType, Permanent, Transient

_TRANSIENT_SQLITE_MARKERS = (
    "locked",
    "busy",
    "timeout",
    "timed out",
    "disk i/o",
    "unable to open",
    "database or disk is full",
)

_TRANSIENT_HTTP_STATUSES = frozenset({408, 429})


class BaseErrorClassifier:
    def is_transient(self, failure: BaseException) -> bool:
        return False

    def classify(self, failure: BaseException) -> ErrorType:
        if self.is_transient(failure):
            return Transient(failure)
        return Permanent(failure)


class DatabaseErrorClassifier(BaseErrorClassifier):
    """Storage contention/timeouts are transient; constraint violations are not."""

    def is_transient(self, failure: BaseException) -> bool:
        if isinstance(failure, sqlite3.IntegrityError):
            return False
        if isinstance(failure, sqlite3.OperationalError):
            msg = str(failure).lower()
            return any(marker in msg for marker in _TRANSIENT_SQLITE_MARKERS)
        return isinstance(failure, TimeoutError)


class NetworkErrorClassifier(BaseErrorClassifier):
    """Connectivity loss, timeouts, 408/429/5xx are transient; auth and 4xx are not."""

    def is_transient(self, failure: BaseException) -> bool:
        if isinstance(failure, RemoteAuthError):
            return False
        if isinstance(failure, RemoteUnavailableError):
            return True
        if isinstance(failure, RemoteApiError):
            code = failure.status_code
            if code is None:
                return False
            return code in _TRANSIENT_HTTP_STATUSES or code >= 500
        if isinstance(failure, httpx.TransportError):
            return True
        return isinstance(failure, (ConnectionError, TimeoutError))


class SyncErrorClassifier(BaseErrorClassifier):
    """Transient if the database classifier or the network classifier says so."""

    def __init__(self, database: ErrorClassifier, network: ErrorClassifier) -> None:
        self._database = database
        self._network = network

    def is_transient(self, failure: BaseException) -> bool:
        if isinstance(self._database.classify(failure), Transient):
            return True
        return isinstance(self._network.classify(failure), Transient)


def default_sync_classifier() -> SyncErrorClassifier:
    return SyncErrorClassifier(DatabaseErrorClassifier(), NetworkErrorClassifier())
