# src/trackmate/core/state.py

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from ..entries.reminders import LoggingReminderScheduler
from ..entries.repository import EntryRepository
from ..entries.store import EntryStore
from ..entries.tracking import TrackingEntryStore
from ..sync.engine import EntrySyncEngine
from ..sync.scheduler import EntrySyncScheduler
from .ports import Clock, ErrorClassifier, RemoteEntryApi


@dataclass
class AppState:
    # Store Settings on the state for easy access in commands/connectors.
    settings: Any

    clock: Clock
    store: EntryStore
    tracking: TrackingEntryStore
    remote: RemoteEntryApi
    classifier: ErrorClassifier
    engine: EntrySyncEngine
    scheduler: EntrySyncScheduler
    reminders: LoggingReminderScheduler
    repository: EntryRepository

    background_tasks: list[asyncio.Task[Any]] = field(default_factory=list)
