# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from trackmate.entries.repository import EntryRepository
from trackmate.entries.store import EntryStore
from trackmate.entries.tracking import TrackingEntryStore
from trackmate.sync.classifier import SyncErrorClassifier, default_sync_classifier
from trackmate.sync.engine import EntrySyncEngine

from .fakes import FakeClock, FakeEntryApi, RecordingReminderScheduler, RecordingTrigger


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Settings stand-in for create_initial_state(): offline, tmp paths, fast retries.

    Not read from the environment, so a developer's TRACKMATE_* variables or
    .env never leak into tests.
    """
    return SimpleNamespace(
        app_name="trackmate-test",
        log_level="DEBUG",
        console_enabled=False,
        data_dir=tmp_path,
        entries_db_path=tmp_path / "entries.sqlite3",
        log_dir=tmp_path / "logs",
        remote_base_url=None,
        api_key=None,
        user_id=None,
        connect_timeout_seconds=1.0,
        read_timeout_seconds=1.0,
        sync_interval_seconds=60.0,
        sync_concurrency=2,
        retry_initial_delay_seconds=0.01,
        retry_max_delay_seconds=0.02,
        sync_max_attempts=3,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(tmp_path: Path) -> EntryStore:
    """Real SQLite store: its correctness is part of what we want to test."""
    return EntryStore(tmp_path / "entries.sqlite3")


@pytest.fixture()
def tracking(store: EntryStore, clock: FakeClock) -> TrackingEntryStore:
    return TrackingEntryStore(store, clock)


@pytest.fixture()
def remote() -> FakeEntryApi:
    return FakeEntryApi()


@pytest.fixture()
def classifier() -> SyncErrorClassifier:
    return default_sync_classifier()


@pytest.fixture()
def reminders() -> RecordingReminderScheduler:
    return RecordingReminderScheduler()


@pytest.fixture()
def trigger() -> RecordingTrigger:
    return RecordingTrigger()


@pytest.fixture()
def engine(
    tracking: TrackingEntryStore,
    remote: FakeEntryApi,
    classifier: SyncErrorClassifier,
    clock: FakeClock,
    reminders: RecordingReminderScheduler,
) -> EntrySyncEngine:
    return EntrySyncEngine(tracking, remote, classifier, clock, reminders=reminders, concurrency=2)


@pytest.fixture()
def repository(
    tracking: TrackingEntryStore,
    engine: EntrySyncEngine,
    classifier: SyncErrorClassifier,
    clock: FakeClock,
    trigger: RecordingTrigger,
    reminders: RecordingReminderScheduler,
) -> EntryRepository:
    return EntryRepository(tracking, engine, classifier, clock, trigger=trigger, reminders=reminders)
