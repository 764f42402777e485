# src/trackmate/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store/remote/engine/scheduler),
- starts and stops the background sync work.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..config import get_settings
from ..core.clock import SystemClock
from ..core.ports import RemoteEntryApi
from ..core.state import AppState
from ..entries.reminders import LoggingReminderScheduler
from ..entries.repository import EntryRepository
from ..entries.store import EntryStore
from ..entries.tracking import TrackingEntryStore
from ..remote.api import HttpEntryApi, build_timeout
from ..remote.offline import OfflineEntryApi
from ..sync.classifier import default_sync_classifier
from ..sync.engine import EntrySyncEngine
from ..sync.scheduler import EntrySyncScheduler, ExponentialBackoffPolicy, run_sync_loop

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.entries_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.log_dir.mkdir(parents=True, exist_ok=True)


def _build_remote(settings) -> RemoteEntryApi:
    if not getattr(settings, "remote_base_url", None):
        logger.info("No remote configured; running offline (entries stay pending).")
        return OfflineEntryApi()
    try:
        return HttpEntryApi(
            settings.remote_base_url,
            user_id=settings.user_id,
            api_key=settings.api_key,
            timeout=build_timeout(settings.connect_timeout_seconds, settings.read_timeout_seconds),
        )
    except Exception:
        # Fallback for local runs with a broken remote configuration.
        logger.exception("Remote API setup failed; running offline.")
        return OfflineEntryApi()


def create_initial_state(*, settings=None, remote: RemoteEntryApi | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings (and the remote) injectable makes the app easier to test.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    clock = SystemClock()
    store = EntryStore(settings.entries_db_path)
    tracking = TrackingEntryStore(store, clock)
    remote_api = remote if remote is not None else _build_remote(settings)
    classifier = default_sync_classifier()
    reminders = LoggingReminderScheduler()

    engine = EntrySyncEngine(
        tracking,
        remote_api,
        classifier,
        clock,
        reminders=reminders,
        concurrency=settings.sync_concurrency,
    )
    scheduler = EntrySyncScheduler(
        engine,
        ExponentialBackoffPolicy(settings.retry_initial_delay_seconds, settings.retry_max_delay_seconds),
        max_attempts=settings.sync_max_attempts,
    )
    repository = EntryRepository(
        tracking,
        engine,
        classifier,
        clock,
        trigger=scheduler,
        reminders=reminders,
    )

    return AppState(
        settings=settings,
        clock=clock,
        store=store,
        tracking=tracking,
        remote=remote_api,
        classifier=classifier,
        engine=engine,
        scheduler=scheduler,
        reminders=reminders,
        repository=repository,
    )


def start_background_sync(state: AppState) -> asyncio.Task[None]:
    """Start the periodic pull/push loop. Must be called from a running event loop."""
    interval = float(getattr(state.settings, "sync_interval_seconds", 300.0))
    task = asyncio.create_task(run_sync_loop(state.engine, interval_seconds=interval), name="sync-loop")
    state.background_tasks.append(task)
    logger.info("Background sync started (every %.0fs).", interval)
    return task


async def shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    for task in state.background_tasks:
        task.cancel()
    for task in state.background_tasks:
        with contextlib.suppress(asyncio.CancelledError):
            try:
                await task
            except Exception:
                logger.exception("Background task %s failed.", task.get_name())
    state.background_tasks.clear()

    try:
        await state.scheduler.aclose()
    except Exception:
        logger.exception("Sync scheduler shutdown failed.")

    aclose = getattr(state.remote, "aclose", None)
    if aclose is not None:
        try:
            await aclose()
        except Exception:
            logger.debug("Remote client close failed.", exc_info=True)

    state.store.close()
