# src/trackmate/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time; without a remote URL the app runs offline.
- Real environment variables always win over .env values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TRACKMATE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_optional(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    entries_db_path: Path
    log_dir: Path

    # ---- Remote document store ----
    remote_base_url: str | None
    api_key: str | None
    user_id: str | None
    connect_timeout_seconds: float
    read_timeout_seconds: float

    # ---- Sync ----
    sync_interval_seconds: float
    sync_concurrency: int
    retry_initial_delay_seconds: float
    retry_max_delay_seconds: float
    sync_max_attempts: int

    @property
    def remote_enabled(self) -> bool:
        return bool(self.remote_base_url)

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "trackmate").strip() or "trackmate"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/trackmate"))
        entries_db_path = _env_path(_k("ENTRIES_DB_PATH"), data_dir / "entries.sqlite3")
        log_dir = _env_path(_k("LOG_DIR"), data_dir)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            entries_db_path=entries_db_path,
            log_dir=log_dir,
            remote_base_url=_env_optional(_k("REMOTE_URL")),
            api_key=_env_optional(_k("API_KEY")),
            user_id=_env_optional(_k("USER_ID")),
            connect_timeout_seconds=_env_float(_k("CONNECT_TIMEOUT_SECONDS"), 5.0),
            read_timeout_seconds=_env_float(_k("READ_TIMEOUT_SECONDS"), 20.0),
            sync_interval_seconds=_env_float(_k("SYNC_INTERVAL_SECONDS"), 300.0),
            sync_concurrency=max(1, _env_int(_k("SYNC_CONCURRENCY"), 4)),
            retry_initial_delay_seconds=_env_float(_k("RETRY_INITIAL_DELAY_SECONDS"), 2.0),
            retry_max_delay_seconds=_env_float(_k("RETRY_MAX_DELAY_SECONDS"), 300.0),
            sync_max_attempts=max(1, _env_int(_k("SYNC_MAX_ATTEMPTS"), 5)),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings; .env is read on first use (never overriding real env)."""
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(override=False)
        _SETTINGS = Settings.from_env()
    return _SETTINGS
