# src/trackmate/logging_setup.py

"""
Logging for the trackmate CLI.

The console shows what the user is doing. The file keeps everything, background
sync passes included, and rotates because the sync loop runs for as long as the
CLI stays open.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

LOG_FILE_NAME = "trackmate.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Lowest level a logger family needs to reach the console. First match wins;
# anything not listed (httpx, py.warnings, ...) needs ERROR.
CONSOLE_FLOORS: tuple[tuple[str, int], ...] = (
    ("trackmate.sync.", logging.WARNING),
    ("trackmate.remote.", logging.WARNING),
    ("trackmate.", logging.NOTSET),
)

# Set on the library loggers themselves, so they bound the file too.
LIBRARY_LEVELS: dict[str, int] = {
    "httpx": logging.INFO,  # one line per request
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
}

_OWNED = "_trackmate_handler"


def console_floor(logger_name: str) -> int:
    dotted = f"{logger_name}."
    for prefix, floor in CONSOLE_FLOORS:
        if dotted.startswith(prefix):
            return floor
    return logging.ERROR


class _ConsoleFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= console_floor(record.name)


def _console_handler(level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(_ConsoleFilter())
    return handler


def _file_handler(
        path: Path,
        level: int,
        formatter: logging.Formatter,
        *,
        max_bytes: int,
        backup_count: int,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
        *,
        log_dir: str | Path = ".local/trackmate",
        console_level: int = logging.INFO,
        file_level: int = logging.DEBUG,
        max_bytes: int = 2_000_000,
        backup_count: int = 3,
) -> Path:
    """
    Route logs to stderr (filtered by CONSOLE_FLOORS) and to a rotating file.

    Calling it again replaces the handlers of the earlier call and leaves
    handlers installed by anyone else alone. Returns the log file path.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / LOG_FILE_NAME

    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, _OWNED, False)]:
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers = (
        _console_handler(console_level, formatter),
        _file_handler(log_file, file_level, formatter, max_bytes=max_bytes, backup_count=backup_count),
    )
    for handler in handlers:
        setattr(handler, _OWNED, True)
        root.addHandler(handler)
    root.setLevel(min(console_level, file_level))

    logging.captureWarnings(True)
    for name, level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).debug("Logging to %s", log_file)
    return log_file
