# tests/test_logging_setup.py

from __future__ import annotations

import logging
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from trackmate.logging_setup import LIBRARY_LEVELS, LOG_FILE_NAME, console_floor, setup_logging


@pytest.fixture()
def root_logging() -> Iterator[logging.Logger]:
    """Undo what setup_logging() does to the process-wide logging state."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    library_levels = {name: logging.getLogger(name).level for name in LIBRARY_LEVELS}
    try:
        yield root
    finally:
        for handler in list(root.handlers):
            if handler not in handlers:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)
        for name, lib_level in library_levels.items():
            logging.getLogger(name).setLevel(lib_level)
        logging.captureWarnings(False)


@pytest.mark.parametrize(
    ("name", "floor"),
    [
        ("trackmate", logging.NOTSET),
        ("trackmate.entries.store", logging.NOTSET),
        ("trackmate.sync", logging.WARNING),
        ("trackmate.sync.scheduler", logging.WARNING),
        ("trackmate.remote.api", logging.WARNING),
        ("trackmatex", logging.ERROR),
        ("httpx", logging.ERROR),
        ("py.warnings", logging.ERROR),
    ],
)
def test_console_floor(name: str, floor: int) -> None:
    assert console_floor(name) == floor


def test_file_gets_everything_console_gets_the_user_facing_part(
    tmp_path: Path, root_logging: logging.Logger, capsys: pytest.CaptureFixture[str]
) -> None:
    log_file = setup_logging(log_dir=tmp_path / "logs")

    logging.getLogger("trackmate.sync.scheduler").info("retrying t1")
    logging.getLogger("trackmate.cli.commands").info("task added")
    logging.getLogger("trackmate.sync.engine").warning("sync t1 failed")
    logging.getLogger("httpx").warning("pool is full")
    for handler in root_logging.handlers:
        handler.flush()

    assert log_file == tmp_path / "logs" / LOG_FILE_NAME
    written = log_file.read_text(encoding="utf-8")
    assert "INFO trackmate.sync.scheduler: retrying t1" in written
    assert "WARNING httpx: pool is full" in written

    console = capsys.readouterr().err
    assert "task added" in console
    assert "sync t1 failed" in console
    assert "retrying t1" not in console
    assert "pool is full" not in console


def test_setup_logging_again_replaces_its_own_handlers(tmp_path: Path, root_logging: logging.Logger) -> None:
    before = len(root_logging.handlers)

    setup_logging(log_dir=tmp_path)
    setup_logging(log_dir=tmp_path, console_level=logging.WARNING)

    assert len(root_logging.handlers) == before + 2
    assert len([h for h in root_logging.handlers if isinstance(h, RotatingFileHandler)]) == 1
    assert logging.getLogger("httpcore").level == logging.WARNING
