"""Tests for application logging setup."""

import logging
from pathlib import Path
from typing import Any

import pytest

from recollect.main import (
    CONSOLE_HANDLER_NAME,
    FILE_HANDLER_NAME,
    set_console_level,
    setup_logging,
)


@pytest.fixture
def clean_root_logger(tmp_path: Path, monkeypatch: Any):
    """Point the log file at tmp_path and restore the root logger afterwards."""
    monkeypatch.setenv("RECOLLECT_LOG_FILE", str(tmp_path / "logs" / "recollect.log"))
    monkeypatch.setenv("RECOLLECT_LOG_LEVEL", "WARNING")
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in saved_handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(saved_level)


def _named(root: logging.Logger, name: str) -> list[logging.Handler]:
    return [h for h in root.handlers if h.get_name() == name]


def test_setup_logging_installs_handlers_once(clean_root_logger: logging.Logger, tmp_path: Path) -> None:
    setup_logging()
    setup_logging()

    assert len(_named(clean_root_logger, FILE_HANDLER_NAME)) == 1
    assert len(_named(clean_root_logger, CONSOLE_HANDLER_NAME)) == 1
    assert (tmp_path / "logs" / "recollect.log").exists()
    assert clean_root_logger.level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_set_console_level_lowers_console_and_root(clean_root_logger: logging.Logger) -> None:
    setup_logging()

    set_console_level(logging.INFO)

    (console,) = _named(clean_root_logger, CONSOLE_HANDLER_NAME)
    assert console.level == logging.INFO
    assert clean_root_logger.level == logging.INFO
