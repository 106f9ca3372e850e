"""Read browsing history from a Chromium profile's `History` database."""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

# Chromium stores visit times as microseconds since 1601-01-01 UTC.
_WEBKIT_EPOCH_OFFSET_US = 11_644_473_600 * 1_000_000


@dataclass
class HistoryEntry:
    """One history row: the most recent visit of a URL."""

    url: Optional[str]
    title: Optional[str]
    last_visit_ms: Optional[int]


class HistorySource(Protocol):
    """Protocol for history providers used by backfill."""

    def entries(
        self, start_ms: int, end_ms: int, max_results: int = 5000
    ) -> list[HistoryEntry]:
        ...


def webkit_to_unix_ms(value: int) -> int:
    return (int(value) - _WEBKIT_EPOCH_OFFSET_US) // 1000


def unix_ms_to_webkit(value: int) -> int:
    return int(value) * 1000 + _WEBKIT_EPOCH_OFFSET_US


def default_history_path() -> Path:
    """Default Chrome profile History file for this platform."""
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "Google" / "Chrome" / "Default" / "History"
    if sys.platform.startswith("win"):
        local = Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local"))
        return local / "Google" / "Chrome" / "User Data" / "Default" / "History"
    return home / ".config" / "google-chrome" / "Default" / "History"


class ChromeHistorySource:
    """History source backed by a copy of a Chromium History file.

    The browser keeps the live file locked, so each read works on a
    temporary copy.
    """

    def __init__(self, history_path: Optional[Path] = None) -> None:
        self._path = Path(history_path) if history_path else default_history_path()

    @property
    def path(self) -> Path:
        return self._path

    def entries(
        self, start_ms: int, end_ms: int, max_results: int = 5000
    ) -> list[HistoryEntry]:
        """Return entries last visited within [start_ms, end_ms], newest first.

        Raises:
            FileNotFoundError: The History file does not exist.
        """
        if not self._path.exists():
            raise FileNotFoundError(f"History file not found: {self._path}")

        with tempfile.TemporaryDirectory(prefix="recollect-history-") as tmp:
            copy = Path(tmp) / "History"
            shutil.copy2(self._path, copy)
            conn = sqlite3.connect(copy)
            conn.row_factory = sqlite3.Row
            try:
                rows = conn.execute(
                    """
                    SELECT url, title, last_visit_time FROM urls
                    WHERE last_visit_time BETWEEN ? AND ?
                    ORDER BY last_visit_time DESC
                    LIMIT ?
                    """,
                    (unix_ms_to_webkit(start_ms), unix_ms_to_webkit(end_ms), max_results),
                ).fetchall()
            finally:
                conn.close()

        logger.debug("Read %d history rows from %s", len(rows), self._path)
        return [
            HistoryEntry(
                url=row["url"] or None,
                title=row["title"] or None,
                last_visit_ms=(
                    webkit_to_unix_ms(row["last_visit_time"])
                    if row["last_visit_time"]
                    else None
                ),
            )
            for row in rows
        ]
