"""External sources: browser history and page text for backfill."""

from .history import ChromeHistorySource, HistoryEntry, HistorySource
from .pages import PageFetcher

__all__ = ["ChromeHistorySource", "HistoryEntry", "HistorySource", "PageFetcher"]
