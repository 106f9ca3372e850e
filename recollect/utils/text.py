"""Small text helpers for ingestion and display."""

import re
import time
from typing import Iterable, Optional

_WS_RE = re.compile(r"\s+")

# (divisor, suffix) ladder: seconds -> minutes -> hours -> days -> weeks -> months -> years
_TIME_UNITS: list[tuple[float, str]] = [
    (60, "s"),
    (60, "m"),
    (24, "h"),
    (7, "d"),
    (4.348, "w"),
    (12, "mo"),
    (float("inf"), "y"),
]


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def embedding_payload(title: str, site: str, body: str, limit: int = 1000) -> str:
    """Text that represents a page for embedding: title, site, then body."""
    return f"{title} • {site} • {(body or '')[:limit]}"


def compile_patterns(patterns: Iterable[str]) -> list[re.Pattern[str]]:
    """Compile exclusion patterns case-insensitively.

    Invalid regular expressions are matched as literal text instead.
    """
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error:
            compiled.append(re.compile(re.escape(pattern), re.IGNORECASE))
    return compiled


def is_excluded(url: str, host: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    return any(p.search(host) or p.search(url) for p in patterns)


def time_ago(ts: int, now_ms: Optional[int] = None) -> str:
    """Human readable age of a millisecond timestamp, e.g. '3h ago'."""
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    val = max(1, (now - ts) // 1000)
    i = 0
    while i < len(_TIME_UNITS) - 1 and val >= _TIME_UNITS[i][0]:
        val = int(val // _TIME_UNITS[i][0])
        i += 1
    return f"{val}{_TIME_UNITS[i][1]} ago"
