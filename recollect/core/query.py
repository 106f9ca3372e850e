"""Query filter parsing: `site:`, `before:` and `after:` tokens plus free text."""

import re
from datetime import date, datetime, time, timezone

from recollect.models import QueryFilter

_SITE_RE = re.compile(r"\bsite:(\S+)", re.IGNORECASE)
_BEFORE_RE = re.compile(r"\bbefore:(\d{4}-\d{2}-\d{2})", re.IGNORECASE)
_AFTER_RE = re.compile(r"\bafter:(\d{4}-\d{2}-\d{2})", re.IGNORECASE)

_END_OF_DAY = time(23, 59, 59, 999000)


def _calendar_date(year: int, month: int, day: int) -> date:
    """Build a date, rolling out-of-range months and days over.

    2024-13-01 becomes 2025-01-01 and 2024-02-30 becomes 2024-03-01, so
    malformed dates never raise.
    """
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    year = min(max(year, date.min.year), date.max.year)
    ordinal = date(year, month, 1).toordinal() + day - 1
    return date.fromordinal(min(max(ordinal, 1), date.max.toordinal()))


def date_to_ts(ymd: str, end_of_day: bool = False) -> int:
    """Local-time millisecond timestamp for a YYYY-MM-DD string.

    Args:
        ymd: Date string as matched by the token patterns.
        end_of_day: Use 23:59:59.999 instead of midnight.
    """
    y, m, d = (int(part) for part in ymd.split("-"))
    day = _calendar_date(y, m, d)
    moment = datetime.combine(day, _END_OF_DAY if end_of_day else time.min)
    try:
        seconds = moment.timestamp()
    except (OverflowError, OSError):
        # outside the platform mktime range; treat as UTC
        seconds = moment.replace(tzinfo=timezone.utc).timestamp()
    return round(seconds * 1000)


def parse_query(raw: str) -> QueryFilter:
    """Split a raw query into structured filters and residual text.

    Each token type is removed everywhere it occurs; when a token appears
    more than once the last occurrence wins.

    Example:
        >>> parse_query("site:Example.com after:2024-01-01 machine learning").site
        'example.com'
    """
    f = QueryFilter()
    text = (raw or "").strip()

    def _site(m: re.Match) -> str:
        f.site = m.group(1).lower()
        return ""

    def _before(m: re.Match) -> str:
        f.before_ts = date_to_ts(m.group(1), end_of_day=True)
        return ""

    def _after(m: re.Match) -> str:
        f.after_ts = date_to_ts(m.group(1))
        return ""

    text = _SITE_RE.sub(_site, text)
    text = _BEFORE_RE.sub(_before, text)
    text = _AFTER_RE.sub(_after, text)

    f.text = text.strip()
    return f
