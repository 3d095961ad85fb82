"""
UTC datetime utilities for consistent timezone handling.

All datetime values in the system should be timezone-aware UTC.
Cache envelopes store epoch milliseconds (now_ms); HTTP validators use HTTP-dates.
"""

import time
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime


def utc_now() -> datetime:
    """
    Return the current UTC datetime with timezone info.

    Use this instead of datetime.now() (naive, local time) or
    datetime.utcnow() (naive, deprecated in Python 3.12).

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(UTC)


def now_ms() -> int:
    """Return the current Unix time in milliseconds (wall clock)."""
    return time.time_ns() // 1_000_000


def http_date(dt: datetime) -> str:
    """Format a datetime as an RFC 7231 HTTP-date (for Last-Modified)."""
    return dt.astimezone(UTC).strftime("%a, %d %b %Y %H:%M:%S GMT")


def parse_http_date(value: str | None) -> datetime | None:
    """Parse an HTTP-date header (If-Modified-Since); None when absent or malformed."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
