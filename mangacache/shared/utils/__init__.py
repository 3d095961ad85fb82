"""Shared utilities: UTC time, HTTP dates and canonical hashing."""

from mangacache.shared.utils.datetime import (
    http_date,
    now_ms,
    parse_http_date,
    utc_now,
)
from mangacache.shared.utils.hashing import (
    canonical_json,
    content_hash,
    etag_matches,
    quote_etag,
    stable_hash,
)

__all__ = [
    "canonical_json",
    "content_hash",
    "etag_matches",
    "http_date",
    "now_ms",
    "parse_http_date",
    "quote_etag",
    "stable_hash",
    "utc_now",
]
