"""Canonical JSON and content hashes for cache keys and validators."""

import hashlib
import json
from typing import Any


def canonical_json(data: Any) -> str:
    """Canonical JSON for deterministic hashing.

    Object keys are sorted at every depth, so two query shapes that differ
    only in field order serialize identically.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def stable_hash(data: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of data."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest of raw bytes (strong validator)."""
    return hashlib.sha256(data).hexdigest()


def quote_etag(digest: str) -> str:
    """Wrap a digest in double quotes as required for a strong ETag."""
    return f'"{digest}"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """Weak comparison of an If-None-Match header against a quoted ETag."""
    if not if_none_match:
        return False
    candidates = {c.strip().removeprefix("W/") for c in if_none_match.split(",")}
    return "*" in candidates or etag in candidates
