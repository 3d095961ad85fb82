"""Cache key builders. Single place for key format (DRY).

Key components (image ids, resolutions, model names, route types) must not
contain CACHE_KEY_SEP to avoid ambiguous or colliding keys. Query shapes and
request parameters are hashed, so they may contain anything.
"""

from typing import Any

from mangacache.core.constants import (
    CACHE_KEY_SEP,
    CACHE_PREFIX_HTTP,
    CACHE_PREFIX_IMAGE,
    CACHE_PREFIX_QUERY,
    CACHE_PREFIX_TAG,
)
from mangacache.shared.utils.hashing import stable_hash


def _validate_key_component(value: str, name: str) -> None:
    """Raise ValueError if value is empty or contains the cache key separator.

    Args:
        value: String component used in a cache key.
        name: Name of the component (for error message).

    Raises:
        ValueError: If value is empty or contains CACHE_KEY_SEP.
    """
    if not value:
        raise ValueError(f"Cache key component {name!r} must not be empty")
    if CACHE_KEY_SEP in value:
        raise ValueError(
            f"Cache key component {name!r} must not contain separator {CACHE_KEY_SEP!r}"
        )


def _validate_key_components(components: list[tuple[str, str]]) -> None:
    """Validate multiple key components; raise on first invalid one."""
    for value, name in components:
        _validate_key_component(value, name)


def tag_key(tag: str) -> str:
    """Reserved key holding the reverse index (set of cache keys) for a tag."""
    if not tag:
        raise ValueError("Tag must not be empty")
    return f"{CACHE_PREFIX_TAG}{CACHE_KEY_SEP}{tag}"


def tag_from_key(key: str) -> str:
    """Inverse of tag_key()."""
    return key[len(CACHE_PREFIX_TAG) + len(CACHE_KEY_SEP) :]


def tag_pattern() -> str:
    """SCAN pattern matching every tag index key."""
    return f"{CACHE_PREFIX_TAG}{CACHE_KEY_SEP}*"


def image_key(image_id: str, resolution: str, fmt: str) -> str:
    """Cache key for one (resolution, format) variant of an image."""
    _validate_key_components([(image_id, "image_id"), (resolution, "resolution"), (fmt, "format")])
    return (
        f"{CACHE_PREFIX_IMAGE}{CACHE_KEY_SEP}{image_id}{CACHE_KEY_SEP}"
        f"{resolution}{CACHE_KEY_SEP}{fmt}"
    )


def image_tag(image_id: str) -> str:
    """Tag shared by every variant of an image."""
    _validate_key_component(image_id, "image_id")
    return f"{CACHE_PREFIX_IMAGE}{CACHE_KEY_SEP}{image_id}"


def image_pattern() -> str:
    """SCAN pattern matching every image variant entry."""
    return f"{CACHE_PREFIX_IMAGE}{CACHE_KEY_SEP}*"


def query_key(model: str, operation: str, shape: Any) -> str:
    """Cache key for a relational read: model, operation and hashed query shape.

    The shape is hashed from canonical JSON (keys sorted at every depth), so
    {"where": {"a": 1, "b": 2}} and {"where": {"b": 2, "a": 1}} collide.
    """
    _validate_key_components([(model, "model"), (operation, "operation")])
    return (
        f"{CACHE_PREFIX_QUERY}{CACHE_KEY_SEP}{model}{CACHE_KEY_SEP}"
        f"{operation}{CACHE_KEY_SEP}{stable_hash(shape)}"
    )


def http_key(route_type: str, vary: dict[str, Any]) -> str:
    """Cache key for an HTTP response body: route type plus hashed vary-by values."""
    _validate_key_component(route_type, "route_type")
    return f"{CACHE_PREFIX_HTTP}{CACHE_KEY_SEP}{route_type}{CACHE_KEY_SEP}{stable_hash(vary)}"
