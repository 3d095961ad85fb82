"""Cache key builders: layout, separator validation, canonical hashing."""

import pytest

from mangacache.infrastructure.cache.keys import (
    http_key,
    image_key,
    image_tag,
    query_key,
    tag_from_key,
    tag_key,
)


def test_image_key_layout() -> None:
    assert image_key("cover-42", "medium", "webp") == "image:cover-42:medium:webp"
    assert image_tag("cover-42") == "image:cover-42"


@pytest.mark.parametrize("image_id", ["", "a:b"])
def test_image_key_rejects_empty_or_separator(image_id: str) -> None:
    with pytest.raises(ValueError):
        image_key(image_id, "small", "jpeg")


def test_tag_key_round_trip() -> None:
    assert tag_key("manga") == "tag:manga"
    assert tag_from_key(tag_key("image:cover-42")) == "image:cover-42"


def test_tag_key_rejects_empty_tag() -> None:
    with pytest.raises(ValueError):
        tag_key("")


def test_query_key_ignores_field_order() -> None:
    """Shapes differing only in key order map to the same cache key."""
    a = query_key("manga", "find_many", {"where": {"status": "ongoing", "lg": "en"}, "take": 10})
    b = query_key("manga", "find_many", {"take": 10, "where": {"lg": "en", "status": "ongoing"}})
    assert a == b
    assert a.startswith("query:manga:find_many:")
    assert len(a.rsplit(":", 1)[1]) == 64


def test_query_key_differs_by_shape_and_operation() -> None:
    base = query_key("manga", "find_many", {"take": 10})
    assert base != query_key("manga", "find_many", {"take": 11})
    assert base != query_key("manga", "count", {"take": 10})


def test_http_key_hashes_vary_values() -> None:
    a = http_key("manga", {"path": "/api/v1/manga/1", "query": {"lg": "en"}})
    b = http_key("manga", {"query": {"lg": "en"}, "path": "/api/v1/manga/1"})
    assert a == b
    assert a.startswith("http:manga:")
    assert a != http_key("manga", {"path": "/api/v1/manga/1", "query": {"lg": "pt"}})
