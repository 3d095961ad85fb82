"""InMemoryStore: TTL expiry against an injected clock and Redis-like set semantics."""

import pytest

from mangacache.infrastructure.cache.memory_store import InMemoryStore
from mangacache.infrastructure.exceptions import CacheBackendError


async def test_get_set_and_expiry(l1: InMemoryStore, clock) -> None:
    await l1.set("manga:1", b"payload", ttl=10)
    assert await l1.get("manga:1") == b"payload"
    assert await l1.ttl("manga:1") == 10
    clock.advance(9.5)
    assert await l1.exists("manga:1")
    clock.advance(0.5)
    assert await l1.get("manga:1") is None
    assert not await l1.exists("manga:1")
    assert await l1.ttl("manga:1") == -2


async def test_delete_counts_only_live_keys(l1: InMemoryStore) -> None:
    await l1.set("a", b"1", ttl=60)
    await l1.set("b", b"2", ttl=60)
    assert await l1.delete("a", "b", "missing") == 2
    assert await l1.delete("a") == 0


async def test_sets_have_no_ttl_and_vanish_when_empty(l1: InMemoryStore, clock) -> None:
    assert await l1.set_add("tag:manga", "k1", "k2") == 2
    assert await l1.set_add("tag:manga", "k2") == 0
    clock.advance(10**6)
    assert await l1.set_members("tag:manga") == {"k1", "k2"}
    assert await l1.ttl("tag:manga") == -1
    assert await l1.key_type("tag:manga") == "set"
    assert await l1.set_remove("tag:manga", "k1", "k2", "k3") == 2
    assert await l1.key_type("tag:manga") == "none"


async def test_set_add_on_string_key_raises(l1: InMemoryStore) -> None:
    await l1.set("manga:1", b"x", ttl=60)
    with pytest.raises(CacheBackendError):
        await l1.set_add("manga:1", "member")


async def test_scan_and_count_use_glob_patterns(l1: InMemoryStore) -> None:
    for key in ("image:1:small:webp", "image:2:large:png", "query:manga:count:abc"):
        await l1.set(key, b"v", ttl=60)
    assert sorted(await l1.scan_keys("image:*")) == ["image:1:small:webp", "image:2:large:png"]
    assert len(await l1.scan_keys("*", limit=2)) == 2
    assert await l1.count_keys("query:*") == 1
    assert await l1.count_keys("*") == 3


async def test_key_size_and_memory_usage(l1: InMemoryStore) -> None:
    await l1.set("k", b"12345", ttl=60)
    await l1.set_add("tag:t", "k")
    assert await l1.key_size("k") == 6
    assert await l1.key_size("missing") is None
    assert await l1.memory_usage() == 6 + len("tag:t") + 1


async def test_flush_removes_everything(l1: InMemoryStore) -> None:
    await l1.set("k", b"v", ttl=60)
    await l1.set_add("tag:t", "k")
    await l1.flush()
    assert await l1.count_keys("*") == 0
