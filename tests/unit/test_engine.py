"""TieredCache: layered reads/writes, tag invalidation, sweep, stats and admin views."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from mangacache.infrastructure.cache import InMemoryStore, TieredCache
from mangacache.infrastructure.exceptions import CacheBackendError, CacheValidationError
from mangacache.shared.enums import CacheLayer


def _backend_error(operation: str = "delete", layer: str = "L2") -> CacheBackendError:
    return CacheBackendError(operation, "connection refused", layer)


# ---------------------------------------------------------------------------
# set / get
# ---------------------------------------------------------------------------


async def test_set_then_get_returns_equal_value(cache: TieredCache) -> None:
    value = {"id": 1, "name": "One Piece", "tags": ["adventure"], "rating": 4.9}
    await cache.set("manga:1", value, ttl=3600, tags=["manga"])
    assert await cache.get("manga:1") == value
    entry = await cache.get_entry("manga:1")
    assert entry.layer == CacheLayer.L1
    assert entry.tags == ("manga",)
    assert entry.created_at == cache.clock_ms()


async def test_entry_expires_after_ttl(cache: TieredCache, clock) -> None:
    await cache.set("manga:1", {"id": 1}, ttl=60)
    clock.advance(59)
    assert await cache.get("manga:1") == {"id": 1}
    clock.advance(1)
    assert await cache.get("manga:1") is None


async def test_default_ttl_applies(cache: TieredCache, l1: InMemoryStore) -> None:
    await cache.set("k", "v")
    assert await l1.ttl("k") == cache.default_ttl


async def test_l2_written_only_on_request(cache: TieredCache, l2: InMemoryStore) -> None:
    await cache.set("a", 1, ttl=60)
    await cache.set("b", 2, ttl=60, write_to_l2=True)
    await cache.drain()
    assert await l2.exists("b")
    assert not await l2.exists("a")


async def test_l2_hit_is_not_promoted(cache: TieredCache, l1: InMemoryStore) -> None:
    await cache.set("manga:1", {"id": 1}, ttl=600, write_to_l2=True)
    await cache.drain()
    await l1.delete("manga:1")
    entry = await cache.get_entry("manga:1")
    assert entry.layer == CacheLayer.L2
    assert entry.value == {"id": 1}
    assert not await l1.exists("manga:1")


@pytest.mark.parametrize(
    ("compress", "expected"),
    [(None, True), (True, True), (False, False)],
)
async def test_compress_flag(cache: TieredCache, compress: bool | None, expected: bool) -> None:
    """None compresses above the threshold, True forces it, False disables it."""
    value = {"synopsis": "A long synopsis. " * 200}
    await cache.set("manga:1", value, ttl=60, compress=compress)
    entry = await cache.get_entry("manga:1")
    assert entry.compressed is expected
    assert entry.value == value


async def test_small_value_not_compressed_by_default(cache: TieredCache) -> None:
    await cache.set("k", {"a": 1}, ttl=60)
    assert (await cache.get_entry("k")).compressed is False


@pytest.mark.parametrize(
    ("key", "value", "ttl", "tags", "field"),
    [
        ("", 1, 60, [], "key"),
        ("tag:manga", 1, 60, [], "key"),
        ("k", None, 60, [], "value"),
        ("k", 1, 0, [], "ttl"),
        ("k", 1, -5, [], "ttl"),
        ("k", 1, True, [], "ttl"),
        ("k", 1, 60, [""], "tags"),
        ("k", {"x": object()}, 60, [], "value"),
    ],
)
async def test_invalid_set_arguments(
    cache: TieredCache, l1: InMemoryStore, key, value, ttl, tags, field
) -> None:
    with pytest.raises(CacheValidationError) as exc_info:
        await cache.set(key, value, ttl=ttl, tags=tags)
    assert exc_info.value.details["field"] == field
    assert await l1.count_keys("*") == 0


async def test_l1_write_failure_raises(cache: TieredCache, l1: InMemoryStore, monkeypatch) -> None:
    monkeypatch.setattr(l1, "set", AsyncMock(side_effect=_backend_error("set", "L1")))
    with pytest.raises(CacheBackendError):
        await cache.set("k", 1, ttl=60)


async def test_tag_registration_failure_prevents_write(
    cache: TieredCache, l1: InMemoryStore, monkeypatch
) -> None:
    """Tags are registered before the entry, so an entry never exists untracked."""
    monkeypatch.setattr(l1, "set_add", AsyncMock(side_effect=_backend_error("sadd", "L1")))
    with pytest.raises(CacheBackendError):
        await cache.set("k", 1, ttl=60, tags=["manga"])
    assert not await l1.exists("k")


async def test_l2_write_failure_is_dropped(cache: TieredCache, l2: InMemoryStore, monkeypatch) -> None:
    monkeypatch.setattr(l2, "set", AsyncMock(side_effect=_backend_error("set")))
    await cache.set("k", 1, ttl=60, write_to_l2=True)
    await cache.drain()
    assert await cache.get("k") == 1


async def test_unreachable_l1_degrades_to_l2(cache: TieredCache, l1: InMemoryStore, monkeypatch) -> None:
    await cache.set("k", {"v": 1}, ttl=60, write_to_l2=True)
    await cache.drain()
    monkeypatch.setattr(l1, "get", AsyncMock(side_effect=_backend_error("get", "L1")))
    entry = await cache.get_entry("k")
    assert entry.layer == CacheLayer.L2


async def test_both_layers_down_is_a_miss(
    cache: TieredCache, l1: InMemoryStore, l2: InMemoryStore, monkeypatch
) -> None:
    monkeypatch.setattr(l1, "get", AsyncMock(side_effect=_backend_error("get", "L1")))
    monkeypatch.setattr(l2, "get", AsyncMock(side_effect=_backend_error("get", "L2")))
    assert await cache.get("k") is None


@pytest.mark.parametrize("payload", [b"\x09garbage", b"\x00[1, 2]", b"\x00{\"value\": null}"])
async def test_undecodable_or_foreign_entries_are_misses(
    cache: TieredCache, l1: InMemoryStore, payload: bytes
) -> None:
    await l1.set("k", payload, ttl=60)
    assert await cache.get("k") is None


async def test_delete_removes_from_both_layers(cache: TieredCache, l2: InMemoryStore) -> None:
    await cache.set("k", 1, ttl=60, write_to_l2=True)
    await cache.drain()
    assert await cache.delete("k") == 2
    assert await cache.get("k") is None
    assert await cache.delete("k") == 0


# ---------------------------------------------------------------------------
# Tag invalidation
# ---------------------------------------------------------------------------


async def test_selective_tag_invalidation(cache: TieredCache, l2: InMemoryStore) -> None:
    """Only entries carrying the tag are removed, from both layers."""
    await cache.set("manga:1", {"id": 1}, ttl=600, tags=["manga"], write_to_l2=True)
    await cache.set("discover:home", [1], ttl=600, tags=["manga", "discover"])
    await cache.set("user:9", {"id": 9}, ttl=600, tags=["user"], write_to_l2=True)
    await cache.drain()

    assert await cache.invalidate_by_tags(["manga"]) == 2

    assert await cache.get("manga:1") is None
    assert await cache.get("discover:home") is None
    assert not await l2.exists("manga:1")
    assert await cache.get("user:9") == {"id": 9}
    assert await cache.tag_index.members("manga") == set()


async def test_invalidation_is_idempotent(cache: TieredCache) -> None:
    await cache.set("manga:1", 1, ttl=60, tags=["manga"])
    assert await cache.invalidate_by_tags(["manga"]) == 1
    assert await cache.invalidate_by_tags(["manga"]) == 0
    assert await cache.invalidate_by_tags(["never-used"]) == 0


async def test_invalidation_counts_distinct_keys(cache: TieredCache) -> None:
    await cache.set("k1", 1, ttl=60, tags=["a", "b"])
    await cache.set("k2", 2, ttl=60, tags=["b"])
    assert await cache.invalidate_by_tags(["a", "b", "a"]) == 2


async def test_invalidation_deletes_in_batches(l1: InMemoryStore, l2: InMemoryStore, clock) -> None:
    cache = TieredCache(l1, l2, invalidation_batch_size=3, clock_ms=clock.ms)
    for i in range(10):
        await cache.set(f"k{i}", i, ttl=60, tags=["bulk"])
    delete_spy = AsyncMock(wraps=l1.delete)
    l1.delete = delete_spy
    assert await cache.invalidate_by_tags(["bulk"]) == 10
    batch_sizes = sorted(len(call.args) for call in delete_spy.await_args_list if call.args[0] != "tag:bulk")
    assert batch_sizes == [1, 3, 3, 3]


async def test_partial_failure_keeps_index_and_raises(
    cache: TieredCache, l1: InMemoryStore, l2: InMemoryStore, monkeypatch
) -> None:
    """A failed layer delete keeps the tag index so a retry still finds the keys."""
    await cache.set("manga:1", 1, ttl=60, tags=["manga"])
    await cache.set("user:1", 1, ttl=60, tags=["user"])
    original_delete = l2.delete
    monkeypatch.setattr(l2, "delete", AsyncMock(side_effect=_backend_error()))

    with pytest.raises(CacheBackendError):
        await cache.invalidate_by_tags(["manga", "user"])

    assert await cache.tag_index.members("manga") == {"manga:1"}
    assert await cache.tag_index.members("user") == {"user:1"}
    assert not await l1.exists("manga:1")

    monkeypatch.setattr(l2, "delete", original_delete)
    assert await cache.invalidate_by_tags(["manga", "user"]) == 2
    assert await cache.tag_index.tags() == []


async def test_unreadable_index_raises(cache: TieredCache, l1: InMemoryStore, monkeypatch) -> None:
    monkeypatch.setattr(l1, "set_members", AsyncMock(side_effect=_backend_error("smembers", "L1")))
    with pytest.raises(CacheBackendError):
        await cache.invalidate_by_tags(["manga"])


@pytest.mark.parametrize("tags", [[""], ["manga", ""]])
async def test_invalidation_rejects_empty_tags(cache: TieredCache, tags: list[str]) -> None:
    await cache.set("manga:1", 1, ttl=60, tags=["manga"])
    with pytest.raises(CacheValidationError):
        await cache.invalidate_by_tags(tags)
    assert await cache.get("manga:1") == 1


async def test_overlapping_invalidations_commute(cache: TieredCache) -> None:
    await cache.set("manga:1", 1, ttl=60, tags=["manga"])
    await cache.set("discover:home", [1], ttl=60, tags=["manga", "discover"])
    await cache.set("discover:new", [2], ttl=60, tags=["discover"])

    results = await asyncio.gather(
        cache.invalidate_by_tags(["manga", "discover"]),
        cache.invalidate_by_tags(["discover", "manga"]),
    )

    # Every key is counted by whichever call removed the index holding it.
    assert sum(results) >= 3
    for key in ("manga:1", "discover:home", "discover:new"):
        assert await cache.get(key) is None
    assert await cache.tag_index.members("manga") == set()
    assert await cache.tag_index.members("discover") == set()


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------


async def test_cleanup_removes_only_expired_members(cache: TieredCache, clock) -> None:
    await cache.set("short", 1, ttl=10, tags=["manga"])
    await cache.set("long", 2, ttl=100, tags=["manga"])
    clock.advance(50)

    assert await cache.cleanup_expired_entries() == 1
    assert await cache.tag_index.members("manga") == {"long"}
    assert await cache.get("long") == 2
    assert await cache.cleanup_expired_entries() == 0


async def test_cleanup_drops_index_with_no_live_members(cache: TieredCache, clock) -> None:
    await cache.set("k", 1, ttl=10, tags=["gone"])
    clock.advance(11)
    assert await cache.cleanup_expired_entries() == 1
    assert await cache.tag_index.tags() == []


async def test_cleanup_keeps_members_alive_in_l2(cache: TieredCache, l1: InMemoryStore) -> None:
    await cache.set("k", 1, ttl=60, tags=["manga"], write_to_l2=True)
    await cache.drain()
    await l1.delete("k")
    assert await cache.cleanup_expired_entries() == 0
    assert await cache.tag_index.members("manga") == {"k"}


async def test_sweep_during_set_keeps_the_new_entry_indexed(
    cache: TieredCache, l1: InMemoryStore, clock, monkeypatch
) -> None:
    """A sweep that prunes a key while its L1 write is in flight cannot orphan the entry."""
    await cache.set("manga:1", {"v": 1}, ttl=10, tags=["manga"])
    clock.advance(11)

    write_started = asyncio.Event()
    release_write = asyncio.Event()
    original_set = l1.set

    async def gated_set(key: str, value: bytes, ttl: int) -> None:
        write_started.set()
        await release_write.wait()
        await original_set(key, value, ttl)

    monkeypatch.setattr(l1, "set", gated_set)
    writer = asyncio.create_task(cache.set("manga:1", {"v": 2}, ttl=600, tags=["manga"]))
    await write_started.wait()

    assert await cache.cleanup_expired_entries() == 1
    assert await cache.tag_index.members("manga") == set()

    release_write.set()
    await writer

    assert await cache.tag_index.members("manga") == {"manga:1"}
    assert await cache.invalidate_by_tags(["manga"]) == 1
    assert await cache.get("manga:1") is None


async def test_sweep_and_writes_run_concurrently(cache: TieredCache, clock) -> None:
    for i in range(5):
        await cache.set(f"old:{i}", i, ttl=10, tags=["manga"])
    clock.advance(11)

    results = await asyncio.gather(
        cache.cleanup_expired_entries(),
        *(cache.set(f"new:{i}", i, ttl=600, tags=["manga"]) for i in range(5)),
    )

    assert results[0] <= 5
    members = await cache.tag_index.members("manga")
    assert {f"new:{i}" for i in range(5)} <= members
    assert await cache.invalidate_by_tags(["manga"]) >= 5
    assert all([await cache.get(f"new:{i}") is None for i in range(5)])


async def test_cleanup_treats_unreachable_layer_as_existing(
    cache: TieredCache, l2: InMemoryStore, clock, monkeypatch
) -> None:
    await cache.set("k", 1, ttl=10, tags=["manga"])
    clock.advance(11)
    monkeypatch.setattr(l2, "exists", AsyncMock(side_effect=_backend_error("exists")))
    assert await cache.cleanup_expired_entries() == 0
    assert await cache.tag_index.members("manga") == {"k"}


# ---------------------------------------------------------------------------
# Stats and admin views
# ---------------------------------------------------------------------------


async def test_stats_exclude_tag_indexes(cache: TieredCache) -> None:
    await cache.set("a", 1, ttl=60, tags=["t1", "t2"])
    await cache.set("b", 2, ttl=60, tags=["t1"], write_to_l2=True)
    await cache.drain()
    stats = await cache.get_stats()
    l1_stats, l2_stats = stats.layers
    assert stats.tag_indexes == 2
    assert l1_stats.entries == 2
    assert l2_stats.entries == 1
    assert l1_stats.available and l2_stats.available
    assert stats.pending_writes == 0


async def test_stats_report_unreachable_layer(cache: TieredCache, l2: InMemoryStore, monkeypatch) -> None:
    monkeypatch.setattr(l2, "count_keys", AsyncMock(side_effect=_backend_error("dbsize")))
    stats = await cache.get_stats()
    l2_stats = stats.layers[1]
    assert l2_stats.available is False
    assert l2_stats.entries is None


async def test_list_keys_and_key_info(cache: TieredCache) -> None:
    await cache.set("manga:1", {"id": 1}, ttl=120, tags=["manga"], write_to_l2=True)
    await cache.drain()

    keys = await cache.list_keys("manga:*", CacheLayer.L2)
    assert [k.key for k in keys] == ["manga:1"]
    assert keys[0].ttl == 120
    assert keys[0].type == "string"
    assert await cache.count_keys("manga:*", CacheLayer.L2) == 1

    info = await cache.get_key_info("manga:1", CacheLayer.L2)
    assert info.value["value"] == {"id": 1}
    assert info.value["tags"] == ["manga"]

    index = await cache.get_key_info("tag:manga", CacheLayer.L1)
    assert index.type == "set"
    assert index.value == ["manga:1"]

    assert await cache.get_key_info("missing", CacheLayer.L2) is None


async def test_iter_entries_skips_foreign_values(cache: TieredCache, l2: InMemoryStore) -> None:
    await cache.set("image:1:small:webp", {"etag": "x"}, ttl=60, write_to_l2=True)
    await cache.drain()
    await l2.set("image:2:small:webp", b"\x09junk", ttl=60)
    keys = [entry.key async for entry in cache.iter_entries("image:*", CacheLayer.L2)]
    assert keys == ["image:1:small:webp"]


async def test_flush_all_empties_both_layers(cache: TieredCache, l1: InMemoryStore, l2: InMemoryStore) -> None:
    await cache.set("k", 1, ttl=60, tags=["t"], write_to_l2=True)
    await cache.drain()
    await cache.flush_all()
    assert await l1.count_keys("*") == 0
    assert await l2.count_keys("*") == 0
