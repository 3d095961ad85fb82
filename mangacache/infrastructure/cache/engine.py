"""Tiered cache engine: L1/L2 reads and writes, tag invalidation, sweeps, stats.

Every stored value is an envelope {"value", "tags", "created_at"} encoded by
CacheCodec. Writes always go to L1 and are awaited; L2 writes are best-effort.
Reads probe L1 then L2 and never promote an L2 hit into L1.

Concurrency: there is no client-side locking. A set() racing an
invalidate_by_tags() on the same tag may leave the new entry present or
removed; callers needing read-after-invalidate guarantees must re-fetch from
the source of truth.
"""

import logging
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mangacache.core.constants import CACHE_KEY_SEP, CACHE_PREFIX_TAG
from mangacache.infrastructure.cache.best_effort import BestEffortWriter
from mangacache.infrastructure.cache.codec import CacheCodec
from mangacache.infrastructure.cache.store import KeyValueStore
from mangacache.infrastructure.cache.tag_index import TagIndex
from mangacache.infrastructure.exceptions import (
    CacheBackendError,
    CacheValidationError,
    CodecError,
)
from mangacache.shared.enums import CacheLayer
from mangacache.shared.telemetry import traced
from mangacache.shared.utils.datetime import now_ms, utc_now

logger = logging.getLogger(__name__)

DEFAULT_INVALIDATION_BATCH_SIZE = 100
_RESERVED_PREFIX = f"{CACHE_PREFIX_TAG}{CACHE_KEY_SEP}"


@dataclass(frozen=True)
class CacheEntry:
    """Decoded envelope of one cache entry and where it was found."""

    key: str
    value: Any
    tags: tuple[str, ...]
    created_at: int
    compressed: bool
    layer: CacheLayer


@dataclass(frozen=True)
class LayerStats:
    """Entry count and memory of one layer; None when the layer is unreachable."""

    layer: CacheLayer
    entries: int | None
    memory_bytes: int | None
    available: bool


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time snapshot returned by TieredCache.get_stats()."""

    layers: list[LayerStats]
    tag_indexes: int | None
    pending_writes: int
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class KeyInfo:
    """Admin view of a single stored key."""

    key: str
    layer: CacheLayer
    ttl: int
    type: str
    size: int | None
    value: Any = None


class TieredCache:
    """Facade over two key-value layers, a tag index and a codec.

    Example:
        cache = TieredCache(l1=l1_store, l2=l2_store)
        await cache.set("manga:123", {"name": "One Piece"}, ttl=3600, tags=["manga"])
        await cache.get("manga:123")  # {"name": "One Piece"}
        await cache.invalidate_by_tags(["manga"])
    """

    def __init__(
        self,
        l1: KeyValueStore,
        l2: KeyValueStore,
        *,
        codec: CacheCodec | None = None,
        writer: BestEffortWriter | None = None,
        invalidation_batch_size: int = DEFAULT_INVALIDATION_BATCH_SIZE,
        default_ttl: int = 3600,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the engine.

        Args:
            l1: Fast, short-lived layer. Also holds the tag index sets.
            l2: Larger default layer, written only on request.
            codec: Value codec; defaults to a CacheCodec with a 1 KiB threshold.
            writer: Tracker for best-effort L2 writes.
            invalidation_batch_size: Keys per delete command during invalidation.
            default_ttl: TTL used when set() is called without one.
            clock_ms: Epoch-milliseconds source for envelope created_at.
        """
        self.l1 = l1
        self.l2 = l2
        self.tag_index = TagIndex(l1)
        self.codec = codec or CacheCodec()
        self.writer = writer or BestEffortWriter()
        self.invalidation_batch_size = invalidation_batch_size
        self.default_ttl = default_ttl
        self.clock_ms = clock_ms

    def _layers(self) -> tuple[tuple[CacheLayer, KeyValueStore], ...]:
        return ((CacheLayer.L1, self.l1), (CacheLayer.L2, self.l2))

    def store_for(self, layer: CacheLayer) -> KeyValueStore:
        """Return the backing store of a layer."""
        return self.l1 if layer == CacheLayer.L1 else self.l2

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    async def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: int | None = None,
        tags: Sequence[str] = (),
        compress: bool | None = None,
        write_to_l2: bool = False,
    ) -> None:
        """Store value under key in L1 (awaited) and optionally L2 (best-effort).

        The key is registered under every tag before the entry is written and
        again after it lands, so a sweep that pruned the key in between cannot
        leave a live entry outside its tag indexes.

        Args:
            key: Cache key. Must not use the reserved tag index prefix.
            value: Any JSON-representable value except None.
            ttl: Seconds until expiry in both layers; defaults to default_ttl.
            tags: Labels for bulk invalidation.
            compress: True forces compression, False disables it, None
                compresses above the codec threshold.
            write_to_l2: Also write the entry to L2.

        Raises:
            CacheValidationError: On an empty or reserved key, a None or
                non-serializable value, a non-positive TTL, or an empty tag.
            CacheBackendError: If the L1 write or tag registration fails.
        """
        ttl = self.default_ttl if ttl is None else ttl
        tags = list(dict.fromkeys(tags))
        self._validate_set(key, value, ttl, tags)
        envelope = {"value": value, "tags": tags, "created_at": self.clock_ms()}
        try:
            payload = self.codec.encode(
                envelope, force_compress=compress is True, allow_compress=compress is not False
            )
        except CodecError as e:
            raise CacheValidationError(e.details["reason"], field="value") from e

        await self.tag_index.add_key_to_tags(key, tags)
        await self.l1.set(key, payload, ttl)
        await self.tag_index.add_key_to_tags(key, tags)
        if write_to_l2:
            self.writer.submit(self.l2.set(key, payload, ttl), f"L2 set {key}")
        logger.debug(
            "Cache set: %s (ttl=%s, tags=%s, bytes=%s, l2=%s)", key, ttl, tags, len(payload), write_to_l2
        )

    @staticmethod
    def _validate_set(key: str, value: Any, ttl: int, tags: list[str]) -> None:
        if not key:
            raise CacheValidationError("Cache key must not be empty", field="key")
        if key.startswith(_RESERVED_PREFIX):
            raise CacheValidationError(
                f"Cache key {key!r} uses the reserved tag index prefix", field="key"
            )
        if value is None:
            raise CacheValidationError("Cache value must not be None", field="value")
        if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0:
            raise CacheValidationError(f"TTL must be a positive integer, got: {ttl!r}", field="ttl")
        if any(not tag for tag in tags):
            raise CacheValidationError("Tags must not be empty strings", field="tags")

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss in both layers."""
        entry = await self.get_entry(key)
        return None if entry is None else entry.value

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Return the decoded entry from the first layer that has it.

        A layer that errors or holds undecodable bytes counts as a miss on
        that layer. An L2 hit is not copied into L1.
        """
        for layer, store in self._layers():
            try:
                data = await store.get(key)
            except CacheBackendError as e:
                logger.warning("Cache read degraded to miss on %s for %s: %s", layer, key, e.message)
                continue
            if data is None:
                continue
            entry = self._decode_entry(key, data, layer)
            if entry is None:
                continue
            logger.debug("Cache hit: %s (%s)", key, layer)
            return entry
        logger.debug("Cache miss: %s", key)
        return None

    def _decode_entry(self, key: str, data: bytes, layer: CacheLayer) -> CacheEntry | None:
        try:
            envelope = self.codec.decode(data)
        except CodecError as e:
            logger.warning("Undecodable cache entry %s on %s treated as miss: %s", key, layer, e.message)
            return None
        if not isinstance(envelope, dict) or envelope.get("value") is None:
            logger.warning("Cache entry %s on %s has an unknown layout, treated as miss", key, layer)
            return None
        return CacheEntry(
            key=key,
            value=envelope["value"],
            tags=tuple(envelope.get("tags") or ()),
            created_at=int(envelope.get("created_at") or 0),
            compressed=self.codec.is_compressed(data),
            layer=layer,
        )

    async def delete(self, key: str) -> int:
        """Remove key from both layers; return how many layers held it.

        Tag index membership is left for the sweep to reconcile.

        Raises:
            CacheBackendError: If either layer could not be reached.
        """
        deleted, failed = await self._delete_everywhere([key])
        if failed:
            raise failed[0]
        return deleted

    # ------------------------------------------------------------------
    # Invalidation and reconciliation
    # ------------------------------------------------------------------

    async def _delete_everywhere(self, keys: Iterable[str]) -> tuple[int, list[CacheBackendError]]:
        """Delete keys from both layers in batches; collect per-layer failures."""
        keys = list(keys)
        deleted = 0
        failures: list[CacheBackendError] = []
        for start in range(0, len(keys), self.invalidation_batch_size):
            batch = keys[start : start + self.invalidation_batch_size]
            for layer, store in self._layers():
                try:
                    deleted += await store.delete(*batch)
                except CacheBackendError as e:
                    logger.warning("Delete of %s keys failed on %s: %s", len(batch), layer, e.message)
                    failures.append(e)
        return deleted, failures

    @traced("cache.invalidate_by_tags")
    async def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        """Delete every entry registered under any of tags, then the tag indexes.

        Per tag: read members, delete them from both layers, then delete the
        index (returning late joiners, which are deleted too). When a layer
        delete fails the index is kept so a retry can still find the keys.
        Invalidating a tag with no index is a no-op.

        Returns:
            Number of distinct keys invalidated.

        Raises:
            CacheValidationError: If any tag is an empty string.
            CacheBackendError: If a tag index cannot be read, or after all tags
                were processed when any layer delete failed.
        """
        tags = list(dict.fromkeys(tags))
        if any(not tag for tag in tags):
            raise CacheValidationError("Tags must not be empty strings", field="tags")
        invalidated: set[str] = set()
        failures: list[CacheBackendError] = []
        for tag in tags:
            keys = await self.tag_index.members(tag)
            _, failed = await self._delete_everywhere(keys)
            if failed:
                logger.warning("Tag %r partially invalidated; keeping its index for retry", tag)
                failures.extend(failed)
                continue
            late = await self.tag_index.remove_tag_index(tag) - keys
            if late:
                _, failed = await self._delete_everywhere(late)
                failures.extend(failed)
            invalidated |= keys | late
        if invalidated:
            logger.info("Invalidated %s cache keys for tags %s", len(invalidated), tags)
        if failures:
            raise failures[0]
        return len(invalidated)

    async def _exists_anywhere(self, key: str) -> bool:
        """True if key exists in a layer. An unreachable layer counts as 'exists'."""
        for _, store in self._layers():
            try:
                if await store.exists(key):
                    return True
            except CacheBackendError:
                return True
        return False

    @traced("cache.cleanup_expired_entries")
    async def cleanup_expired_entries(self) -> int:
        """Drop tag index members whose entry has expired in every layer.

        Only index sets are modified; entries are never deleted here, so
        running the sweep concurrently or repeatedly is safe. A member whose
        entry reappears while the sweep runs is re-added.

        Returns:
            Number of stale memberships removed.
        """
        removed = 0
        for tag in await self.tag_index.tags():
            members = await self.tag_index.members(tag)
            stale = [key for key in members if not await self._exists_anywhere(key)]
            if not stale:
                continue
            removed += await self.tag_index.remove_members(tag, stale)
            for key in stale:
                if await self._exists_anywhere(key):
                    await self.tag_index.add_key_to_tags(key, [tag])
                    removed -= 1
        logger.info("Cache sweep removed %s stale tag memberships", removed)
        return removed

    # ------------------------------------------------------------------
    # Observability and admin
    # ------------------------------------------------------------------

    async def get_stats(self) -> CacheStats:
        """Collect entry counts and memory per layer. Never mutates state."""
        try:
            tag_indexes = await self.tag_index.count()
        except CacheBackendError as e:
            logger.warning("Tag index count unavailable: %s", e.message)
            tag_indexes = None
        layers = []
        for layer, store in self._layers():
            try:
                entries = await store.count_keys("*")
                memory = await store.memory_usage()
            except CacheBackendError as e:
                logger.warning("Stats unavailable for %s: %s", layer, e.message)
                layers.append(LayerStats(layer, None, None, available=False))
                continue
            if layer == CacheLayer.L1 and tag_indexes:
                entries = max(0, entries - tag_indexes)
            layers.append(LayerStats(layer, entries, memory, available=True))
        return CacheStats(
            layers=layers, tag_indexes=tag_indexes, pending_writes=self.writer.pending
        )

    async def count_keys(self, pattern: str = "*", layer: CacheLayer = CacheLayer.L2) -> int:
        """Number of keys in a layer matching pattern."""
        return await self.store_for(layer).count_keys(pattern)

    async def list_keys(
        self, pattern: str = "*", layer: CacheLayer = CacheLayer.L2, limit: int = 100
    ) -> list[KeyInfo]:
        """Return up to limit keys matching pattern with their TTL, type and size."""
        store = self.store_for(layer)
        infos = []
        for key in await store.scan_keys(pattern, limit=limit):
            infos.append(
                KeyInfo(
                    key=key,
                    layer=layer,
                    ttl=await store.ttl(key),
                    type=await store.key_type(key),
                    size=await store.key_size(key),
                )
            )
        return infos

    async def get_key_info(self, key: str, layer: CacheLayer = CacheLayer.L2) -> KeyInfo | None:
        """Return one key with its decoded envelope (or set members), or None."""
        store = self.store_for(layer)
        key_type = await store.key_type(key)
        if key_type == "none":
            return None
        value: Any = None
        if key_type == "set":
            value = sorted(await store.set_members(key))
        else:
            data = await store.get(key)
            if data is not None:
                try:
                    value = self.codec.decode(data)
                except CodecError as e:
                    logger.warning("Key %s on %s is not decodable: %s", key, layer, e.message)
        return KeyInfo(
            key=key,
            layer=layer,
            ttl=await store.ttl(key),
            type=key_type,
            size=await store.key_size(key),
            value=value,
        )

    async def iter_entries(
        self, pattern: str, layer: CacheLayer = CacheLayer.L2
    ) -> AsyncIterator[CacheEntry]:
        """Yield decodable entries of a layer whose keys match pattern."""
        store = self.store_for(layer)
        for key in await store.scan_keys(pattern):
            data = await store.get(key)
            if data is None:
                continue
            entry = self._decode_entry(key, data, layer)
            if entry is not None:
                yield entry

    async def flush_all(self) -> None:
        """Remove every entry and tag index from both layers."""
        for layer, store in self._layers():
            await store.flush()
            logger.warning("Flushed cache layer %s", layer)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for pending best-effort writes."""
        await self.writer.drain(timeout)
