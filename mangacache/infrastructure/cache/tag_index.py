"""Tag index: reverse mapping tag -> set of cache keys.

One store set per tag under tag_key(tag). Index entries carry no TTL of
their own; members whose entries expired are removed by
TieredCache.cleanup_expired_entries() or unconditionally by
invalidate_by_tags(). Membership is therefore a superset of live entries,
and a key is only ever added under tags it was written with.
"""

import logging
from collections.abc import Iterable

from mangacache.infrastructure.cache.keys import tag_from_key, tag_key, tag_pattern
from mangacache.infrastructure.cache.store import KeyValueStore

logger = logging.getLogger(__name__)


class TagIndex:
    """Tag-to-keys index stored as sets in one backing-store namespace."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def add_key_to_tags(self, key: str, tags: Iterable[str]) -> None:
        """Register key under every tag (SADD per tag; duplicates are no-ops)."""
        for tag in dict.fromkeys(tags):
            await self.store.set_add(tag_key(tag), key)

    async def members(self, tag: str) -> set[str]:
        """Return the keys currently listed under tag (may include expired ones)."""
        return await self.store.set_members(tag_key(tag))

    async def remove_members(self, tag: str, keys: Iterable[str]) -> int:
        """Drop keys from the tag's set; the set disappears with its last member."""
        return await self.store.set_remove(tag_key(tag), *keys)

    async def remove_tag_index(self, tag: str) -> set[str]:
        """Delete the tag's index entry and return the key set it held.

        Not atomic: a key added between the read and the delete is returned
        by neither this call nor a later one. Callers that must not orphan
        entries read members() first and delete keys before calling this.
        """
        index_key = tag_key(tag)
        keys = await self.store.set_members(index_key)
        await self.store.delete(index_key)
        return keys

    async def tags(self) -> list[str]:
        """Return every tag that currently has an index entry."""
        return [tag_from_key(k) for k in await self.store.scan_keys(tag_pattern())]

    async def count(self) -> int:
        """Number of tag index entries."""
        return await self.store.count_keys(tag_pattern())
