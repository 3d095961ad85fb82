"""In-process key-value store with Redis-like TTL and set semantics.

Used as a layer backend when REDIS_ENABLED is false (single-process
development) and as the store fake in tests. Expiry is evaluated lazily
against an injectable monotonic clock, matching Redis' observable behaviour:
an expired key is gone for every command.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from fnmatch import fnmatchcase

from mangacache.infrastructure.exceptions import CacheBackendError


@dataclass
class _Item:
    value: bytes | set[str]
    expires_at: float | None = None


class InMemoryStore:
    """Dict-backed store for one cache layer. Not shared across processes."""

    def __init__(self, name: str, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize an empty store.

        Args:
            name: Layer name used in logs and stats (e.g. 'L1').
            clock: Monotonic seconds source; tests pass a fake to move time.
        """
        self.name = name
        self._clock = clock
        self._data: dict[str, _Item] = {}

    def is_available(self) -> bool:
        return True

    def _live(self, key: str) -> _Item | None:
        item = self._data.get(key)
        if item is None:
            return None
        if item.expires_at is not None and item.expires_at <= self._clock():
            del self._data[key]
            return None
        return item

    def _live_keys(self) -> list[str]:
        return [k for k in list(self._data) if self._live(k) is not None]

    async def get(self, key: str) -> bytes | None:
        item = self._live(key)
        if item is None or not isinstance(item.value, bytes):
            return None
        return item.value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        self._data[key] = _Item(value=bytes(value), expires_at=self._clock() + ttl)

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                deleted += 1
        return deleted

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def ttl(self, key: str) -> int:
        item = self._live(key)
        if item is None:
            return -2
        if item.expires_at is None:
            return -1
        return max(0, round(item.expires_at - self._clock()))

    async def key_type(self, key: str) -> str:
        item = self._live(key)
        if item is None:
            return "none"
        return "string" if isinstance(item.value, bytes) else "set"

    async def key_size(self, key: str) -> int | None:
        item = self._live(key)
        if item is None:
            return None
        if isinstance(item.value, bytes):
            return len(key) + len(item.value)
        return len(key) + sum(len(m) for m in item.value)

    async def scan_keys(self, pattern: str, limit: int | None = None) -> list[str]:
        found = [k for k in self._live_keys() if fnmatchcase(k, pattern)]
        return found if limit is None else found[:limit]

    async def count_keys(self, pattern: str) -> int:
        return len(await self.scan_keys(pattern))

    async def set_add(self, key: str, *members: str) -> int:
        item = self._live(key)
        if item is None:
            item = _Item(value=set())
            self._data[key] = item
        if not isinstance(item.value, set):
            raise CacheBackendError("sadd", f"WRONGTYPE: {key} holds a string", self.name)
        before = len(item.value)
        item.value.update(members)
        return len(item.value) - before

    async def set_remove(self, key: str, *members: str) -> int:
        item = self._live(key)
        if item is None or not isinstance(item.value, set):
            return 0
        before = len(item.value)
        item.value.difference_update(members)
        removed = before - len(item.value)
        if not item.value:
            # Redis drops a set once its last member is removed.
            del self._data[key]
        return removed

    async def set_members(self, key: str) -> set[str]:
        item = self._live(key)
        if item is None or not isinstance(item.value, set):
            return set()
        return set(item.value)

    async def memory_usage(self) -> int | None:
        total = 0
        for key in self._live_keys():
            total += await self.key_size(key) or 0
        return total

    async def flush(self) -> None:
        self._data.clear()
