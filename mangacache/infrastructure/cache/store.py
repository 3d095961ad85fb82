"""Key-value store protocol for the cache layers (DIP).

One instance per layer (L1, L2). RedisStore is the production implementation;
InMemoryStore backs single-process development and tests. Implementations
raise CacheBackendError when the store cannot serve a command; they never
return a silent fallback, so the engine can decide per operation whether a
failure is a miss, a dropped write, or an error for the caller.
"""

from __future__ import annotations

from typing import Protocol


class KeyValueStore(Protocol):
    """Protocol for a TTL-capable key-value namespace with set support."""

    name: str

    def is_available(self) -> bool:
        """Return True if the store was reachable on the last command."""
        ...

    async def get(self, key: str) -> bytes | None:
        """Return raw bytes stored at key, or None if missing or expired."""
        ...

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        """Store value with a TTL in seconds (SET EX)."""
        ...

    async def delete(self, *keys: str) -> int:
        """Remove keys; return how many existed."""
        ...

    async def exists(self, key: str) -> bool:
        """Return True if key is present and not expired."""
        ...

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -1 without expiry, -2 when missing."""
        ...

    async def key_type(self, key: str) -> str:
        """Return 'string', 'set' or 'none'."""
        ...

    async def key_size(self, key: str) -> int | None:
        """Approximate bytes used by key, or None when unknown."""
        ...

    async def scan_keys(self, pattern: str, limit: int | None = None) -> list[str]:
        """Return keys matching a glob pattern (SCAN, never KEYS)."""
        ...

    async def count_keys(self, pattern: str) -> int:
        """Count keys matching a glob pattern."""
        ...

    async def set_add(self, key: str, *members: str) -> int:
        """Add members to the set at key (SADD)."""
        ...

    async def set_remove(self, key: str, *members: str) -> int:
        """Remove members from the set at key (SREM)."""
        ...

    async def set_members(self, key: str) -> set[str]:
        """Return all members of the set at key (empty when missing)."""
        ...

    async def memory_usage(self) -> int | None:
        """Total bytes used by the store (INFO memory used_memory)."""
        ...

    async def flush(self) -> None:
        """Delete every key in this namespace (FLUSHDB)."""
        ...
