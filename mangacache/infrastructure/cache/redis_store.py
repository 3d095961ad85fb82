"""Redis-backed key-value store for one cache layer.

Provides async Redis access with bounded connect and command timeouts and a
single reconnect attempt on connection loss. One RedisStore per layer, each
bound to its own Redis database number. Built once in the application
lifespan and injected into the engine.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as redis

from mangacache.core.config import Settings, get_settings
from mangacache.infrastructure.exceptions import CacheBackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCAN_COUNT = 500


class RedisStore:
    """Async Redis store for a single cache layer.

    Uses settings for connection parameters unless a client is injected.
    Call connect() at startup and disconnect() at shutdown. Connection is
    lazy: if Redis is down at startup the store still starts and every
    command retries the connection once before raising CacheBackendError.
    """

    def __init__(
        self,
        name: str,
        db: int,
        redis_client: redis.Redis | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            name: Layer name used in logs and error details (e.g. 'L1').
            db: Redis database number for this layer.
            redis_client: Optional Redis client for testing or DI.
            settings: Optional settings; defaults to get_settings().
        """
        self.name = name
        self.db = db
        self.settings = settings or get_settings()
        self.redis = redis_client
        self._owns_client = redis_client is None
        self._connected = redis_client is not None

    def _build_client(self) -> redis.Redis:
        s = self.settings
        common: dict[str, Any] = {
            "db": self.db,
            "decode_responses": False,
            "socket_connect_timeout": s.redis_connect_timeout_seconds,
            "socket_timeout": s.redis_command_timeout_seconds,
            "socket_keepalive": True,
            "max_connections": s.redis_max_connections,
        }
        if s.redis_url:
            return redis.Redis.from_url(s.redis_url, **common)
        return redis.Redis(
            host=s.redis_host,
            port=s.redis_port,
            password=s.redis_password.get_secret_value() if s.redis_password else None,
            **common,
        )

    async def connect(self) -> None:
        """Create the client and ping it. Call on app startup.

        A failed ping is logged, not raised: the layer reports misses until
        Redis becomes reachable.
        """
        if self.redis is None:
            self.redis = self._build_client()
        try:
            await self.redis.ping()
            self._connected = True
            logger.info("Redis %s layer connected (db=%s)", self.name, self.db)
        except (redis.ConnectionError, redis.TimeoutError) as e:
            self._connected = False
            logger.warning(
                "Redis %s layer unavailable at startup: %s. Reads will miss until it recovers.",
                self.name,
                e,
            )

    async def disconnect(self) -> None:
        """Close Redis connection. Call on app shutdown."""
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
            self._connected = False
            logger.info("Redis %s layer disconnected", self.name)

    async def _reconnect(self) -> bool:
        """Attempt one reconnect after a connection error. Returns True if reconnected."""
        if self.redis is None:
            return False
        if self._owns_client:
            try:
                await self.redis.aclose()
            except redis.RedisError:
                logger.debug("Ignoring error while closing stale %s client", self.name)
            self.redis = self._build_client()
        try:
            await self.redis.ping()
        except (redis.ConnectionError, redis.TimeoutError):
            self._connected = False
            return False
        self._connected = True
        logger.info("Redis %s layer reconnected", self.name)
        return True

    def is_available(self) -> bool:
        """Return True if Redis answered the last command."""
        return self._connected and self.redis is not None

    async def _execute(self, operation: str, command: Callable[[redis.Redis], Awaitable[T]]) -> T:
        """Run command against the client, retrying once after a reconnect.

        Raises:
            CacheBackendError: If the store is not configured, unreachable,
                timed out twice, or rejected the command.
        """
        if self.redis is None:
            raise CacheBackendError(operation, "store not connected", self.name)
        try:
            result = await command(self.redis)
        except (redis.ConnectionError, redis.TimeoutError) as e:
            if await self._reconnect():
                try:
                    return await command(self.redis)
                except redis.RedisError as retry_error:
                    self._connected = False
                    raise CacheBackendError(operation, str(retry_error), self.name) from retry_error
            logger.warning("Redis %s %s unavailable: %s", self.name, operation, e)
            raise CacheBackendError(operation, str(e), self.name) from e
        except redis.RedisError as e:
            logger.exception("Redis %s %s error", self.name, operation)
            raise CacheBackendError(operation, str(e), self.name) from e
        self._connected = True
        return result

    async def get(self, key: str) -> bytes | None:
        return await self._execute("get", lambda r: r.get(key))

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        await self._execute("set", lambda r: r.set(key, value, ex=ttl))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        # UNLINK reclaims memory off the main thread on the server.
        return int(await self._execute("delete", lambda r: r.unlink(*keys)))

    async def exists(self, key: str) -> bool:
        return bool(await self._execute("exists", lambda r: r.exists(key)))

    async def ttl(self, key: str) -> int:
        return int(await self._execute("ttl", lambda r: r.ttl(key)))

    async def key_type(self, key: str) -> str:
        value = await self._execute("type", lambda r: r.type(key))
        return value.decode() if isinstance(value, bytes) else str(value)

    async def key_size(self, key: str) -> int | None:
        try:
            return await self._execute("memory_usage", lambda r: r.memory_usage(key))
        except CacheBackendError:
            # MEMORY USAGE is disabled on some managed Redis offerings.
            return None

    async def scan_keys(self, pattern: str, limit: int | None = None) -> list[str]:
        """Return keys matching pattern using SCAN (non-blocking, unlike KEYS)."""

        async def _scan(r: redis.Redis) -> list[str]:
            found: list[str] = []
            async for raw in r.scan_iter(match=pattern, count=_SCAN_COUNT):
                found.append(raw.decode() if isinstance(raw, bytes) else raw)
                if limit is not None and len(found) >= limit:
                    break
            return found

        return await self._execute("scan", _scan)

    async def count_keys(self, pattern: str) -> int:
        if pattern == "*":
            return int(await self._execute("dbsize", lambda r: r.dbsize()))
        return len(await self.scan_keys(pattern))

    async def set_add(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return int(await self._execute("sadd", lambda r: r.sadd(key, *members)))

    async def set_remove(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return int(await self._execute("srem", lambda r: r.srem(key, *members)))

    async def set_members(self, key: str) -> set[str]:
        raw = await self._execute("smembers", lambda r: r.smembers(key))
        return {m.decode() if isinstance(m, bytes) else m for m in raw}

    async def memory_usage(self) -> int | None:
        info = await self._execute("info", lambda r: r.info("memory"))
        used = info.get("used_memory") if isinstance(info, dict) else None
        return int(used) if used is not None else None

    async def flush(self) -> None:
        await self._execute("flushdb", lambda r: r.flushdb())
        logger.warning("Redis %s layer FLUSHED: all keys deleted", self.name)
