"""Query-result cache for the relational data layer.

Reads on enabled models are served from the tiered cache, keyed by
query:<model>:<operation>:<sha256(canonical shape)>. Writes run first and then
synchronously invalidate [model, *config.tags, "<model>:<kind>"] before the
caller gets the result back, trading hit rate for no stale read after a write.
Invalidation is model-wide, not row-level.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any, Protocol

from mangacache.core.constants import CACHE_TTL_L1
from mangacache.infrastructure.cache.engine import TieredCache
from mangacache.infrastructure.cache.keys import query_key
from mangacache.infrastructure.exceptions import CacheBackendError, CacheValidationError
from mangacache.shared.enums import QueryOperation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryCacheConfig:
    """Caching policy for one model."""

    ttl: int
    tags: tuple[str, ...]
    enabled: bool = True
    compress: bool | None = None
    write_to_l2: bool = False


QUERY_CACHE_CONFIGS: dict[str, QueryCacheConfig] = {
    "manga": QueryCacheConfig(CACHE_TTL_L1["manga"], ("manga",), compress=True, write_to_l2=True),
    "chapter": QueryCacheConfig(CACHE_TTL_L1["chapter"], ("chapter", "manga"), compress=True),
    "user": QueryCacheConfig(CACHE_TTL_L1["user"], ("user",), compress=True),
    "category": QueryCacheConfig(86400, ("category",), compress=False, write_to_l2=True),
    "collection": QueryCacheConfig(1800, ("collection", "user"), compress=True),
    "library": QueryCacheConfig(600, ("library", "user"), compress=True),
    "comment": QueryCacheConfig(CACHE_TTL_L1["comments"], ("comment",), compress=True),
    "notification": QueryCacheConfig(180, ("notification", "user"), compress=True),
    "review": QueryCacheConfig(1800, ("review", "manga"), compress=True),
    "playlist": QueryCacheConfig(900, ("playlist", "user"), compress=True),
}

# Reads issued by warmup_common_queries(): reference data and the newest manga.
DEFAULT_WARMUP_QUERIES: tuple[tuple[str, QueryOperation, dict[str, Any]], ...] = (
    ("category", QueryOperation.FIND_MANY, {}),
    ("manga", QueryOperation.FIND_MANY, {"take": 20, "order_by": {"created_at": "desc"}}),
)


class QueryExecutor(Protocol):
    """Relational read/write interface wrapped by CachedQueryExecutor."""

    async def execute(self, model: str, operation: QueryOperation, shape: dict[str, Any]) -> Any:
        """Run operation on model with the given query shape and return plain data."""
        ...


@dataclass(frozen=True)
class QueryCacheStats:
    hits: int
    misses: int
    invalidations: int

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Hits as a percentage of cacheable reads (0.0 when there were none)."""
        return round(self.hits / self.total * 100, 2) if self.total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "invalidations": self.invalidations,
            "total": self.total,
            "hit_rate": self.hit_rate,
        }


def _parse_operation(operation: QueryOperation | str) -> QueryOperation:
    try:
        return QueryOperation(operation)
    except ValueError:
        raise CacheValidationError(
            f"Unknown query operation: {operation!r}", field="operation"
        ) from None


class QueryCache:
    """Read-through cache and write invalidation for relational queries."""

    def __init__(
        self,
        cache: TieredCache,
        configs: Mapping[str, QueryCacheConfig] | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        """Initialize the query cache.

        Args:
            cache: Engine backing the entries.
            configs: Per-model policy; defaults to QUERY_CACHE_CONFIGS. Models
                without a config are never cached but still invalidated.
            enabled: Global switch; when False every read goes to the source.
        """
        self.cache = cache
        self.configs = dict(QUERY_CACHE_CONFIGS if configs is None else configs)
        self.enabled = enabled
        self._hits = 0
        self._misses = 0
        self._invalidations = 0

    def configure(self, model: str, **overrides: Any) -> QueryCacheConfig:
        """Override fields of a model's config (creating it if absent)."""
        current = self.configs.get(model) or QueryCacheConfig(ttl=self.cache.default_ttl, tags=(model,))
        updated = replace(current, **overrides)
        self.configs[model] = updated
        return updated

    def is_cacheable(self, model: str, operation: QueryOperation) -> bool:
        config = self.configs.get(model)
        return self.enabled and operation.is_read and config is not None and config.enabled

    def invalidation_tags(self, model: str, operation: QueryOperation | None = None) -> list[str]:
        """Tags removed when model is written: model, its config tags, and '<model>:<kind>'."""
        config = self.configs.get(model)
        tags = [model, *(config.tags if config else ())]
        kind = operation.mutation_kind if operation is not None else None
        if kind:
            tags.append(f"{model}:{kind}")
        return list(dict.fromkeys(tags))

    async def fetch(
        self,
        model: str,
        operation: QueryOperation | str,
        shape: Mapping[str, Any] | None,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the cached result of a read, or run loader and cache its result.

        A cache read failure degrades to running loader. The result is stored
        before returning; a store failure there is logged, not raised.
        Results that are None (e.g. find_unique with no row) are not cached.

        Raises:
            CacheValidationError: If model cannot form a cache key.
        """
        op = _parse_operation(operation)
        if not self.is_cacheable(model, op):
            return await loader()
        try:
            key = query_key(model, op.value, dict(shape or {}))
        except ValueError as e:
            raise CacheValidationError(str(e), field="model") from e
        cached = await self.cache.get(key)
        if cached is not None:
            self._hits += 1
            logger.debug("Query cache hit: %s.%s", model, op.value)
            return cached
        self._misses += 1
        result = await loader()
        if result is not None:
            await self._populate(key, model, result)
        return result

    async def _populate(self, key: str, model: str, result: Any) -> None:
        config = self.configs[model]
        try:
            await self.cache.set(
                key,
                result,
                ttl=config.ttl,
                tags=[model, *config.tags],
                compress=config.compress,
                write_to_l2=config.write_to_l2,
            )
        except (CacheBackendError, CacheValidationError) as e:
            logger.warning("Query result for %s not cached: %s", model, e.message)

    async def on_mutate(self, model: str, operation: QueryOperation | str | None = None) -> int:
        """Invalidate every cached read of model after a write.

        Failures are logged, not raised: the write already happened and the
        entries expire with their TTL.

        Returns:
            Number of cache keys invalidated (0 on failure).
        """
        op = _parse_operation(operation) if operation is not None else None
        tags = self.invalidation_tags(model, op)
        try:
            removed = await self.cache.invalidate_by_tags(tags)
        except CacheBackendError as e:
            logger.error("Query cache invalidation for %s failed (tags=%s): %s", model, tags, e.message)
            return 0
        self._invalidations += 1
        logger.debug("Query cache invalidated for %s: %s keys, tags=%s", model, removed, tags)
        return removed

    async def invalidate_model(self, model: str) -> int:
        """Admin operation: drop every cached read of model. Errors propagate."""
        removed = await self.cache.invalidate_by_tags(self.invalidation_tags(model))
        self._invalidations += 1
        logger.info("Query cache invalidated for model %s (%s keys)", model, removed)
        return removed

    def stats(self) -> QueryCacheStats:
        return QueryCacheStats(self._hits, self._misses, self._invalidations)

    def reset_stats(self) -> None:
        self._hits = self._misses = self._invalidations = 0


class CachedQueryExecutor:
    """QueryExecutor decorator: reads through QueryCache, writes invalidate it.

    Example:
        executor = CachedQueryExecutor(SQLAlchemyQueryExecutor(session, MODELS), query_cache)
        await executor.execute("manga", "find_many", {"where": {"status": "ongoing"}})
    """

    def __init__(self, executor: QueryExecutor, query_cache: QueryCache) -> None:
        self.executor = executor
        self.query_cache = query_cache

    async def execute(
        self, model: str, operation: QueryOperation | str, shape: dict[str, Any] | None = None
    ) -> Any:
        op = _parse_operation(operation)
        shape = shape or {}
        if op.is_read:
            return await self.query_cache.fetch(
                model, op, shape, lambda: self.executor.execute(model, op, shape)
            )
        result = await self.executor.execute(model, op, shape)
        await self.query_cache.on_mutate(model, op)
        return result

    async def on_mutate(self, model: str, operation: QueryOperation | str | None = None) -> int:
        """Write notification for writes that bypass execute()."""
        return await self.query_cache.on_mutate(model, operation)

    async def invalidate_model(self, model: str) -> int:
        return await self.query_cache.invalidate_model(model)

    def stats(self) -> QueryCacheStats:
        return self.query_cache.stats()

    def reset_stats(self) -> None:
        self.query_cache.reset_stats()

    async def warmup(
        self,
        queries: Iterable[tuple[str, QueryOperation | str, dict[str, Any]]] = DEFAULT_WARMUP_QUERIES,
    ) -> int:
        """Run common reads so their results are cached. Failures are logged.

        Returns:
            Number of queries that ran successfully.
        """
        warmed = 0
        for model, operation, shape in queries:
            try:
                await self.execute(model, operation, shape)
            except Exception:
                logger.exception("Warmup query %s.%s failed", model, operation)
                continue
            warmed += 1
        logger.info("Query cache warmup finished: %s queries", warmed)
        return warmed
