"""Cache: layer stores, tiered engine, and the image/query wrappers built on it.

Stores are created once in the application lifespan and injected into
TieredCache; key format is in keys.py (DRY).
"""

from mangacache.infrastructure.cache.best_effort import BestEffortWriter
from mangacache.infrastructure.cache.codec import CacheCodec
from mangacache.infrastructure.cache.engine import (
    CacheEntry,
    CacheStats,
    KeyInfo,
    LayerStats,
    TieredCache,
)
from mangacache.infrastructure.cache.image_cache import ImageVariant, ImageVariantCache
from mangacache.infrastructure.cache.memory_store import InMemoryStore
from mangacache.infrastructure.cache.query_cache import (
    CachedQueryExecutor,
    QueryCache,
    QueryCacheConfig,
    QueryCacheStats,
    QueryExecutor,
)
from mangacache.infrastructure.cache.redis_store import RedisStore
from mangacache.infrastructure.cache.store import KeyValueStore
from mangacache.infrastructure.cache.tag_index import TagIndex

__all__ = [
    "BestEffortWriter",
    "CacheCodec",
    "CacheEntry",
    "CacheStats",
    "CachedQueryExecutor",
    "ImageVariant",
    "ImageVariantCache",
    "InMemoryStore",
    "KeyInfo",
    "KeyValueStore",
    "LayerStats",
    "QueryCache",
    "QueryCacheConfig",
    "QueryCacheStats",
    "QueryExecutor",
    "RedisStore",
    "TagIndex",
    "TieredCache",
]
