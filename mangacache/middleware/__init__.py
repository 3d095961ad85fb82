"""HTTP middleware: request ID and the response cache.

Applied in main app; order matters (first added = outermost).
Import and use from mangacache.main.
"""

from mangacache.middleware.http_cache import (
    DEFAULT_CACHED_ROUTES,
    ROUTE_CACHE_CONFIGS,
    CachedRoute,
    HTTPCacheMiddleware,
    RouteCacheConfig,
    cache_invalidation,
)
from mangacache.middleware.request_id import RequestIDMiddleware

__all__ = [
    "DEFAULT_CACHED_ROUTES",
    "ROUTE_CACHE_CONFIGS",
    "CachedRoute",
    "HTTPCacheMiddleware",
    "RequestIDMiddleware",
    "RouteCacheConfig",
    "cache_invalidation",
]
