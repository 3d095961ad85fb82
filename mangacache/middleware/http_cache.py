"""HTTP response cache middleware.

Serves cached JSON bodies for declared GET routes and populates the cache on
a miss after the response has been sent. Uses raw ASGI (no
BaseHTTPMiddleware) for production-safe streaming and background tasks.

Per request:  HIT  -> cached body (or 304), handler skipped
              MISS -> handler runs -> response sent -> best-effort populate
"""

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from fastapi import BackgroundTasks, Request
from starlette.datastructures import MutableHeaders, QueryParams
from starlette.responses import Response
from starlette.routing import compile_path

from mangacache.core.constants import CACHE_TTL_L1, HEADER_CACHE_KEY, HEADER_CACHE_STATUS
from mangacache.infrastructure.cache.engine import TieredCache
from mangacache.infrastructure.cache.keys import http_key
from mangacache.infrastructure.exceptions import CacheBackendError
from mangacache.infrastructure.security.jwt import caller_identity
from mangacache.middleware.scope import get_header
from mangacache.shared.utils import content_hash, etag_matches, quote_etag

logger = logging.getLogger(__name__)

USER_ID = "user_id"


@dataclass(frozen=True)
class RouteCacheConfig:
    """Caching policy for one route type.

    vary_by names the query parameters folded into the key; USER_ID folds
    in the authenticated caller and makes the response private.
    """

    ttl: int
    tags: tuple[str, ...] = ()
    vary_by: tuple[str, ...] = ()
    compress: bool | None = None
    write_to_l2: bool = False

    @property
    def per_user(self) -> bool:
        return USER_ID in self.vary_by


ROUTE_CACHE_CONFIGS: dict[str, RouteCacheConfig] = {
    "manga": RouteCacheConfig(
        CACHE_TTL_L1["manga"], ("manga",), ("id", "lg", USER_ID), compress=True, write_to_l2=True
    ),
    "discover": RouteCacheConfig(
        CACHE_TTL_L1["discover"], ("discover", "manga"), ("page", "take", "lg", USER_ID)
    ),
    "search": RouteCacheConfig(600, ("search",), ("q", "page", "limit", "lg", "categories")),
    "categories": RouteCacheConfig(86400, ("categories",), ("lg",), write_to_l2=True),
    "user": RouteCacheConfig(1800, ("user",), ("id", USER_ID)),
    "library": RouteCacheConfig(900, ("library", "user"), (USER_ID, "page", "limit", "status")),
}


@dataclass(frozen=True)
class CachedRoute:
    """A GET path template (Starlette syntax, e.g. '/manga/{id}') bound to a route type."""

    path: str
    route_type: str
    config: RouteCacheConfig | None = None
    _regex: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        regex, _, _ = compile_path(self.path)
        object.__setattr__(self, "_regex", regex)

    @property
    def policy(self) -> RouteCacheConfig:
        return self.config or ROUTE_CACHE_CONFIGS[self.route_type]

    def match(self, path: str) -> dict[str, str] | None:
        m = self._regex.match(path)
        return None if m is None else m.groupdict()


DEFAULT_CACHED_ROUTES: tuple[CachedRoute, ...] = (
    CachedRoute("/api/v1/manga/{id}", "manga"),
    CachedRoute("/api/v1/discover/{section}", "discover"),
    CachedRoute("/api/v1/search", "search"),
    CachedRoute("/api/v1/categories", "categories"),
    CachedRoute("/api/v1/users/{id}", "user"),
    CachedRoute("/api/v1/library", "library"),
)


def build_vary(scope: dict, params: dict[str, str], config: RouteCacheConfig) -> dict[str, Any]:
    """Canonical vary-by values of a request: path, path params, declared query params, caller."""
    query = QueryParams(scope.get("query_string", b""))
    selected: dict[str, Any] = {}
    for name in config.vary_by:
        if name == USER_ID:
            continue
        values = query.getlist(name)
        if values:
            selected[name] = values[0] if len(values) == 1 else sorted(values)
    vary: dict[str, Any] = {"path": scope.get("path", ""), "params": params, "query": selected}
    if config.per_user:
        vary[USER_ID] = caller_identity(get_header(scope, "authorization"))
    return vary


def _cache_headers(config: RouteCacheConfig, etag: str, status: str, key: str) -> dict[str, str]:
    visibility = "private" if config.per_user else "public"
    headers = {
        "Cache-Control": f"{visibility}, max-age={config.ttl}",
        "ETag": etag,
        HEADER_CACHE_STATUS: status,
        HEADER_CACHE_KEY: key,
    }
    if config.per_user:
        headers["Vary"] = "Authorization"
    return headers


def _default_cache_getter(scope: dict) -> TieredCache | None:
    app = scope.get("app")
    return getattr(getattr(app, "state", None), "cache", None)


def HTTPCacheMiddleware(
    app: Callable,
    routes: Sequence[CachedRoute] = DEFAULT_CACHED_ROUTES,
    enabled: bool = True,
    get_cache: Callable[[dict], TieredCache | None] = _default_cache_getter,
) -> Callable:
    """Cache JSON bodies of GET requests on declared routes. Raw ASGI.

    Args:
        app: Downstream ASGI app.
        routes: Path templates and their route types.
        enabled: When False every request passes through untouched.
        get_cache: Returns the engine for a request (default: app.state.cache).
    """

    def _match(path: str) -> tuple[CachedRoute, dict[str, str]] | None:
        for route in routes:
            params = route.match(path)
            if params is not None:
                return route, params
        return None

    async def asgi_app(scope: dict, receive: Callable, send: Callable) -> None:
        if not enabled or scope["type"] != "http" or scope.get("method") != "GET":
            await app(scope, receive, send)
            return
        matched = _match(scope.get("path", ""))
        cache = get_cache(scope)
        if matched is None or cache is None:
            await app(scope, receive, send)
            return
        route, params = matched
        config = route.policy
        key = http_key(route.route_type, build_vary(scope, params, config))
        if_none_match = get_header(scope, "if-none-match")

        entry = await cache.get_entry(key)
        cached = entry.value if entry is not None and isinstance(entry.value, dict) else None
        if cached is not None and "body" in cached:
            etag = quote_etag(cached["etag"])
            headers = _cache_headers(config, etag, "HIT", key)
            if etag_matches(if_none_match, etag):
                response = Response(status_code=304, headers=headers)
            else:
                response = Response(
                    content=cached["body"].encode("utf-8"),
                    status_code=200,
                    media_type=cached.get("content_type", "application/json"),
                    headers=headers,
                )
            logger.debug("HTTP cache hit: %s %s", scope.get("path"), entry.layer)
            await response(scope, receive, send)
            return

        await _serve_miss(app, scope, receive, send, cache, config, key, if_none_match)

    return asgi_app


async def _serve_miss(
    app: Callable,
    scope: dict,
    receive: Callable,
    send: Callable,
    cache: TieredCache,
    config: RouteCacheConfig,
    key: str,
    if_none_match: str | None,
) -> None:
    """Run the handler; buffer a 200 JSON body to add validators, then populate."""
    start: dict = {}
    chunks: list[bytes] = []
    cacheable = False

    async def send_wrapper(message: dict) -> None:
        nonlocal start, cacheable
        if message["type"] == "http.response.start":
            message.setdefault("headers", [])
            headers = MutableHeaders(scope=message)
            cacheable = (
                message["status"] == 200
                and headers.get("content-type", "").startswith("application/json")
                and "no-store" not in headers.get("cache-control", "")
            )
            if not cacheable:
                headers[HEADER_CACHE_STATUS] = "BYPASS"
                await send(message)
                return
            start = message
            return
        if message["type"] != "http.response.body" or not cacheable:
            await send(message)
            return
        chunks.append(message.get("body", b""))
        if message.get("more_body", False):
            return
        body = b"".join(chunks)
        digest = content_hash(body)
        etag = quote_etag(digest)
        content_type = MutableHeaders(scope=start).get("content-type", "application/json")
        if etag_matches(if_none_match, etag):
            await send({
                "type": "http.response.start",
                "status": 304,
                "headers": [
                    (k.lower().encode(), v.encode())
                    for k, v in _cache_headers(config, etag, "MISS", key).items()
                ],
            })
            await send({"type": "http.response.body", "body": b"", "more_body": False})
        else:
            headers = MutableHeaders(scope=start)
            for name, value in _cache_headers(config, etag, "MISS", key).items():
                headers[name] = value
            await send(start)
            await send({"type": "http.response.body", "body": body, "more_body": False})
        _populate(cache, config, key, body, digest, content_type)

    await app(scope, receive, send_wrapper)


def _populate(
    cache: TieredCache, config: RouteCacheConfig, key: str, body: bytes, digest: str, content_type: str
) -> None:
    """Schedule the cache write as a best-effort task; the response is already out."""
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Response for %s is not UTF-8; not cached", key)
        return
    value = {"body": text, "etag": digest, "content_type": content_type}
    cache.writer.submit(
        cache.set(
            key,
            value,
            ttl=config.ttl,
            tags=config.tags,
            compress=config.compress,
            write_to_l2=config.write_to_l2,
        ),
        f"HTTP populate {key}",
    )


def cache_invalidation(*tags: str) -> Callable:
    """Dependency factory: invalidate tags after a successful mutating request.

    The invalidation runs as a background task, which FastAPI only executes
    once the handler returned a response (not on exceptions).

    Example:
        @router.post("/manga", dependencies=[Depends(cache_invalidation("manga", "discover"))])
    """

    async def _invalidate_after_response(request: Request, background_tasks: BackgroundTasks) -> None:
        cache: TieredCache | None = getattr(request.app.state, "cache", None)
        if cache is None:
            return
        background_tasks.add_task(_invalidate_tags, cache, list(tags))

    return _invalidate_after_response


async def _invalidate_tags(cache: TieredCache, tags: list[str]) -> None:
    try:
        removed = await cache.invalidate_by_tags(tags)
    except CacheBackendError as e:
        logger.warning("Cache invalidation for tags %s failed: %s", tags, e.message)
        return
    logger.info("Cache invalidated for tags %s (%s keys)", tags, removed)
