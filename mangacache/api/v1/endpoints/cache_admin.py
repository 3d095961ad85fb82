"""Cache admin API: stats, key inspection, manual writes, invalidation, sweeps, warmup.

Every route requires an admin bearer token. Store failures surface as 503
through the CacheBackendError handler.
"""

from typing import Annotated

from fastapi import APIRouter, Query, Request

from mangacache.api.v1.dependencies import (
    AdminDep,
    CacheDep,
    ImageCacheDep,
    QueryCacheDep,
    QueryExecutorDep,
)
from mangacache.core.config import get_settings
from mangacache.core.limiter import limit_admin_writes
from mangacache.domain.exceptions import ResourceNotFoundException
from mangacache.infrastructure.exceptions import CacheBackendError
from mangacache.schemas.cache import (
    CacheSetRequest,
    CacheSetResponse,
    CacheStatsResponse,
    CleanupResponse,
    FlushResponse,
    ImageCacheStatsResponse,
    ImageCleanupRequest,
    InvalidationResponse,
    KeyInfoResponse,
    KeyListResponse,
    LayerStatsResponse,
    QueryCacheStatsResponse,
    TagInvalidationRequest,
    WarmupRequest,
    WarmupResponse,
)
from mangacache.shared.enums import CacheLayer
from mangacache.shared.telemetry import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    request: Request,
    _: AdminDep,
    cache: CacheDep,
    query_cache: QueryCacheDep,
) -> CacheStatsResponse:
    """Layer sizes, tag index count, pending L2 writes, query and image cache counters."""
    stats = await cache.get_stats()
    image_stats = None
    image_cache = getattr(request.app.state, "image_cache", None)
    if image_cache is not None:
        try:
            image_stats = ImageCacheStatsResponse(**await image_cache.get_stats())
        except CacheBackendError as e:
            logger.warning("Image cache stats unavailable: %s", e.message)
    return CacheStatsResponse(
        layers=[LayerStatsResponse.model_validate(layer) for layer in stats.layers],
        tag_indexes=stats.tag_indexes,
        pending_writes=stats.pending_writes,
        timestamp=stats.timestamp,
        query_cache=QueryCacheStatsResponse(**query_cache.stats().to_dict()),
        image_cache=image_stats,
    )


@router.get("/keys", response_model=KeyListResponse)
async def list_cache_keys(
    _: AdminDep,
    cache: CacheDep,
    pattern: str = "*",
    layer: CacheLayer = CacheLayer.L2,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> KeyListResponse:
    """List up to limit keys of a layer matching a glob pattern."""
    infos = await cache.list_keys(pattern, layer, limit=limit)
    return KeyListResponse(
        layer=layer,
        pattern=pattern,
        total=await cache.count_keys(pattern, layer),
        keys=[KeyInfoResponse.model_validate(info) for info in infos],
    )


@router.get("/keys/{key:path}", response_model=KeyInfoResponse)
async def get_cache_key(
    key: str,
    _: AdminDep,
    cache: CacheDep,
    layer: CacheLayer = CacheLayer.L2,
) -> KeyInfoResponse:
    """Return one key with its TTL, type, size and decoded value."""
    info = await cache.get_key_info(key, layer)
    if info is None:
        raise ResourceNotFoundException("cache_key", key)
    return KeyInfoResponse.model_validate(info)


@router.post("/keys", response_model=CacheSetResponse, status_code=201)
@limit_admin_writes
async def set_cache_key(
    request: Request,
    _: AdminDep,
    body: CacheSetRequest,
    cache: CacheDep,
) -> CacheSetResponse:
    """Store a value manually (L1, and L2 when write_to_l2)."""
    await cache.set(
        body.key,
        body.value,
        ttl=body.ttl,
        tags=body.tags,
        compress=body.compress,
        write_to_l2=body.write_to_l2,
    )
    return CacheSetResponse(key=body.key)


@router.post("/invalidate/tags", response_model=InvalidationResponse)
@limit_admin_writes
async def invalidate_tags(
    request: Request,
    _: AdminDep,
    body: TagInvalidationRequest,
    cache: CacheDep,
) -> InvalidationResponse:
    """Delete every entry carrying any of the tags."""
    removed = await cache.invalidate_by_tags(body.tags)
    return InvalidationResponse(invalidated=removed, tags=body.tags)


@router.delete("/models/{model}", response_model=InvalidationResponse)
@limit_admin_writes
async def invalidate_model(
    request: Request,
    _: AdminDep,
    model: str,
    query_cache: QueryCacheDep,
) -> InvalidationResponse:
    """Drop every cached query result of a model."""
    removed = await query_cache.invalidate_model(model)
    return InvalidationResponse(
        invalidated=removed, tags=query_cache.invalidation_tags(model), model=model
    )


@router.delete("/all", response_model=FlushResponse)
@limit_admin_writes
async def flush_cache(request: Request, _: AdminDep, cache: CacheDep) -> FlushResponse:
    """Empty both layers, tag indexes included."""
    await cache.flush_all()
    return FlushResponse()


@router.post("/cleanup/expired", response_model=CleanupResponse)
@limit_admin_writes
async def cleanup_expired(request: Request, _: AdminDep, cache: CacheDep) -> CleanupResponse:
    """Remove tag index members whose entries expired in every layer."""
    return CleanupResponse(removed=await cache.cleanup_expired_entries())


@router.post("/cleanup/images", response_model=CleanupResponse)
@limit_admin_writes
async def cleanup_images(
    request: Request,
    _: AdminDep,
    image_cache: ImageCacheDep,
    body: ImageCleanupRequest | None = None,
) -> CleanupResponse:
    """Delete image variants older than max_age_ms."""
    max_age_ms = body.max_age_ms if body and body.max_age_ms else get_settings().image_cleanup_max_age_ms
    return CleanupResponse(removed=await image_cache.cleanup_old_images(max_age_ms))


@router.post("/warmup", response_model=WarmupResponse)
@limit_admin_writes
async def warmup(
    request: Request,
    _: AdminDep,
    executor: QueryExecutorDep,
    body: WarmupRequest | None = None,
) -> WarmupResponse:
    """Run common reads so their results are cached."""
    if body is None or body.queries is None:
        warmed = await executor.warmup()
    else:
        warmed = await executor.warmup([(q.model, q.operation, q.shape) for q in body.queries])
    return WarmupResponse(warmed=warmed)
