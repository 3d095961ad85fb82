"""Cache admin API schemas."""

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from mangacache.shared.enums import CacheLayer, QueryOperation

NonEmptyTag = Annotated[str, Field(min_length=1)]


class LayerStatsResponse(BaseModel):
    """Entry count and memory of one layer (None when unreachable)."""

    model_config = ConfigDict(from_attributes=True)

    layer: CacheLayer
    entries: int | None
    memory_bytes: int | None
    available: bool


class QueryCacheStatsResponse(BaseModel):
    hits: int
    misses: int
    invalidations: int
    total: int
    hit_rate: float = Field(..., description="Hits as a percentage of cacheable reads")


class ImageCacheStatsResponse(BaseModel):
    total_images: int
    total_variants: int
    by_resolution: dict[str, int]
    by_format: dict[str, int]


class CacheStatsResponse(BaseModel):
    """Response for GET /cache/stats."""

    layers: list[LayerStatsResponse]
    tag_indexes: int | None
    pending_writes: int
    timestamp: datetime
    query_cache: QueryCacheStatsResponse
    image_cache: ImageCacheStatsResponse | None = None


class KeyInfoResponse(BaseModel):
    """One stored key; value is the decoded envelope or the set members."""

    model_config = ConfigDict(from_attributes=True)

    key: str
    layer: CacheLayer
    ttl: int = Field(..., description="Seconds to expiry; -1 without expiry")
    type: str
    size: int | None
    value: Any = None


class KeyListResponse(BaseModel):
    """Response for GET /cache/keys."""

    layer: CacheLayer
    pattern: str
    total: int = Field(..., description="All keys matching pattern in the layer")
    keys: list[KeyInfoResponse]


class CacheSetRequest(BaseModel):
    """Payload for POST /cache/keys."""

    key: str = Field(..., min_length=1)
    value: Any
    ttl: int | None = Field(default=None, ge=1)
    tags: list[NonEmptyTag] = Field(default_factory=list)
    compress: bool | None = None
    write_to_l2: bool = False


class CacheSetResponse(BaseModel):
    key: str
    stored: bool = True


class TagInvalidationRequest(BaseModel):
    """Payload for POST /cache/invalidate/tags."""

    tags: list[NonEmptyTag] = Field(..., min_length=1)


class InvalidationResponse(BaseModel):
    """Keys invalidated by a tag or model invalidation."""

    invalidated: int
    tags: list[str] = Field(default_factory=list)
    model: str | None = None


class FlushResponse(BaseModel):
    flushed: bool = True


class CleanupResponse(BaseModel):
    removed: int


class ImageCleanupRequest(BaseModel):
    """Payload for POST /cache/cleanup/images; defaults to IMAGE_CLEANUP_MAX_AGE_MS."""

    max_age_ms: int | None = Field(default=None, ge=1)


class WarmupQuery(BaseModel):
    model: str = Field(..., min_length=1)
    operation: QueryOperation
    shape: dict[str, Any] = Field(default_factory=dict)


class WarmupRequest(BaseModel):
    """Payload for POST /cache/warmup; omitted queries run the default warmup set."""

    queries: list[WarmupQuery] | None = None


class WarmupResponse(BaseModel):
    warmed: int
