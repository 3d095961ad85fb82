"""Pydantic request/response schemas for the API."""

from mangacache.schemas.cache import (
    CacheSetRequest,
    CacheStatsResponse,
    KeyInfoResponse,
    KeyListResponse,
    TagInvalidationRequest,
)
from mangacache.schemas.health import HealthResponse, ReadinessResponse
from mangacache.schemas.image import ImageProcessResponse, ImageVariantResponse

__all__ = [
    "CacheSetRequest",
    "CacheStatsResponse",
    "HealthResponse",
    "ImageProcessResponse",
    "ImageVariantResponse",
    "KeyInfoResponse",
    "KeyListResponse",
    "ReadinessResponse",
    "TagInvalidationRequest",
]
