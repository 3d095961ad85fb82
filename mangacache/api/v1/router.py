"""API v1 router aggregation.

Includes all endpoint modules with consistent prefix and tags. All routes
use dependencies from mangacache.api.v1.dependencies (no manual cache construction).
"""

from fastapi import APIRouter

from mangacache.api.v1.endpoints import cache_admin, health, images

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(cache_admin.router, prefix="/cache", tags=["cache"])
api_router.include_router(images.router, prefix="/images", tags=["images"])
