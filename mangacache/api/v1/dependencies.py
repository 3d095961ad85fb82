"""Presentation-layer dependency injection.

Provides FastAPI Depends() for the cache engine and its wrappers, all built
once in the lifespan and read from app.state; routes depend only on these
dependencies. The admin surface requires a bearer token carrying the admin role.
"""

from typing import Annotated, Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mangacache.core.config import get_settings
from mangacache.domain.exceptions import (
    AuthenticationException,
    AuthorizationException,
    ServiceNotConfiguredException,
)
from mangacache.infrastructure.cache import (
    CachedQueryExecutor,
    ImageVariantCache,
    QueryCache,
    TieredCache,
)
from mangacache.infrastructure.security.jwt import token_roles, verify_token


def _state(request: Request, name: str, service: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise ServiceNotConfiguredException(service)
    return value


def get_cache(request: Request) -> TieredCache:
    return _state(request, "cache", "the cache engine")


def get_image_cache(request: Request) -> ImageVariantCache:
    return _state(request, "image_cache", "the image cache (IMAGE_CACHE_ENABLED)")


def get_query_cache(request: Request) -> QueryCache:
    return _state(request, "query_cache", "the query cache")


def get_query_executor(request: Request) -> CachedQueryExecutor:
    return _state(request, "query_executor", "a database (DATABASE_URL)")


_http_bearer = HTTPBearer(auto_error=False)


async def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_http_bearer)],
) -> dict[str, Any]:
    """Return the token payload; raise 401 without a valid token, 403 without the admin role."""
    if credentials is None:
        raise AuthenticationException("Not authenticated")
    try:
        payload = verify_token(credentials.credentials)
    except ValueError as e:
        raise AuthenticationException(str(e)) from e
    role = get_settings().admin_role
    if role not in token_roles(payload):
        raise AuthorizationException(role)
    return payload


CacheDep = Annotated[TieredCache, Depends(get_cache)]
ImageCacheDep = Annotated[ImageVariantCache, Depends(get_image_cache)]
QueryCacheDep = Annotated[QueryCache, Depends(get_query_cache)]
QueryExecutorDep = Annotated[CachedQueryExecutor, Depends(get_query_executor)]
AdminDep = Annotated[dict[str, Any], Depends(require_admin)]
