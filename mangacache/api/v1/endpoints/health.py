"""Health check endpoints, used for liveness and readiness probes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from mangacache.api.v1.dependencies import CacheDep
from mangacache.schemas.health import HealthResponse, LayerHealth, ReadinessResponse
from mangacache.shared.enums import CacheLayer

router = APIRouter()


@router.get("", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Return simple ok status for liveness."""
    return HealthResponse()


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"description": "A cache layer is unreachable", "model": ReadinessResponse}},
)
async def readiness_check(cache: CacheDep) -> ReadinessResponse | JSONResponse:
    """Return 200 when both layers answered their last command; 503 otherwise.

    Reads degrade to misses while a layer is down, so 503 here means the
    service runs without that layer rather than failing requests.
    """
    layers = [
        LayerHealth(layer=layer.value, available=cache.store_for(layer).is_available())
        for layer in CacheLayer
    ]
    if all(layer.available for layer in layers):
        return ReadinessResponse(layers=layers)
    return JSONResponse(
        status_code=503,
        content=ReadinessResponse(status="degraded", layers=layers).model_dump(),
    )
