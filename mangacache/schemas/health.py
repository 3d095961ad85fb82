"""Health check API schemas."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for GET /health (liveness)."""

    status: str = Field(default="ok", description="Service status")


class LayerHealth(BaseModel):
    layer: str
    available: bool


class ReadinessResponse(BaseModel):
    """Response for GET /health/ready. 'degraded' when a layer is unreachable."""

    status: str = Field(default="ok", description="Readiness status")
    layers: list[LayerHealth] = Field(default_factory=list)
