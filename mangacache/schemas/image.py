"""Image variant API schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from mangacache.shared.enums import ImageFormat


class ImageVariantResponse(BaseModel):
    """Metadata of one cached variant (the bytes are served by GET /images/{id})."""

    model_config = ConfigDict(from_attributes=True)

    image_id: str
    resolution: str
    format: ImageFormat
    width: int
    height: int
    size: int = Field(..., description="Encoded size in bytes")
    etag: str
    last_modified: datetime


class ImageProcessResponse(BaseModel):
    """Response for POST /images/{id}: every variant written for the image."""

    image_id: str
    profile: str
    variants: list[ImageVariantResponse]


class ImageInvalidationResponse(BaseModel):
    image_id: str
    invalidated: int
