"""Image variant API: serve cached variants with validators, process uploads, invalidate.

GET answers 304 when If-None-Match matches the ETag, or when the variant is
not newer than If-Modified-Since. A variant that is not cached is a 404; the
host application decides whether to (re)process the original.
"""

from typing import Annotated

from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import Response

from mangacache.api.v1.dependencies import AdminDep, ImageCacheDep
from mangacache.core.constants import HEADER_CACHE_STATUS
from mangacache.core.limiter import limit_image_uploads
from mangacache.domain.exceptions import ResourceNotFoundException, ValidationException
from mangacache.infrastructure.cache.image_cache import ImageVariant
from mangacache.schemas.image import (
    ImageInvalidationResponse,
    ImageProcessResponse,
    ImageVariantResponse,
)
from mangacache.shared.telemetry import get_logger
from mangacache.shared.utils import etag_matches, http_date, parse_http_date

logger = get_logger(__name__)

router = APIRouter()

IMAGE_MAX_AGE_SECONDS = 86400
MAX_UPLOAD_BYTES = 20 * 1024 * 1024


def _variant_headers(variant: ImageVariant) -> dict[str, str]:
    return {
        "Cache-Control": f"public, max-age={IMAGE_MAX_AGE_SECONDS}",
        "ETag": variant.quoted_etag,
        "Last-Modified": http_date(variant.last_modified),
        HEADER_CACHE_STATUS: "HIT",
        "X-Image-Width": str(variant.width),
        "X-Image-Height": str(variant.height),
    }


def _not_modified(
    variant: ImageVariant, if_none_match: str | None, if_modified_since: str | None
) -> bool:
    if if_none_match:
        # If-None-Match takes precedence; If-Modified-Since is then ignored.
        return etag_matches(if_none_match, variant.quoted_etag)
    since = parse_http_date(if_modified_since)
    return since is not None and variant.last_modified <= since


@router.get("/{image_id}")
async def get_image(
    image_id: str,
    image_cache: ImageCacheDep,
    resolution: str = "medium",
    format: str = "webp",
    fallback: bool = False,
    if_none_match: Annotated[str | None, Header()] = None,
    if_modified_since: Annotated[str | None, Header()] = None,
) -> Response:
    """Serve a cached variant of image_id."""
    variant = await image_cache.get_cached_image(
        image_id, resolution, format, allow_fallback=fallback
    )
    if variant is None:
        logger.debug("Image variant not cached: %s/%s/%s", image_id, resolution, format)
        raise ResourceNotFoundException("image_variant", f"{image_id}/{resolution}/{format}")
    headers = _variant_headers(variant)
    if _not_modified(variant, if_none_match, if_modified_since):
        return Response(status_code=304, headers=headers)
    return Response(content=variant.data, media_type=variant.content_type, headers=headers)


def _check_upload_size(size: int) -> None:
    if size > MAX_UPLOAD_BYTES:
        raise ValidationException(
            f"Image exceeds the {MAX_UPLOAD_BYTES} byte upload limit", field="body"
        )


@router.post("/{image_id}", response_model=ImageProcessResponse, status_code=201)
@limit_image_uploads
async def process_image(
    request: Request,
    image_id: str,
    _: AdminDep,
    image_cache: ImageCacheDep,
    profile: Annotated[str, Query(min_length=1)] = "manga_cover",
) -> ImageProcessResponse:
    """Render every variant of the request body (raw image bytes) under a profile."""
    # Reject oversized uploads before buffering when the client declares a length.
    content_length = request.headers.get("content-length", "")
    if content_length.isdigit():
        _check_upload_size(int(content_length))
    source = await request.body()
    if not source:
        raise ValidationException("Request body must contain the image bytes", field="body")
    _check_upload_size(len(source))
    variants = await image_cache.process_and_cache_image(image_id, source, profile)
    return ImageProcessResponse(
        image_id=image_id,
        profile=profile,
        variants=[ImageVariantResponse.model_validate(v) for v in variants],
    )


@router.delete("/{image_id}", response_model=ImageInvalidationResponse)
async def invalidate_image(
    image_id: str,
    _: AdminDep,
    image_cache: ImageCacheDep,
) -> ImageInvalidationResponse:
    """Remove every cached variant of image_id."""
    removed = await image_cache.invalidate_image(image_id)
    return ImageInvalidationResponse(image_id=image_id, invalidated=removed)
