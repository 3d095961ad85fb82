"""Image variant rendering with Pillow: resolutions, profiles and the renderer.

render_variants() is synchronous and CPU-bound; callers run it in a worker
thread (asyncio.to_thread). It renders the whole (resolution x format) set or
raises, so a corrupt source never yields a partial set.
"""

import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from mangacache.core.constants import CACHE_TTL_L2
from mangacache.infrastructure.exceptions import ImageProcessingError, UnsupportedVariantError
from mangacache.shared.enums import ImageFormat

logger = logging.getLogger(__name__)

# Decoded pixel dimensions above this are rejected before resizing.
MAX_IMAGE_DIMENSION = 10_000


@dataclass(frozen=True)
class ImageResolution:
    """Target box for a variant. width 0 keeps the source size."""

    name: str
    width: int
    height: int | None
    quality: int
    progressive: bool = True


@dataclass(frozen=True)
class ImageProfile:
    """Named set of resolutions and formats produced for one kind of image."""

    name: str
    ttl: int
    tags: tuple[str, ...]
    resolutions: tuple[str, ...]
    formats: tuple[ImageFormat, ...]


@dataclass(frozen=True)
class RenderedVariant:
    resolution: str
    format: ImageFormat
    data: bytes
    width: int
    height: int


IMAGE_RESOLUTIONS: dict[str, ImageResolution] = {
    "thumbnail": ImageResolution("thumbnail", 150, 200, 80),
    "small": ImageResolution("small", 300, 400, 85),
    "medium": ImageResolution("medium", 600, 800, 90),
    "large": ImageResolution("large", 1200, 1600, 95),
    "original": ImageResolution("original", 0, None, 95),
}

IMAGE_PROFILES: dict[str, ImageProfile] = {
    "manga_cover": ImageProfile(
        name="manga_cover",
        ttl=86400 * 7,
        tags=("images", "manga"),
        resolutions=("thumbnail", "small", "medium", "large"),
        formats=(ImageFormat.WEBP, ImageFormat.JPEG),
    ),
    "chapter_page": ImageProfile(
        name="chapter_page",
        ttl=CACHE_TTL_L2["images"],
        tags=("images", "chapter"),
        resolutions=("medium", "large", "original"),
        formats=(ImageFormat.WEBP, ImageFormat.JPEG),
    ),
    "wallpaper": ImageProfile(
        name="wallpaper",
        ttl=86400 * 14,
        tags=("images", "wallpaper"),
        resolutions=("small", "medium", "large", "original"),
        formats=(ImageFormat.WEBP, ImageFormat.JPEG, ImageFormat.PNG),
    ),
    "avatar": ImageProfile(
        name="avatar",
        ttl=86400 * 3,
        tags=("images", "user"),
        resolutions=("thumbnail", "small", "medium"),
        formats=(ImageFormat.WEBP, ImageFormat.JPEG),
    ),
}


def parse_resolution(name: str) -> ImageResolution:
    """Look up a resolution by name, raising UnsupportedVariantError if unknown."""
    resolution = IMAGE_RESOLUTIONS.get(name)
    if resolution is None:
        raise UnsupportedVariantError("resolution", name, list(IMAGE_RESOLUTIONS))
    return resolution


def parse_format(name: str) -> ImageFormat:
    """Look up an output format by name, raising UnsupportedVariantError if unknown."""
    try:
        return ImageFormat(name.lower())
    except ValueError:
        raise UnsupportedVariantError("format", name, ImageFormat.values()) from None


def _check_dimensions(image_id: str, width: int, height: int) -> None:
    if width <= 0 or height <= 0:
        raise ImageProcessingError(image_id, f"invalid dimensions {width}x{height}")
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        raise ImageProcessingError(
            image_id,
            f"dimensions too large: {width}x{height} (max {MAX_IMAGE_DIMENSION}x{MAX_IMAGE_DIMENSION})",
        )


def _open_source(image_id: str, source: bytes) -> Image.Image:
    if not source:
        raise ImageProcessingError(image_id, "source image is empty")
    try:
        img = Image.open(io.BytesIO(source))
        _check_dimensions(image_id, *img.size)
        img.load()
    except ImageProcessingError:
        raise
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageProcessingError(image_id, f"cannot decode source image: {e}") from e
    img = ImageOps.exif_transpose(img)
    has_alpha = img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info)
    return img.convert("RGBA" if has_alpha else "RGB")


def _resize(img: Image.Image, resolution: ImageResolution) -> Image.Image:
    if resolution.width <= 0:
        return img
    height = resolution.height or max(1, round(img.height * resolution.width / img.width))
    # Cover fit: fill the box, crop the overflow around the centre.
    return ImageOps.fit(img, (resolution.width, height), Image.Resampling.LANCZOS)


def _encode(img: Image.Image, fmt: ImageFormat, resolution: ImageResolution) -> bytes:
    buffer = io.BytesIO()
    if fmt == ImageFormat.JPEG:
        img.convert("RGB").save(
            buffer, "JPEG", quality=resolution.quality, progressive=resolution.progressive, optimize=True
        )
    elif fmt == ImageFormat.PNG:
        img.save(buffer, "PNG", optimize=True)
    else:
        img.save(buffer, "WEBP", quality=resolution.quality, method=4)
    return buffer.getvalue()


def render_variants(
    image_id: str,
    source: bytes,
    profile: ImageProfile,
    resolutions: dict[str, ImageResolution] | None = None,
) -> list[RenderedVariant]:
    """Decode source once and render every (resolution, format) of profile.

    Args:
        image_id: Identifier used in error details and logs.
        source: Encoded source image (any format Pillow can read).
        profile: Resolutions and formats to produce.
        resolutions: Resolution table; defaults to IMAGE_RESOLUTIONS.

    Returns:
        One RenderedVariant per (resolution, format), in profile order.

    Raises:
        ImageProcessingError: On an empty, corrupt or oversized source, or if
            any variant fails to encode.
    """
    table = resolutions or IMAGE_RESOLUTIONS
    source_img = _open_source(image_id, source)
    variants: list[RenderedVariant] = []
    for resolution_name in profile.resolutions:
        resolution = table[resolution_name]
        resized = _resize(source_img, resolution)
        for fmt in profile.formats:
            try:
                data = _encode(resized, fmt, resolution)
            except (OSError, ValueError) as e:
                raise ImageProcessingError(
                    image_id, f"encoding {resolution_name}/{fmt.value} failed: {e}"
                ) from e
            variants.append(
                RenderedVariant(
                    resolution=resolution_name,
                    format=fmt,
                    data=data,
                    width=resized.width,
                    height=resized.height,
                )
            )
    logger.debug("Rendered %s variants for image %s", len(variants), image_id)
    return variants
