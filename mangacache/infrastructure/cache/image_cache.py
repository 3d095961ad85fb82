"""Derived-image variant cache on top of the tiered cache engine.

Each variant is stored under image:<id>:<resolution>:<format> with the profile
TTL, the profile tags plus image:<id>, no compression, and a best-effort copy
in L2. Processing is all-or-nothing per image id: every variant is rendered
before anything is written, and a failed write rolls the image back.
"""

import asyncio
import base64
import logging
import os
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from mangacache.infrastructure.cache.engine import TieredCache
from mangacache.infrastructure.cache.images import (
    IMAGE_PROFILES,
    IMAGE_RESOLUTIONS,
    ImageProfile,
    RenderedVariant,
    parse_format,
    parse_resolution,
    render_variants,
)
from mangacache.infrastructure.cache.keys import image_key, image_pattern, image_tag
from mangacache.infrastructure.exceptions import (
    CacheBackendError,
    CacheValidationError,
    ImageProcessingError,
    UnsupportedVariantError,
)
from mangacache.shared.enums import CacheLayer, ImageFormat
from mangacache.shared.telemetry import traced
from mangacache.shared.utils import content_hash, quote_etag, utc_now

logger = logging.getLogger(__name__)

IMAGE_FILE_SUFFIXES = frozenset({".jpg", ".jpeg", ".png", ".webp", ".avif"})


@dataclass(frozen=True)
class ImageVariant:
    """One cached rendition with the metadata needed for HTTP validators."""

    image_id: str
    resolution: str
    format: ImageFormat
    data: bytes
    width: int
    height: int
    etag: str
    last_modified: datetime

    @property
    def content_type(self) -> str:
        return self.format.content_type

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_rendered(
        cls, image_id: str, rendered: RenderedVariant, last_modified: datetime
    ) -> "ImageVariant":
        return cls(
            image_id=image_id,
            resolution=rendered.resolution,
            format=rendered.format,
            data=rendered.data,
            width=rendered.width,
            height=rendered.height,
            etag=content_hash(rendered.data),
            last_modified=last_modified,
        )

    def to_dict(self) -> dict[str, Any]:
        """Cache payload: base64 data plus metadata."""
        return {
            "image_id": self.image_id,
            "resolution": self.resolution,
            "format": self.format.value,
            "data": base64.b64encode(self.data).decode("ascii"),
            "content_type": self.content_type,
            "size": self.size,
            "width": self.width,
            "height": self.height,
            "etag": self.etag,
            "last_modified": self.last_modified.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ImageVariant":
        """Inverse of to_dict().

        Raises:
            KeyError, ValueError: If the payload is missing fields or malformed.
        """
        return cls(
            image_id=payload["image_id"],
            resolution=payload["resolution"],
            format=ImageFormat(payload["format"]),
            data=base64.b64decode(payload["data"], validate=True),
            width=int(payload["width"]),
            height=int(payload["height"]),
            etag=payload["etag"],
            last_modified=datetime.fromisoformat(payload["last_modified"]),
        )

    @property
    def quoted_etag(self) -> str:
        return quote_etag(self.etag)


def _validate_image_id(image_id: str) -> None:
    try:
        image_tag(image_id)
    except ValueError as e:
        raise CacheValidationError(str(e), field="image_id") from e


class ImageVariantCache:
    """Process, serve, invalidate and sweep derived image variants."""

    def __init__(self, cache: TieredCache, profiles: dict[str, ImageProfile] | None = None) -> None:
        self.cache = cache
        self.profiles = profiles or IMAGE_PROFILES
        self._inflight: dict[str, asyncio.Task[list[ImageVariant]]] = {}

    def get_profile(self, profile: str | ImageProfile) -> ImageProfile:
        """Resolve a profile name; ImageProfile instances pass through."""
        if isinstance(profile, ImageProfile):
            return profile
        resolved = self.profiles.get(profile)
        if resolved is None:
            raise UnsupportedVariantError("profile", profile, sorted(self.profiles))
        return resolved

    @traced("image_cache.process_and_cache_image")
    async def process_and_cache_image(
        self, image_id: str, source: bytes, profile: str | ImageProfile
    ) -> list[ImageVariant]:
        """Render and store every variant of profile for image_id.

        Concurrent calls for the same image_id share the job already in
        flight (and its result); the later caller's source is not used.

        Returns:
            The stored variants.

        Raises:
            CacheValidationError: If image_id is empty or contains ':'.
            UnsupportedVariantError: If the profile is unknown.
            ImageProcessingError: If rendering fails (nothing is written) or a
                write fails (already written variants are removed).
        """
        _validate_image_id(image_id)
        resolved = self.get_profile(profile)
        task = self._inflight.get(image_id)
        if task is not None:
            logger.debug("Joining in-flight processing of image %s", image_id)
        else:
            task = asyncio.get_running_loop().create_task(self._process(image_id, source, resolved))
            self._inflight[image_id] = task
            task.add_done_callback(lambda t: self._forget(image_id, t))
        # Shielded so one cancelled caller does not abort the job for the others.
        return await asyncio.shield(task)

    def _forget(self, image_id: str, task: asyncio.Task[list[ImageVariant]]) -> None:
        if self._inflight.get(image_id) is task:
            del self._inflight[image_id]
        if not task.cancelled() and task.exception() is not None:
            # Retrieved here so a failure nobody awaited is not reported as unhandled.
            logger.debug("Processing of image %s failed: %s", image_id, task.exception())

    async def _process(self, image_id: str, source: bytes, profile: ImageProfile) -> list[ImageVariant]:
        rendered = await asyncio.to_thread(render_variants, image_id, source, profile, IMAGE_RESOLUTIONS)
        last_modified = utc_now().replace(microsecond=0)
        variants = [ImageVariant.from_rendered(image_id, r, last_modified) for r in rendered]
        tags = [*profile.tags, image_tag(image_id)]
        try:
            for variant in variants:
                await self.cache.set(
                    image_key(image_id, variant.resolution, variant.format.value),
                    variant.to_dict(),
                    ttl=profile.ttl,
                    tags=tags,
                    compress=False,
                    write_to_l2=True,
                )
        except CacheBackendError as e:
            await self._rollback(image_id)
            raise ImageProcessingError(image_id, f"storing variants failed: {e.message}") from e
        logger.info(
            "Cached %s variants of image %s (profile=%s)", len(variants), image_id, profile.name
        )
        return variants

    async def _rollback(self, image_id: str) -> None:
        # Pending L2 copies must land before the tag sweep or they would survive it.
        await self.cache.drain()
        try:
            await self.cache.invalidate_by_tags([image_tag(image_id)])
        except CacheBackendError:
            logger.exception("Rollback of image %s incomplete; variants may remain until TTL", image_id)

    async def get_cached_image(
        self,
        image_id: str,
        resolution: str = "medium",
        format: str = "webp",
        *,
        allow_fallback: bool = False,
    ) -> ImageVariant | None:
        """Return the cached variant, or None if it is not cached.

        Args:
            image_id: Image identifier.
            resolution: One of IMAGE_RESOLUTIONS.
            format: One of ImageFormat.
            allow_fallback: On a miss, serve another format of the same resolution.

        Raises:
            UnsupportedVariantError: For an unknown resolution or format.
        """
        _validate_image_id(image_id)
        parse_resolution(resolution)
        requested = parse_format(format)
        candidates = [requested]
        if allow_fallback:
            candidates += [f for f in ImageFormat if f != requested]
        for fmt in candidates:
            key = image_key(image_id, resolution, fmt.value)
            payload = await self.cache.get(key)
            if payload is None:
                continue
            try:
                variant = ImageVariant.from_dict(payload)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Cached image %s is malformed, treated as miss: %s", key, e)
                continue
            if fmt != requested:
                logger.debug("Serving %s as fallback for %s/%s", key, resolution, requested.value)
            return variant
        return None

    async def invalidate_image(self, image_id: str) -> int:
        """Remove every variant of image_id; return the number of keys removed."""
        _validate_image_id(image_id)
        removed = await self.cache.invalidate_by_tags([image_tag(image_id)])
        logger.info("Invalidated %s cached variants of image %s", removed, image_id)
        return removed

    @traced("image_cache.cleanup_old_images")
    async def cleanup_old_images(self, max_age_ms: int) -> int:
        """Delete image variants in L2 whose envelope is older than max_age_ms.

        Independent of TTL: intended for long-lived, persistent L2 stores.
        The L1 copy, if any, is deleted with it.

        Returns:
            Number of variants deleted.
        """
        if max_age_ms <= 0:
            raise CacheValidationError("max_age_ms must be positive", field="max_age_ms")
        cutoff = self.cache.clock_ms() - max_age_ms
        removed = 0
        async for entry in self.cache.iter_entries(image_pattern(), CacheLayer.L2):
            if entry.created_at >= cutoff:
                continue
            try:
                await self.cache.delete(entry.key)
            except CacheBackendError as e:
                logger.warning("Could not delete old image %s: %s", entry.key, e.message)
                continue
            removed += 1
        logger.info("Image cleanup removed %s variants older than %s ms", removed, max_age_ms)
        return removed

    async def preprocess_directory(self, directory: str | os.PathLike[str], profile: str) -> int:
        """Process every image file in directory; the file stem is the image id.

        Per-file failures are logged and skipped.

        Returns:
            Number of images processed successfully.

        Raises:
            UnsupportedVariantError: If the profile is unknown.
            FileNotFoundError: If directory does not exist.
        """
        resolved = self.get_profile(profile)
        names = await aiofiles.os.listdir(directory)
        files = sorted(
            Path(directory) / name for name in names if Path(name).suffix.lower() in IMAGE_FILE_SUFFIXES
        )
        logger.info("Preprocessing %s images from %s", len(files), directory)
        processed = 0
        for path in files:
            try:
                async with aiofiles.open(path, "rb") as f:
                    source = await f.read()
                await self.process_and_cache_image(path.stem, source, resolved)
            except (OSError, CacheValidationError, ImageProcessingError, UnsupportedVariantError) as e:
                logger.error("Preprocessing %s failed: %s", path.name, e)
                continue
            processed += 1
        logger.info("Preprocessing of %s finished: %s/%s images", directory, processed, len(files))
        return processed

    async def get_stats(self) -> dict[str, Any]:
        """Count cached variants in L2 by resolution and format."""
        by_resolution: Counter[str] = Counter()
        by_format: Counter[str] = Counter()
        image_ids: set[str] = set()
        for key in await self.cache.store_for(CacheLayer.L2).scan_keys(image_pattern()):
            parts = key.split(":")
            if len(parts) != 4:
                continue
            _, image_id, resolution, fmt = parts
            image_ids.add(image_id)
            by_resolution[resolution] += 1
            by_format[fmt] += 1
        return {
            "total_images": len(image_ids),
            "total_variants": sum(by_format.values()),
            "by_resolution": dict(by_resolution),
            "by_format": dict(by_format),
        }
