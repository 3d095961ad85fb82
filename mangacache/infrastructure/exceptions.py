"""Infrastructure exceptions for the cache backing store, codec and image pipeline.

Cache errors extend MangaCacheException so presentation can map them
to HTTP responses consistently.
"""

from mangacache.domain.exceptions import MangaCacheException, ValidationException


class CacheException(MangaCacheException):
    """Base exception for cache operations."""


class CacheBackendError(CacheException):
    """Backing store unreachable, timed out, or rejected a command.

    Raised by store clients. The engine turns it into a miss on reads and
    drops it on best-effort writes; L1 writes let it reach the caller.
    """

    def __init__(self, operation: str, reason: str, layer: str | None = None) -> None:
        details = {"operation": operation, "reason": reason}
        if layer:
            details["layer"] = layer
        super().__init__(
            f"Cache backend error during {operation}: {reason}",
            "CACHE_BACKEND_ERROR",
            details,
        )


class CodecError(CacheException):
    """Stored bytes could not be decoded (unknown marker, bad zlib stream, bad JSON)."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Cannot decode cached value: {reason}", "CODEC_ERROR", {"reason": reason})


class CacheValidationError(ValidationException):
    """Invalid arguments to a cache operation (empty key, missing value, bad TTL)."""


class UnsupportedVariantError(CacheException):
    """Requested image resolution/format (or profile) is not supported."""

    def __init__(self, kind: str, value: str, supported: list[str]) -> None:
        super().__init__(
            f"Unsupported image {kind}: {value!r}",
            "UNSUPPORTED_VARIANT",
            {"kind": kind, "value": value, "supported": supported},
        )


class ImageProcessingError(CacheException):
    """Deriving or persisting the variant set failed; nothing was kept."""

    def __init__(self, image_id: str, reason: str) -> None:
        super().__init__(
            f"Failed to process image: {image_id}",
            "IMAGE_PROCESSING_ERROR",
            {"image_id": image_id, "reason": reason},
        )
