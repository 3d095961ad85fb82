"""Serialization and compression codec for cached values.

Values are stored as compact UTF-8 JSON behind a one-byte marker:
CODEC_MARKER_RAW for plain JSON, CODEC_MARKER_ZLIB for zlib-compressed JSON.
The marker makes decode() self-describing, so entries written with or
without compression (or by a deployment with a different threshold) are
always readable.
"""

import json
import zlib
from typing import Any

from mangacache.core.constants import CODEC_MARKER_RAW, CODEC_MARKER_ZLIB
from mangacache.infrastructure.exceptions import CodecError

DEFAULT_COMPRESSION_THRESHOLD = 1024


class CacheCodec:
    """Encode arbitrary JSON-representable values to bytes and back."""

    def __init__(
        self,
        compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD,
        compression_level: int = 6,
    ) -> None:
        """Initialize the codec.

        Args:
            compression_threshold: Serialized size in bytes above which
                compression is attempted without being forced.
            compression_level: zlib level 1-9.
        """
        self.compression_threshold = compression_threshold
        self.compression_level = compression_level

    def encode(self, value: Any, *, force_compress: bool = False, allow_compress: bool = True) -> bytes:
        """Serialize value, compressing when forced or above the threshold.

        The compressed form is kept only if it is actually smaller. With
        allow_compress=False the raw form is always stored (payloads that are
        already compressed, such as encoded images).

        Raises:
            CodecError: If value is not JSON-representable.
        """
        try:
            raw = json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False).encode(
                "utf-8"
            )
        except (TypeError, ValueError) as e:
            raise CodecError(f"value is not JSON-serializable: {e}") from e
        if allow_compress and (force_compress or len(raw) > self.compression_threshold):
            compressed = zlib.compress(raw, self.compression_level)
            if len(compressed) < len(raw):
                return CODEC_MARKER_ZLIB + compressed
        return CODEC_MARKER_RAW + raw

    def decode(self, data: bytes) -> Any:
        """Inverse of encode().

        Raises:
            CodecError: On an empty payload, unknown marker, corrupt zlib
                stream, or invalid JSON.
        """
        if not data:
            raise CodecError("empty payload")
        marker, body = data[:1], data[1:]
        if marker == CODEC_MARKER_ZLIB:
            try:
                body = zlib.decompress(body)
            except zlib.error as e:
                raise CodecError(f"corrupt zlib stream: {e}") from e
        elif marker != CODEC_MARKER_RAW:
            raise CodecError(f"unknown marker byte {marker!r}")
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CodecError(f"invalid JSON: {e}") from e

    @staticmethod
    def is_compressed(data: bytes) -> bool:
        """Return True if data carries the compressed marker."""
        return data[:1] == CODEC_MARKER_ZLIB
