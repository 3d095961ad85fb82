"""Core constants: cache key prefixes, TTL presets and shared literal values.

Single source of truth for cache key structure (DRY). Used by
infrastructure cache modules and the HTTP middleware.
"""

# Cache key prefixes
CACHE_PREFIX_TAG = "tag"
CACHE_PREFIX_IMAGE = "image"
CACHE_PREFIX_QUERY = "query"
CACHE_PREFIX_HTTP = "http"

# Delimiter for composite keys
CACHE_KEY_SEP = ":"

# Codec payload markers (first byte of every stored value)
CODEC_MARKER_RAW = b"\x00"
CODEC_MARKER_ZLIB = b"\x01"

# TTL presets in seconds, per layer and domain
CACHE_TTL_L1 = {
    "manga": 3600,
    "chapter": 1800,
    "user": 900,
    "search": 300,
    "views": 60,
    "likes": 60,
    "comments": 300,
    "categories": 7200,
    "languages": 7200,
    "discover": 300,
    "analytics": 1800,
}
CACHE_TTL_L2 = {
    "manga": 86400,
    "chapter": 43200,
    "categories": 86400 * 7,
    "languages": 86400 * 7,
    "images": 86400 * 30,
    "analytics": 86400,
}

# Response headers written by the HTTP cache middleware
HEADER_CACHE_STATUS = "X-Cache"
HEADER_CACHE_KEY = "X-Cache-Key"
