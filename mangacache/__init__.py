"""manga-cache: multi-tier caching core for the manga API backend."""

__version__ = "1.0.0"
