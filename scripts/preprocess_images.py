"""Warm the image variant cache from files on disk.

Usage:
    python -m scripts.preprocess_images [profile] [directory]
profile defaults to manga_cover, directory to IMAGE_PREPROCESS_DIR. Each file
stem is used as the image id. Requires the Redis layers (or REDIS_ENABLED=false
for a dry run against process-local layers).
"""

import asyncio
import sys

from mangacache.core.config import get_settings
from mangacache.core.lifespan import build_cache
from mangacache.infrastructure.cache import ImageVariantCache, RedisStore
from mangacache.infrastructure.exceptions import UnsupportedVariantError
from mangacache.shared.telemetry.logging import setup_logging


async def main() -> None:
    """Render and cache every image of the directory under one profile."""
    setup_logging()
    settings = get_settings()
    profile = sys.argv[1] if len(sys.argv) > 1 else "manga_cover"
    directory = sys.argv[2] if len(sys.argv) > 2 else settings.image_preprocess_dir

    cache = await build_cache(settings)
    try:
        processed = await ImageVariantCache(cache).preprocess_directory(directory, profile)
    except UnsupportedVariantError as e:
        print(e.message, file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError:
        print(f"Directory not found: {directory}", file=sys.stderr)
        sys.exit(1)
    finally:
        await cache.drain()
        for store in (cache.l1, cache.l2):
            if isinstance(store, RedisStore):
                await store.disconnect()

    print(f"Done. Processed {processed} image(s) from {directory} with profile {profile}")


if __name__ == "__main__":
    asyncio.run(main())
