"""Application lifespan: startup and shutdown.

Single place for all startup/shutdown logic (SRP). Used by main.py;
no business logic here, only wiring of infrastructure (layer stores, cache
engine and its wrappers, periodic sweep, telemetry, DB engine dispose).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from mangacache.core.config import Settings, get_settings
from mangacache.infrastructure.cache import (
    CacheCodec,
    CachedQueryExecutor,
    ImageVariantCache,
    InMemoryStore,
    QueryCache,
    RedisStore,
    TieredCache,
)
from mangacache.infrastructure.exceptions import CacheBackendError

logger = logging.getLogger(__name__)

_DRAIN_TIMEOUT_SECONDS = 5.0


async def build_cache(settings: Settings) -> TieredCache:
    """Create both layer stores and the engine over them.

    With REDIS_ENABLED=false the layers are process-local InMemoryStores
    (single worker only; nothing is shared between processes).
    """
    if settings.redis_enabled:
        l1 = RedisStore("L1", settings.redis_l1_db, settings=settings)
        l2 = RedisStore("L2", settings.redis_l2_db, settings=settings)
        await l1.connect()
        await l2.connect()
    else:
        l1, l2 = InMemoryStore("L1"), InMemoryStore("L2")
        logger.warning("Redis disabled: using process-local in-memory cache layers")
    return TieredCache(
        l1,
        l2,
        codec=CacheCodec(compression_threshold=settings.cache_compression_threshold),
        invalidation_batch_size=settings.cache_invalidation_batch_size,
        default_ttl=settings.cache_default_ttl,
    )


async def run_periodic_cleanup(app: FastAPI, interval_seconds: int, image_max_age_ms: int) -> None:
    """Sweep stale tag-index members (and old image variants) every interval."""
    while True:
        await asyncio.sleep(interval_seconds)
        cache: TieredCache = app.state.cache
        try:
            removed = await cache.cleanup_expired_entries()
            images = 0
            if app.state.image_cache is not None:
                images = await app.state.image_cache.cleanup_old_images(image_max_age_ms)
        except CacheBackendError as e:
            logger.warning("Periodic cache cleanup failed: %s", e.message)
            continue
        except Exception:
            logger.exception("Periodic cache cleanup raised unexpectedly; retrying next interval")
            continue
        logger.info("Periodic cache cleanup: %s index members, %s image variants removed", removed, images)


def _build_query_executor(settings: Settings, query_cache: QueryCache) -> CachedQueryExecutor | None:
    if not settings.database_url:
        return None
    from mangacache.infrastructure.persistence.database import get_session_factory, model_registry
    from mangacache.infrastructure.persistence.query_executor import SQLAlchemyQueryExecutor

    session_factory = get_session_factory()
    if session_factory is None:
        return None
    return CachedQueryExecutor(SQLAlchemyQueryExecutor(session_factory, model_registry()), query_cache)


@asynccontextmanager
async def create_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run startup then yield; on exit run shutdown.

    Startup order: cache engine (unless one was injected on app.state.cache),
    image and query caches, optional query executor, periodic sweep,
    telemetry (if enabled). Shutdown order: sweep cancel, pending L2 writes
    drained, store disconnect, telemetry shutdown, SQL engine dispose.
    """
    settings = get_settings()

    # ---- Startup ----
    if getattr(app.state, "cache", None) is None:
        app.state.cache = await build_cache(settings)
    cache: TieredCache = app.state.cache

    app.state.image_cache = ImageVariantCache(cache) if settings.image_cache_enabled else None
    app.state.query_cache = QueryCache(cache, enabled=settings.query_cache_enabled)
    app.state.query_executor = _build_query_executor(settings, app.state.query_cache)

    if settings.cache_cleanup_interval_seconds > 0:
        app.state.cleanup_task = asyncio.create_task(
            run_periodic_cleanup(
                app, settings.cache_cleanup_interval_seconds, settings.image_cleanup_max_age_ms
            )
        )
    else:
        app.state.cleanup_task = None

    if settings.telemetry_enabled:
        from mangacache.shared.telemetry.telemetry import TelemetryConfig, set_telemetry

        telemetry = TelemetryConfig.from_settings(settings)
        telemetry.setup_telemetry(
            exporter_type=settings.telemetry_exporter,
            otlp_endpoint=settings.telemetry_otlp_endpoint,
            sample_rate=settings.telemetry_sample_rate,
        )
        set_telemetry(telemetry)
        telemetry.instrument(app)
        logger.info("Telemetry initialized")

    yield

    # ---- Shutdown ----
    cleanup_task = getattr(app.state, "cleanup_task", None)
    if cleanup_task is not None:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
        logger.info("Periodic cache cleanup stopped")

    await cache.drain(timeout=_DRAIN_TIMEOUT_SECONDS)
    for store in (cache.l1, cache.l2):
        if isinstance(store, RedisStore):
            await store.disconnect()
    logger.info("Cache layers disconnected")

    from mangacache.shared.telemetry.telemetry import get_telemetry, set_telemetry

    telemetry_instance = get_telemetry()
    if telemetry_instance is not None:
        telemetry_instance.shutdown()
        set_telemetry(None)
        logger.info("Telemetry shutdown complete")

    from mangacache.infrastructure.persistence.database import dispose_engine

    await dispose_engine()
