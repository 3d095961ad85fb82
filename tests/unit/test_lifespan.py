"""Lifespan wiring: store selection, service state, periodic sweep and shutdown."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI

from mangacache.core.config import Settings, get_settings
from mangacache.core.lifespan import build_cache, create_lifespan, run_periodic_cleanup
from mangacache.infrastructure.cache import ImageVariantCache, InMemoryStore, QueryCache, TieredCache
from mangacache.infrastructure.exceptions import CacheBackendError, CacheValidationError
from mangacache.middleware.request_id import sanitize_request_id


async def test_build_cache_without_redis_uses_memory_layers() -> None:
    settings = Settings(
        _env_file=None, redis_enabled=False, cache_default_ttl=120, cache_invalidation_batch_size=10
    )
    cache = await build_cache(settings)
    assert isinstance(cache.l1, InMemoryStore)
    assert isinstance(cache.l2, InMemoryStore)
    assert cache.default_ttl == 120
    assert cache.invalidation_batch_size == 10


async def test_lifespan_sets_state_and_drains_on_shutdown(cache: TieredCache) -> None:
    app = FastAPI()
    app.state.cache = cache
    async with create_lifespan(app):
        assert app.state.cache is cache
        assert isinstance(app.state.image_cache, ImageVariantCache)
        assert isinstance(app.state.query_cache, QueryCache)
        assert app.state.query_executor is None
        assert app.state.cleanup_task is None
        await cache.set("manga:1", {"a": 1}, write_to_l2=True)
    assert cache.writer.pending == 0
    assert await cache.l2.exists("manga:1")


async def test_lifespan_builds_engine_when_none_injected() -> None:
    app = FastAPI()
    async with create_lifespan(app):
        assert isinstance(app.state.cache, TieredCache)


async def test_lifespan_starts_and_cancels_sweep(monkeypatch: pytest.MonkeyPatch, cache: TieredCache) -> None:
    monkeypatch.setenv("CACHE_CLEANUP_INTERVAL_SECONDS", "3600")
    monkeypatch.setenv("IMAGE_CACHE_ENABLED", "false")
    get_settings.cache_clear()
    app = FastAPI()
    app.state.cache = cache
    try:
        async with create_lifespan(app):
            task = app.state.cleanup_task
            assert not task.done()
            assert app.state.image_cache is None
        assert task.cancelled()
    finally:
        monkeypatch.undo()
        get_settings.cache_clear()


async def test_periodic_cleanup_survives_backend_errors(
    cache: TieredCache, monkeypatch: pytest.MonkeyPatch
) -> None:
    app = FastAPI()
    app.state.cache = cache
    app.state.image_cache = None
    calls = 0

    async def sweep() -> int:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise CacheBackendError("scan", "down")
        return 0

    monkeypatch.setattr(cache, "cleanup_expired_entries", sweep)

    task = asyncio.create_task(run_periodic_cleanup(app, 0, 1000))
    while calls < 3:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert calls >= 3


async def test_periodic_cleanup_keeps_running_after_unexpected_errors(
    cache: TieredCache, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    app = FastAPI()
    app.state.cache = cache
    app.state.image_cache = AsyncMock()
    app.state.image_cache.cleanup_old_images.side_effect = CacheValidationError(
        "max_age_ms must be positive", field="max_age_ms"
    )
    sweep = AsyncMock(return_value=0)
    monkeypatch.setattr(cache, "cleanup_expired_entries", sweep)

    with caplog.at_level(logging.ERROR):
        task = asyncio.create_task(run_periodic_cleanup(app, 0, 0))
        while sweep.await_count < 3:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert sweep.await_count >= 3
    assert "Periodic cache cleanup raised unexpectedly" in caplog.text


@pytest.mark.parametrize(
    ("raw", "kept"),
    [("req-123_abc", True), ("  spaced-id  ", True), ("bad id\nInjected: 1", False), ("x" * 65, False), (None, False)],
)
def test_sanitize_request_id(raw: str | None, kept: bool) -> None:
    result = sanitize_request_id(raw)
    if kept:
        assert result == raw.strip()
    else:
        assert len(result) == 36
