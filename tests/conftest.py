"""Pytest configuration and fixtures for manga-cache.

Environment is set before mangacache is imported so the module-level app
(mangacache.main:app) and get_settings() see test values: in-memory layers,
no periodic sweep, no telemetry, and a known JWT secret.
"""

import os
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

os.environ["REDIS_ENABLED"] = "false"
os.environ["CACHE_CLEANUP_INTERVAL_SECONDS"] = "0"
os.environ["TELEMETRY_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-mangacache"
os.environ.pop("DATABASE_URL", None)

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from jose import jwt

from mangacache.core.config import get_settings
from mangacache.core.lifespan import create_lifespan
from mangacache.core.limiter import limiter
from mangacache.infrastructure.cache import CacheCodec, InMemoryStore, TieredCache
from mangacache.main import create_app

get_settings.cache_clear()

START_SECONDS = 1_700_000_000.0


class FakeClock:
    """Controllable clock shared by the in-memory stores (seconds) and envelopes (ms)."""

    def __init__(self, start: float = START_SECONDS) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def ms(self) -> int:
        return int(self.now * 1000)

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def l1(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore("L1", clock=clock)


@pytest.fixture
def l2(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore("L2", clock=clock)


@pytest.fixture
async def cache(l1: InMemoryStore, l2: InMemoryStore, clock: FakeClock) -> TieredCache:
    """Engine over two in-memory layers; pending L2 writes are drained at teardown."""
    engine = TieredCache(l1, l2, codec=CacheCodec(compression_threshold=1024), clock_ms=clock.ms)
    yield engine
    await engine.drain()


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    limiter.reset()


@pytest.fixture
async def app(cache: TieredCache) -> FastAPI:
    """Application with the test engine injected and the lifespan running."""
    application = create_app()
    application.state.cache = cache
    async with create_lifespan(application):
        yield application


@pytest.fixture
async def client(app: FastAPI) -> AsyncClient:
    """Async HTTP client against the FastAPI app (ASGI)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Sign claims the way the host application issues tokens (HS256, shared secret)."""

    def _make(claims: dict[str, Any], expires_in: timedelta = timedelta(hours=1)) -> str:
        settings = get_settings()
        payload = {**claims, "exp": datetime.now(UTC) + expires_in}
        return jwt.encode(payload, settings.secret_key.get_secret_value(), algorithm=settings.algorithm)

    return _make


@pytest.fixture
def admin_headers(make_token: Callable[..., str]) -> dict[str, str]:
    token = make_token({"sub": "admin-1", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def reader_headers(make_token: Callable[..., str]) -> dict[str, str]:
    token = make_token({"sub": "reader-7", "roles": ["reader"]})
    return {"Authorization": f"Bearer {token}"}
