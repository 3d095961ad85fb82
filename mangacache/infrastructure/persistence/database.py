"""Persistence: async engine, session factory, and Base for SQLAlchemy ORM.

The relational schema belongs to the host application: its models subclass
Base and are looked up by table name (model_registry()). The engine is only
created when DATABASE_URL is set, and lazily on first use so import does not
trigger Settings validation.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from mangacache.core.config import get_settings

logger = logging.getLogger(__name__)

# Set by _ensure_engine() on first use; avoids get_settings() at import time.
engine: Any = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def _ensure_engine() -> None:
    """Create engine and AsyncSessionLocal on first use (when DATABASE_URL is set)."""
    global engine, AsyncSessionLocal
    if AsyncSessionLocal is not None:
        return
    settings = get_settings()
    if not settings.database_url:
        return
    engine = create_async_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )
    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


def model_registry() -> dict[str, type[Base]]:
    """Map table name to mapped class for every model registered on Base."""
    return {
        mapper.class_.__tablename__: mapper.class_
        for mapper in Base.registry.mappers
        if hasattr(mapper.class_, "__tablename__")
    }


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
    """Return the session factory, or None when no database is configured."""
    _ensure_engine()
    return AsyncSessionLocal


async def dispose_engine() -> None:
    """Close pooled connections (application shutdown)."""
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
    engine = None
    AsyncSessionLocal = None
