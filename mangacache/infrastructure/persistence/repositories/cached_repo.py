"""Cached repository: generic CRUD whose reads go through the query cache.

Reads return plain dicts (the cached representation); writes take and
return ORM instances and notify the query cache through lifecycle hooks.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import and_, inspect as sa_inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import object_session

from mangacache.domain.exceptions import ResourceNotFoundException
from mangacache.infrastructure.cache.query_cache import QueryCache
from mangacache.infrastructure.persistence.database import Base
from mangacache.infrastructure.persistence.query_executor import run_read
from mangacache.shared.enums import QueryOperation


ModelType = TypeVar("ModelType", bound=Base)


class CachedRepository(Generic[ModelType]):
    """Repository with cached get_by_id, get_all, find_many, count and hooked writes.

    _on_after_create, _on_after_update and _on_after_delete invalidate every
    cached read of the model. Invalidation runs after flush; entries
    re-populated from another session before this transaction commits live
    until the next write or their TTL.
    """

    def __init__(
        self,
        db: AsyncSession,
        model: type[ModelType],
        query_cache: QueryCache,
        model_name: str | None = None,
    ) -> None:
        self.db = db
        self.model = model
        self.query_cache = query_cache
        self.model_name = model_name or model.__tablename__

    async def _read(self, operation: QueryOperation, shape: dict[str, Any]) -> Any:
        return await self.query_cache.fetch(
            self.model_name, operation, shape, lambda: run_read(self.db, self.model, operation, shape)
        )

    async def get_by_id(self, entity_id: str | int) -> dict[str, Any] | None:
        """Return a single record by primary key, or None."""
        return await self._read(QueryOperation.FIND_UNIQUE, {"where": {"id": entity_id}})

    async def get_all(self, skip: int = 0, limit: int = 100) -> list[dict[str, Any]]:
        """Return records with pagination."""
        return await self._read(QueryOperation.FIND_MANY, {"skip": skip, "take": limit})

    async def find_many(self, **shape: Any) -> list[dict[str, Any]]:
        """Return records matching a query shape (where, order_by, skip, take)."""
        return await self._read(QueryOperation.FIND_MANY, shape)

    async def find_first(self, **shape: Any) -> dict[str, Any] | None:
        return await self._read(QueryOperation.FIND_FIRST, shape)

    async def count(self, where: dict[str, Any] | None = None) -> int:
        return await self._read(QueryOperation.COUNT, {"where": where or {}})

    async def create(self, obj: ModelType) -> ModelType:
        """Persist a new record and run _on_after_create hook."""
        self.db.add(obj)
        await self.db.flush()
        await self.db.refresh(obj)
        await self._on_after_create(obj)
        return obj

    async def update(self, obj: ModelType, *, skip_existence_check: bool = False) -> ModelType:
        """Update an existing record (merge if detached) and run _on_after_update hook.

        Verifies the record exists by primary key before merging; raises
        ResourceNotFoundException if no row is found. When the object is
        already attached to this session, the existence SELECT is skipped.
        """
        mapper = sa_inspect(self.model)
        pk_attrs = mapper.primary_key
        for col in pk_attrs:
            if getattr(obj, col.key) is None:
                raise ValueError(
                    f"Cannot update: primary key '{col.key}' is missing on "
                    f"{self.model.__name__} instance."
                )
        attached = object_session(obj) is self.db.sync_session
        if not attached and not skip_existence_check:
            stmt = select(self.model).where(
                and_(*(getattr(self.model, c.key) == getattr(obj, c.key) for c in pk_attrs))
            )
            result = await self.db.execute(stmt)
            if result.scalar_one_or_none() is None:
                pk_str = ",".join(str(getattr(obj, c.key)) for c in pk_attrs)
                raise ResourceNotFoundException(self.model.__name__, pk_str)
        if not attached:
            obj = await self.db.merge(obj)
        await self.db.flush()
        await self.db.refresh(obj)
        await self._on_after_update(obj)
        return obj

    async def delete(self, obj: ModelType) -> None:
        """Delete the record then run _on_after_delete hook."""
        await self.db.delete(obj)
        await self.db.flush()
        await self._on_after_delete(obj)

    async def _on_after_create(self, obj: ModelType) -> None:
        await self.query_cache.on_mutate(self.model_name, QueryOperation.CREATE)

    async def _on_after_update(self, obj: ModelType) -> None:
        await self.query_cache.on_mutate(self.model_name, QueryOperation.UPDATE)

    async def _on_after_delete(self, obj: ModelType) -> None:
        await self.query_cache.on_mutate(self.model_name, QueryOperation.DELETE)
