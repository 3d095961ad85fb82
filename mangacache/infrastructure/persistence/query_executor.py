"""SQLAlchemy implementation of the QueryExecutor interface.

A query shape is a plain dict, so it can be hashed into a cache key:

    where     {"status": "ongoing", "rating": {"gte": 4}, "id": {"in": [...]}}
    order_by  {"created_at": "desc"} or a list of such dicts
    skip      offset, take: limit
    data      column values for create/update (a list for create_many)
    by        group_by columns
    _count / _sum / _avg / _min / _max   aggregate selections

Results are JSON-friendly (rows as dicts, datetimes as ISO strings) so the
query cache can store them unchanged.
"""

import logging
from collections.abc import Mapping
from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy import Select, and_, delete, func, inspect as sa_inspect, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mangacache.domain.exceptions import ResourceNotFoundException
from mangacache.infrastructure.exceptions import CacheValidationError
from mangacache.infrastructure.persistence.database import Base
from mangacache.shared.enums import QueryOperation

logger = logging.getLogger(__name__)

_COMPARATORS = {
    "equals": lambda col, v: col == v,
    "not": lambda col, v: col != v,
    "in": lambda col, v: col.in_(v),
    "not_in": lambda col, v: col.not_in(v),
    "gt": lambda col, v: col > v,
    "gte": lambda col, v: col >= v,
    "lt": lambda col, v: col < v,
    "lte": lambda col, v: col <= v,
    "contains": lambda col, v: col.contains(v),
}
_AGGREGATES = {"_sum": func.sum, "_avg": func.avg, "_min": func.min, "_max": func.max}


def row_to_dict(obj: Base) -> dict[str, Any]:
    """Column values of an ORM instance, JSON-encoded."""
    mapper = sa_inspect(type(obj))
    return jsonable_encoder({attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs})


def _column(model: type[Base], name: str) -> Any:
    mapper = sa_inspect(model)
    if name not in mapper.column_attrs:
        raise CacheValidationError(
            f"Unknown column {name!r} on {model.__tablename__}", field="shape"
        )
    return getattr(model, name)


def _where_clause(model: type[Base], where: Mapping[str, Any] | None) -> Any:
    conditions = []
    for name, condition in (where or {}).items():
        col = _column(model, name)
        if isinstance(condition, Mapping):
            for op, value in condition.items():
                if op not in _COMPARATORS:
                    raise CacheValidationError(f"Unknown comparator {op!r}", field="shape")
                conditions.append(_COMPARATORS[op](col, value))
        else:
            conditions.append(col.is_(None) if condition is None else col == condition)
    return and_(*conditions) if conditions else None


def _apply_shape(stmt: Select, model: type[Base], shape: Mapping[str, Any]) -> Select:
    clause = _where_clause(model, shape.get("where"))
    if clause is not None:
        stmt = stmt.where(clause)
    order_by = shape.get("order_by") or []
    for ordering in [order_by] if isinstance(order_by, Mapping) else order_by:
        for name, direction in ordering.items():
            col = _column(model, name)
            stmt = stmt.order_by(col.desc() if str(direction).lower() == "desc" else col.asc())
    if shape.get("skip"):
        stmt = stmt.offset(int(shape["skip"]))
    if shape.get("take") is not None:
        stmt = stmt.limit(int(shape["take"]))
    return stmt


def _aggregate_columns(model: type[Base], shape: Mapping[str, Any]) -> list[Any]:
    columns = []
    if shape.get("_count"):
        columns.append(func.count().label("_count"))
    for key, fn in _AGGREGATES.items():
        for name in shape.get(key) or ():
            columns.append(fn(_column(model, name)).label(f"{key}__{name}"))
    return columns


def _nest_aggregates(row: Mapping[str, Any]) -> dict[str, Any]:
    """{'_sum__rating': 9} -> {'_sum': {'rating': 9}}."""
    result: dict[str, Any] = {}
    for label, value in row.items():
        if "__" in label:
            group, name = label.split("__", 1)
            result.setdefault(group, {})[name] = value
        else:
            result[label] = value
    return jsonable_encoder(result)


async def run_read(
    session: AsyncSession, model: type[Base], operation: QueryOperation, shape: Mapping[str, Any]
) -> Any:
    """Execute a read operation and return JSON-friendly data."""
    if operation in (QueryOperation.FIND_MANY, QueryOperation.FIND_FIRST, QueryOperation.FIND_UNIQUE):
        stmt = _apply_shape(select(model), model, shape)
        if operation == QueryOperation.FIND_FIRST:
            stmt = stmt.limit(1)
        result = await session.execute(stmt)
        if operation == QueryOperation.FIND_MANY:
            return [row_to_dict(obj) for obj in result.scalars().all()]
        obj = result.scalars().first() if operation == QueryOperation.FIND_FIRST else result.scalar_one_or_none()
        return None if obj is None else row_to_dict(obj)
    if operation == QueryOperation.COUNT:
        clause = _where_clause(model, shape.get("where"))
        stmt = select(func.count()).select_from(model)
        if clause is not None:
            stmt = stmt.where(clause)
        return (await session.execute(stmt)).scalar_one()
    if operation == QueryOperation.AGGREGATE:
        columns = _aggregate_columns(model, shape)
        if not columns:
            raise CacheValidationError("aggregate needs _count, _sum, _avg, _min or _max", field="shape")
        stmt = select(*columns).select_from(model)
        clause = _where_clause(model, shape.get("where"))
        if clause is not None:
            stmt = stmt.where(clause)
        row = (await session.execute(stmt)).mappings().one()
        return _nest_aggregates(row)
    if operation == QueryOperation.GROUP_BY:
        by = [_column(model, name) for name in shape.get("by") or ()]
        if not by:
            raise CacheValidationError("group_by needs 'by' columns", field="shape")
        stmt = select(*by, *_aggregate_columns(model, shape)).select_from(model).group_by(*by)
        clause = _where_clause(model, shape.get("where"))
        if clause is not None:
            stmt = stmt.where(clause)
        rows = (await session.execute(stmt)).mappings().all()
        return [_nest_aggregates(row) for row in rows]
    raise CacheValidationError(f"{operation.value} is not a read operation", field="operation")


async def run_write(
    session: AsyncSession, model: type[Base], operation: QueryOperation, shape: Mapping[str, Any]
) -> Any:
    """Execute a write operation in the caller's transaction."""
    clause = _where_clause(model, shape.get("where"))
    if operation == QueryOperation.CREATE:
        obj = model(**shape.get("data", {}))
        session.add(obj)
        await session.flush()
        await session.refresh(obj)
        return row_to_dict(obj)
    if operation == QueryOperation.CREATE_MANY:
        objs = [model(**data) for data in shape.get("data", [])]
        session.add_all(objs)
        await session.flush()
        return {"count": len(objs)}
    if operation in (QueryOperation.UPDATE, QueryOperation.UPSERT, QueryOperation.DELETE):
        if clause is None:
            raise CacheValidationError(f"{operation.value} needs a 'where' shape", field="shape")
        obj = (await session.execute(select(model).where(clause))).scalar_one_or_none()
        if obj is None:
            if operation == QueryOperation.UPSERT:
                return await run_write(session, model, QueryOperation.CREATE, {"data": shape.get("create", {})})
            raise ResourceNotFoundException(model.__tablename__, str(shape.get("where")))
        if operation == QueryOperation.DELETE:
            deleted = row_to_dict(obj)
            await session.delete(obj)
            await session.flush()
            return deleted
        data = shape.get("update" if operation == QueryOperation.UPSERT else "data", {})
        for name, value in data.items():
            _column(model, name)
            setattr(obj, name, value)
        await session.flush()
        await session.refresh(obj)
        return row_to_dict(obj)
    if operation == QueryOperation.UPDATE_MANY:
        stmt = update(model).values(**shape.get("data", {}))
        if clause is not None:
            stmt = stmt.where(clause)
        result = await session.execute(stmt)
        return {"count": result.rowcount}
    if operation == QueryOperation.DELETE_MANY:
        stmt = delete(model)
        if clause is not None:
            stmt = stmt.where(clause)
        result = await session.execute(stmt)
        return {"count": result.rowcount}
    raise CacheValidationError(f"{operation.value} is not a write operation", field="operation")


class SQLAlchemyQueryExecutor:
    """Runs query shapes against mapped models, one session per call.

    Writes are committed before execute() returns, so the query cache
    invalidates only after the change is visible to other sessions.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        models: Mapping[str, type[Base]],
    ) -> None:
        self.session_factory = session_factory
        self.models = dict(models)

    def _model(self, name: str) -> type[Base]:
        model = self.models.get(name)
        if model is None:
            raise CacheValidationError(f"Unknown model: {name!r}", field="model")
        return model

    async def execute(self, model: str, operation: QueryOperation, shape: dict[str, Any]) -> Any:
        mapped = self._model(model)
        operation = QueryOperation(operation)
        async with self.session_factory() as session:
            if operation.is_read:
                return await run_read(session, mapped, operation, shape)
            async with session.begin():
                result = await run_write(session, mapped, operation, shape)
            logger.debug("Executed %s.%s", model, operation.value)
            return result
