"""Shared enumerations for the manga cache service.

Cross-cutting enums used by infrastructure and the API (cache layers,
image formats, query operations).
"""

from enum import Enum


class _ValuesMixin:
    """Mixin that adds a values() classmethod to str Enums."""

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid values as strings."""
        return [member.value for member in cls]


class CacheLayer(_ValuesMixin, str, Enum):
    """Cache tier. L1 is fast and short-lived; L2 is the larger default layer."""

    L1 = "L1"
    L2 = "L2"


class ImageFormat(_ValuesMixin, str, Enum):
    """Output encodings supported for image variants."""

    WEBP = "webp"
    JPEG = "jpeg"
    PNG = "png"

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"


class QueryOperation(_ValuesMixin, str, Enum):
    """Relational data layer operations seen by the query-result cache."""

    FIND_FIRST = "find_first"
    FIND_MANY = "find_many"
    FIND_UNIQUE = "find_unique"
    COUNT = "count"
    AGGREGATE = "aggregate"
    GROUP_BY = "group_by"
    CREATE = "create"
    CREATE_MANY = "create_many"
    UPDATE = "update"
    UPDATE_MANY = "update_many"
    UPSERT = "upsert"
    DELETE = "delete"
    DELETE_MANY = "delete_many"

    @property
    def is_read(self) -> bool:
        return self in _READ_OPERATIONS

    @property
    def mutation_kind(self) -> str | None:
        """Return 'create', 'update' or 'delete' for writes, None for reads."""
        return _MUTATION_KINDS.get(self)


_READ_OPERATIONS = frozenset({
    QueryOperation.FIND_FIRST,
    QueryOperation.FIND_MANY,
    QueryOperation.FIND_UNIQUE,
    QueryOperation.COUNT,
    QueryOperation.AGGREGATE,
    QueryOperation.GROUP_BY,
})

_MUTATION_KINDS = {
    QueryOperation.CREATE: "create",
    QueryOperation.CREATE_MANY: "create",
    QueryOperation.UPDATE: "update",
    QueryOperation.UPDATE_MANY: "update",
    QueryOperation.UPSERT: "update",
    QueryOperation.DELETE: "delete",
    QueryOperation.DELETE_MANY: "delete",
}
