"""Repositories whose reads go through the query-result cache."""

from mangacache.infrastructure.persistence.repositories.cached_repo import CachedRepository

__all__ = ["CachedRepository"]
