"""Abstract key/value interface for parsed-invoice caching.

The pipeline only talks to this interface, so the in-process LRU cache can be
replaced by a shared store (Redis, Memcached) in multi-instance deployments.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from pydantic import BaseModel


class CacheStats(BaseModel):
    """Process-lifetime cache counters.

    Attributes:
        size: Entries currently stored
        hits: Successful lookups
        misses: Lookups on missing or expired keys
        hit_rate: hits / (hits + misses), 0 when nothing was looked up
    """

    size: int
    hits: int
    misses: int
    hit_rate: float


class EntryMetadata(BaseModel):
    """Timestamps of a live cache entry."""

    cached_at: datetime
    expires_at: datetime


class CachedValue(BaseModel):
    """Result of a metadata-aware lookup."""

    data: Any = None
    from_cache: bool
    cached_at: datetime | None = None


class CacheBackend(ABC):
    """Key/value store with per-entry TTL and hit/miss accounting."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when missing or expired."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value; ttl in seconds, backend default when None."""

    @abstractmethod
    def has(self, key: str) -> bool:
        """Check whether a live entry exists."""

    @abstractmethod
    def clear(self, key: str) -> None:
        """Remove a single entry."""

    @abstractmethod
    def clear_all(self) -> None:
        """Remove every entry."""

    @abstractmethod
    def keys(self) -> list[str]:
        """List stored keys, most recently used first."""

    @abstractmethod
    def get_stats(self) -> CacheStats:
        """Return hit/miss counters and current size."""

    @abstractmethod
    def get_metadata(self, key: str) -> EntryMetadata | None:
        """Return timestamps for a live entry."""

    def get_with_metadata(self, key: str) -> CachedValue:
        """Look up a value together with its caching timestamp."""
        data = self.get(key)
        if data is None:
            return CachedValue(data=None, from_cache=False)

        metadata = self.get_metadata(key)
        return CachedValue(
            data=data,
            from_cache=True,
            cached_at=metadata.cached_at if metadata else None,
        )

    def set_and_get_metadata(self, key: str, value: Any, ttl: float | None = None) -> CachedValue:
        """Store a value and return response metadata for a fresh result."""
        self.set(key, value, ttl)
        metadata = self.get_metadata(key)
        return CachedValue(
            data=value,
            from_cache=False,
            cached_at=metadata.cached_at if metadata else None,
        )
