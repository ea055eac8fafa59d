"""In-process LRU cache with per-entry TTL.

Production-grade implementation with:
- O(1) lookups through a dict of doubly linked list nodes
- LRU eviction when the configured maximum size is exceeded
- Independent expiry per entry (expired lookups count as misses)
- Hit/miss counters and Prometheus metrics
- Lock-protected mutations for concurrent pipeline runs

Single-process only: sibling instances do not share entries.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from nfe_crawler.cache.base import CacheBackend, CacheStats, EntryMetadata
from nfe_crawler.shared import metrics
from nfe_crawler.shared.config import Settings

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "parsed_invoice:"


@dataclass
class CacheEntry:
    """Stored payload with its creation time and TTL (both in seconds)."""

    payload: Any
    created_at: float
    ttl: float


@dataclass
class _CacheNode:
    key: str
    entry: CacheEntry
    prev: "_CacheNode | None" = None
    next: "_CacheNode | None" = None


class CacheManager(CacheBackend):
    """LRU + TTL cache for parsed invoices.

    The head of the linked list is the most recently used entry; the tail is
    evicted first.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize cache.

        Args:
            max_size: Maximum number of entries before LRU eviction
            default_ttl: TTL in seconds used when set() gets none
            clock: Time source returning epoch seconds
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._nodes: dict[str, _CacheNode] = {}
        self._head: _CacheNode | None = None
        self._tail: _CacheNode | None = None
        self._hits = 0
        self._misses = 0
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheManager":
        """Create a cache sized and timed from application settings."""
        return cls(max_size=settings.cache_max_size, default_ttl=settings.cache_ttl)

    def get(self, key: str) -> Any | None:
        full_key = self._build_key(key)
        with self._lock:
            node = self._nodes.get(full_key)

            if node is None:
                self._record_miss(key)
                return None

            if self._is_expired(node.entry):
                self._remove(full_key)
                self._record_miss(key)
                return None

            self._move_to_front(node)
            self._hits += 1

        metrics.cache_operations_total.labels(operation="hit").inc()
        logger.debug(f"Cache hit: {key}")
        return node.entry.payload

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        full_key = self._build_key(key)
        entry = CacheEntry(
            payload=value,
            created_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

        with self._lock:
            node = self._nodes.get(full_key)
            if node is not None:
                node.entry = entry
                self._move_to_front(node)
            else:
                node = _CacheNode(key=full_key, entry=entry)
                self._add_to_front(node)
                self._nodes[full_key] = node

                while len(self._nodes) > self.max_size:
                    self._evict_lru()

        metrics.cache_operations_total.labels(operation="set").inc()
        logger.debug(f"Cache set: {key} (ttl={entry.ttl:g}s)")

    def has(self, key: str) -> bool:
        full_key = self._build_key(key)
        with self._lock:
            node = self._nodes.get(full_key)
            if node is None:
                return False

            if self._is_expired(node.entry):
                self._remove(full_key)
                self._record_miss(key)
                return False

            return True

    def clear(self, key: str) -> None:
        with self._lock:
            self._remove(self._build_key(key))

        metrics.cache_operations_total.labels(operation="clear").inc()
        logger.debug(f"Cache clear: {key}")

    def clear_all(self) -> None:
        with self._lock:
            self._nodes.clear()
            self._head = None
            self._tail = None

        logger.info("Cache cleared")

    def keys(self) -> list[str]:
        with self._lock:
            result = []
            node = self._head
            while node is not None:
                result.append(node.key.removeprefix(CACHE_KEY_PREFIX))
                node = node.next
            return result

    def get_stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                size=len(self._nodes),
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / total if total > 0 else 0.0,
            )

    def get_metadata(self, key: str) -> EntryMetadata | None:
        with self._lock:
            node = self._nodes.get(self._build_key(key))
            if node is None or self._is_expired(node.entry):
                return None
            entry = node.entry

        return EntryMetadata(
            cached_at=datetime.fromtimestamp(entry.created_at, tz=UTC),
            expires_at=datetime.fromtimestamp(entry.created_at + entry.ttl, tz=UTC),
        )

    def __len__(self) -> int:
        return len(self._nodes)

    # Linked list helpers, callers must hold the lock

    @staticmethod
    def _build_key(key: str) -> str:
        return key if key.startswith(CACHE_KEY_PREFIX) else f"{CACHE_KEY_PREFIX}{key}"

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at > entry.ttl

    def _record_miss(self, key: str) -> None:
        self._misses += 1
        metrics.cache_operations_total.labels(operation="miss").inc()
        logger.debug(f"Cache miss: {key}")

    def _unlink(self, node: _CacheNode) -> None:
        if node.prev is not None:
            node.prev.next = node.next
        else:
            self._head = node.next

        if node.next is not None:
            node.next.prev = node.prev
        else:
            self._tail = node.prev

        node.prev = None
        node.next = None

    def _add_to_front(self, node: _CacheNode) -> None:
        node.prev = None
        node.next = self._head
        if self._head is not None:
            self._head.prev = node
        self._head = node
        if self._tail is None:
            self._tail = node

    def _move_to_front(self, node: _CacheNode) -> None:
        if node is self._head:
            return
        self._unlink(node)
        self._add_to_front(node)

    def _remove(self, full_key: str) -> None:
        node = self._nodes.pop(full_key, None)
        if node is not None:
            self._unlink(node)

    def _evict_lru(self) -> None:
        if self._tail is None:
            return
        evicted = self._tail.key
        self._remove(evicted)
        metrics.cache_operations_total.labels(operation="evict").inc()
        logger.debug(f"Cache evict (LRU): {evicted.removeprefix(CACHE_KEY_PREFIX)}")
