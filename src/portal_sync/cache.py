"""In-memory result caches with TTL expiry and a capacity bound.

Each data category (metadata, permissions, tags, described assets) gets its
own ``ResultCache`` so that expensive remote lookups made during bulk fetches
are memoized with a bounded staleness and a bounded memory footprint.

Expiry is checked lazily on read. Eviction removes the entry with the oldest
insertion time, not the least recently used one: an old entry that is read
often is still evicted first.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, overload

from .config import CacheConfig
from .exceptions import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")
D = TypeVar("D")


def _now_ms() -> float:
    """Current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


class CacheCategory(str, Enum):
    """Logical data categories, one cache each."""

    METADATA = "metadata"
    PERMISSIONS = "permissions"
    TAGS = "tags"
    DESCRIBED_ASSETS = "described_assets"


@dataclass
class CacheEntry(Generic[T]):
    """A cached value with its insertion time and read count."""

    value: T
    inserted_at_ms: float
    hit_count: int = 0


@dataclass
class CacheStats:
    """Statistics for cache performance monitoring."""

    name: str
    size: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    max_size: int = 0
    ttl_ms: int = 0

    def as_dict(self) -> dict[str, Any]:
        """Return stats as a dictionary."""
        return {
            "name": self.name,
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "max_size": self.max_size,
            "ttl_ms": self.ttl_ms,
        }


@dataclass
class ResultCache(Generic[T]):
    """
    Named key/value cache with TTL expiry and insertion-time eviction.

    Thread safety:
    - Every operation runs under a per-instance threading.Lock
    - No operation awaits, so the lock is never held across a suspension

    Invariants:
    - ``len(cache) <= max_size``; eviction happens before insertion
    - An expired entry is deleted by the read that finds it and counted
      as a miss, never as a hit

    Args:
        name: Category name used in stats and logs
        ttl_ms: Time-to-live in milliseconds
        max_size: Maximum number of entries
        clock: Function returning the current time in epoch milliseconds
    """

    name: str
    ttl_ms: int
    max_size: int
    clock: Callable[[], float] = field(default=_now_ms, repr=False)

    _entries: dict[str, CacheEntry[T]] = field(init=False, default_factory=dict, repr=False)
    _hits: int = field(init=False, default=0)
    _misses: int = field(init=False, default=0)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        if self.ttl_ms < 0:
            raise ValidationError("ttl_ms", self.ttl_ms, "must be non-negative")
        if self.max_size < 1:
            raise ValidationError("max_size", self.max_size, "must be at least 1")

    def _is_expired(self, entry: CacheEntry[T], now_ms: float) -> bool:
        return now_ms - entry.inserted_at_ms > self.ttl_ms

    def _fresh_entry(self, key: str) -> CacheEntry[T] | None:
        """Return the entry for key if fresh, deleting it if expired. Caller holds the lock."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry, self.clock()):
            del self._entries[key]
            return None
        return entry

    def _evict_oldest(self) -> None:
        """Remove the entry with the oldest insertion time. Caller holds the lock."""
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda k: self._entries[k].inserted_at_ms)
        del self._entries[oldest_key]
        logger.debug("Evicted %s from cache %s", oldest_key, self.name)

    @overload
    def get(self, key: str) -> T | None: ...

    @overload
    def get(self, key: str, default: D) -> T | D: ...

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a fresh value, or ``default`` if absent or expired.

        Counts exactly one hit or one miss.
        """
        with self._lock:
            entry = self._fresh_entry(key)
            if entry is None:
                self._misses += 1
                return default
            entry.hit_count += 1
            self._hits += 1
            return entry.value

    def set(self, key: str, value: T) -> None:
        """Store a value, evicting the oldest entry first if at capacity."""
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_oldest()
            self._entries[key] = CacheEntry(value=value, inserted_at_ms=self.clock())

    def has(self, key: str) -> bool:
        """Check freshness without touching hit/miss counters."""
        with self._lock:
            return self._fresh_entry(key) is not None

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Remove all entries and reset counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def stats(self) -> CacheStats:
        """
        Get cache performance statistics.

        Returns:
            CacheStats with size, counters and hit rate (0.0 before any access)
        """
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                name=self.name,
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / total if total > 0 else 0.0,
                max_size=self.max_size,
                ttl_ms=self.ttl_ms,
            )

    def log_stats(self) -> None:
        """Log a one-line statistics summary."""
        stats = self.stats()
        logger.info(
            "Cache stats for %s: size=%d hits=%d misses=%d hit_rate=%.2f%%",
            stats.name,
            stats.size,
            stats.hits,
            stats.misses,
            stats.hit_rate * 100,
            extra={"cache_stats": stats.as_dict()},
        )


@dataclass
class CacheRegistry:
    """
    One ResultCache per category, constructed lazily.

    Create one registry per process and pass it to the components that
    need it. Categories share ``max_size`` but have their own TTL;
    ``metadata`` and ``described_assets`` use the metadata TTL.

    Args:
        config: TTLs and capacity
        clock: Clock handed to every cache (epoch milliseconds)
    """

    config: CacheConfig = field(default_factory=CacheConfig)
    clock: Callable[[], float] = field(default=_now_ms, repr=False)

    _caches: dict[CacheCategory, ResultCache[Any]] = field(
        init=False, default_factory=dict, repr=False
    )
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)

    def _ttl_for(self, category: CacheCategory) -> int:
        if category is CacheCategory.PERMISSIONS:
            return self.config.permissions_ttl_ms
        if category is CacheCategory.TAGS:
            return self.config.tags_ttl_ms
        return self.config.metadata_ttl_ms

    @staticmethod
    def _coerce(category: CacheCategory | str) -> CacheCategory:
        if isinstance(category, CacheCategory):
            return category
        try:
            return CacheCategory(category)
        except ValueError:
            valid = ", ".join(c.value for c in CacheCategory)
            raise ValidationError("category", category, f"must be one of: {valid}") from None

    def get_cache(self, category: CacheCategory | str) -> ResultCache[Any]:
        """
        Get the cache for a category, creating it on first access.

        Raises:
            ValidationError: If the category name is unknown
        """
        cat = self._coerce(category)
        with self._lock:
            cache = self._caches.get(cat)
            if cache is None:
                cache = ResultCache(
                    name=cat.value,
                    ttl_ms=self._ttl_for(cat),
                    max_size=self.config.max_size,
                    clock=self.clock,
                )
                self._caches[cat] = cache
            return cache

    def cache_for_prefix(self, prefix: str) -> ResultCache[Any]:
        """Map a bulk-fetch cache prefix to its cache (unknown prefixes use metadata)."""
        if prefix == CacheCategory.PERMISSIONS.value:
            return self.get_cache(CacheCategory.PERMISSIONS)
        if prefix == CacheCategory.TAGS.value:
            return self.get_cache(CacheCategory.TAGS)
        return self.get_cache(CacheCategory.METADATA)

    def _constructed(self) -> list[ResultCache[Any]]:
        with self._lock:
            return [self._caches[c] for c in CacheCategory if c in self._caches]

    def clear_all(self) -> None:
        """Clear every constructed cache."""
        for cache in self._constructed():
            cache.clear()

    def all_stats(self) -> list[CacheStats]:
        """Stats for every constructed cache, in category order."""
        return [cache.stats() for cache in self._constructed()]

    def log_all_stats(self) -> None:
        """Log statistics for all caches."""
        logger.info("Result cache statistics:")
        for cache in self._constructed():
            cache.log_stats()

    def reset(self) -> None:
        """Discard all cache instances; the next access builds fresh ones."""
        with self._lock:
            self._caches.clear()
