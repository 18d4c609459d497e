"""
Instance-owned caches for discovery results.

Each resolver, extractor and loader owns one DiscoveryCache for its lifetime,
so cached entry paths, extracted dependency lists and loaded modules are
scoped to the object that produced them rather than to the process.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Optional

from .cli_config import PerformanceConfig, get_config


@dataclass
class CacheEntry:
    """Cache entry with optional TTL and access tracking."""

    data: Any
    created_at: float
    last_accessed: float
    ttl_seconds: Optional[int] = None
    access_count: int = 0

    def is_expired(self) -> bool:
        """Check if the cache entry has expired."""
        if self.ttl_seconds is None:
            return False
        return (time.time() - self.created_at) > self.ttl_seconds

    def touch(self) -> None:
        """Update last access time and increment access count."""
        self.last_accessed = time.time()
        self.access_count += 1


class CacheStats:
    """Cache performance statistics."""

    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expired_removals = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    def get_hit_rate(self) -> float:
        """Get cache hit rate as percentage."""
        if self.total_requests == 0:
            return 0.0
        return (self.hits / self.total_requests) * 100.0

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics as a dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expired_removals": self.expired_removals,
            "total_requests": self.total_requests,
            "hit_rate_percent": self.get_hit_rate(),
        }

    def reset(self) -> None:
        """Reset all statistics."""
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expired_removals = 0


class DiscoveryCache:
    """
    Keyed cache with LRU eviction and optional TTL.

    Not thread-safe; discovery runs on a single event loop and each cache
    is written only by its owning instance.
    """

    def __init__(self, name: str, config: Optional[PerformanceConfig] = None):
        """
        Initialize the cache.

        Args:
            name: Cache name, used in statistics output
            config: Performance settings (defaults to global config)
        """
        config = config or get_config().performance

        self.name = name
        self.enabled = config.enable_caching
        self.max_size = config.max_cache_size
        self.default_ttl = config.cache_ttl_seconds

        self._cache: Dict[Hashable, CacheEntry] = {}
        self._stats = CacheStats()

    def _evict_lru(self) -> None:
        # Entries are kept in access order, oldest first
        lru_key = next(iter(self._cache))
        del self._cache[lru_key]
        self._stats.evictions += 1

    def get(self, key: Hashable) -> Optional[Any]:
        """
        Get a cached value.

        Returns:
            Cached value or None if missing, expired or caching is disabled
        """
        if not self.enabled:
            return None

        entry = self._cache.get(key)
        if entry is None:
            self._stats.misses += 1
            return None

        if entry.is_expired():
            del self._cache[key]
            self._stats.expired_removals += 1
            self._stats.misses += 1
            return None

        entry.touch()
        self._cache[key] = self._cache.pop(key)
        self._stats.hits += 1
        return entry.data

    def put(self, key: Hashable, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Cache a value under key."""
        if not self.enabled:
            return

        if self._cache.pop(key, None) is None:
            while len(self._cache) >= self.max_size:
                self._evict_lru()

        now = time.time()
        self._cache[key] = CacheEntry(
            data=value,
            created_at=now,
            last_accessed=now,
            ttl_seconds=ttl_seconds or self.default_ttl,
        )

    def remove(self, key: Hashable) -> bool:
        """Remove a single entry. Returns True if it was present."""
        return self._cache.pop(key, None) is not None

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries removed
        """
        count = len(self._cache)
        self._cache.clear()
        return count

    def __contains__(self, key: Hashable) -> bool:
        entry = self._cache.get(key)
        return entry is not None and not entry.is_expired()

    def __len__(self) -> int:
        return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        stats = self._stats.get_stats()
        stats.update(
            {
                "name": self.name,
                "enabled": self.enabled,
                "size": len(self._cache),
                "max_size": self.max_size,
            }
        )
        return stats
