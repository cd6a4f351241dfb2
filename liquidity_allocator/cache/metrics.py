"""Cache metrics and monitoring.

Provides hit/miss tracking for the in-process result caches.

Usage:
    from liquidity_allocator.cache.metrics import cache_metrics

    cache_metrics.record_hit("optimization")
    cache_metrics.record_miss("optimization")

    stats = cache_metrics.get_stats()
    # {"optimization": {"hits": 150, "misses": 10, "hit_rate": 0.9375}, ...}
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass

from liquidity_allocator.core.logging import get_logger


logger = get_logger("cache.metrics")


@dataclass
class CacheStats:
    """Statistics for a single cache prefix."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    total_get_time_ms: float = 0.0
    get_count: int = 0
    last_hit: float | None = None
    last_miss: float | None = None

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def avg_get_time_ms(self) -> float:
        """Average lookup time in milliseconds."""
        return self.total_get_time_ms / self.get_count if self.get_count > 0 else 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 4),
            "avg_get_time_ms": round(self.avg_get_time_ms, 4),
            "total_operations": self.hits + self.misses,
        }


class CacheMetrics:
    """Process-wide cache metrics collector.

    Counters are updated under a lock so worker threads sharing a cache
    do not lose increments.
    """

    def __init__(self):
        self._stats: dict[str, CacheStats] = defaultdict(CacheStats)
        self._lock = threading.Lock()
        self._start_time = time.time()

    def record_hit(self, prefix: str, duration_ms: float = 0.0) -> None:
        """Record a cache hit."""
        with self._lock:
            stats = self._stats[prefix]
            stats.hits += 1
            stats.last_hit = time.time()
            if duration_ms > 0:
                stats.total_get_time_ms += duration_ms
                stats.get_count += 1

    def record_miss(self, prefix: str, duration_ms: float = 0.0) -> None:
        """Record a cache miss."""
        with self._lock:
            stats = self._stats[prefix]
            stats.misses += 1
            stats.last_miss = time.time()
            if duration_ms > 0:
                stats.total_get_time_ms += duration_ms
                stats.get_count += 1

    def record_set(self, prefix: str) -> None:
        """Record a cache insert."""
        with self._lock:
            self._stats[prefix].sets += 1

    def record_eviction(self, prefix: str) -> None:
        """Record an LRU eviction."""
        with self._lock:
            self._stats[prefix].evictions += 1

    def get_stats(self, prefix: str | None = None) -> dict:
        """Get cache statistics.

        Args:
            prefix: Optional specific prefix to get stats for.
                    If None, returns all stats.
        """
        with self._lock:
            if prefix:
                if prefix in self._stats:
                    return {prefix: self._stats[prefix].to_dict()}
                return {}
            return {p: s.to_dict() for p, s in self._stats.items()}

    def get_summary(self) -> dict:
        """Get summary statistics across all caches."""
        by_cache = self.get_stats()
        total_hits = sum(s["hits"] for s in by_cache.values())
        total_misses = sum(s["misses"] for s in by_cache.values())
        total = total_hits + total_misses

        return {
            "total_hits": total_hits,
            "total_misses": total_misses,
            "overall_hit_rate": round(total_hits / total, 4) if total > 0 else 0.0,
            "uptime_seconds": round(time.time() - self._start_time, 0),
            "caches_tracked": len(by_cache),
            "by_cache": by_cache,
        }

    def reset(self, prefix: str | None = None) -> None:
        """Reset statistics for one cache prefix, or for all of them."""
        with self._lock:
            if prefix is not None:
                self._stats.pop(prefix, None)
                return
            self._stats.clear()
            self._start_time = time.time()
        logger.info("Cache metrics reset")


# Global singleton instance
cache_metrics = CacheMetrics()


class CacheTimer:
    """Context manager for timing cache lookups.

    Usage:
        with CacheTimer("optimization") as timer:
            value = cache.get(key)
            timer.was_hit = value is not None
    """

    def __init__(self, prefix: str):
        self.prefix = prefix
        self.start_time: float = 0.0
        self.was_hit: bool = False

    def __enter__(self) -> CacheTimer:
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            return
        duration_ms = (time.perf_counter() - self.start_time) * 1000
        if self.was_hit:
            cache_metrics.record_hit(self.prefix, duration_ms)
        else:
            cache_metrics.record_miss(self.prefix, duration_ms)
