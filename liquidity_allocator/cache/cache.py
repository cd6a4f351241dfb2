"""In-process LRU cache with typed helpers.

The cache map is the only shared mutable state of the allocator. Every
read, insert and eviction happens inside one lock so concurrent writers
never corrupt the ordering. Two callers missing on the same key may both
compute the value; the later insert simply replaces the earlier one.
"""

from __future__ import annotations

import hashlib
import json
import threading
from collections import OrderedDict
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from liquidity_allocator.core.logging import get_logger

from .metrics import CacheTimer, cache_metrics

logger = get_logger("cache")

T = TypeVar("T")

CACHE_PREFIX = "liquidity_allocator"
CACHE_VERSION = "v1"


def cache_key(*parts: Union[str, int, float], prefix: str = "cache") -> str:
    """
    Generate a consistent cache key from parts.

    Usage:
        cache_key("optimize", "ab12") -> "liquidity_allocator:v1:cache:optimize:ab12"
    """
    sanitized = [str(part).replace(":", "_") for part in parts]
    return f"{CACHE_PREFIX}:{CACHE_VERSION}:{prefix}:{':'.join(sanitized)}"


def hash_payload(payload: Any) -> str:
    """Stable sha256 digest of a JSON-serializable payload."""
    serialized = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode()).hexdigest()


class LRUCache(Generic[T]):
    """Bounded least-recently-used cache guarded by a lock."""

    def __init__(self, prefix: str = "cache", max_entries: int = 128):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.prefix = prefix
        self.max_entries = max_entries
        self._entries: OrderedDict[str, T] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[T]:
        """Get a value and mark it most recently used."""
        full_key = cache_key(key, prefix=self.prefix)
        with CacheTimer(self.prefix) as timer:
            with self._lock:
                value = self._entries.get(full_key)
                if value is not None:
                    self._entries.move_to_end(full_key)
            timer.was_hit = value is not None

        if value is not None:
            logger.debug(f"Cache hit: {full_key}")
        else:
            logger.debug(f"Cache miss: {full_key}")
        return value

    def set(self, key: str, value: T) -> None:
        """Insert a value, evicting the least recently used entry when full."""
        full_key = cache_key(key, prefix=self.prefix)
        evicted: list[str] = []
        with self._lock:
            self._entries[full_key] = value
            self._entries.move_to_end(full_key)
            while len(self._entries) > self.max_entries:
                old_key, _ = self._entries.popitem(last=False)
                evicted.append(old_key)

        cache_metrics.record_set(self.prefix)
        for old_key in evicted:
            cache_metrics.record_eviction(self.prefix)
            logger.debug(f"Cache evict: {old_key}")

    def delete(self, key: str) -> bool:
        """Delete key from cache."""
        full_key = cache_key(key, prefix=self.prefix)
        with self._lock:
            removed = self._entries.pop(full_key, None) is not None
        if removed:
            logger.debug(f"Cache delete: {full_key}")
        return removed

    def clear(self) -> int:
        """Drop every entry and return how many were removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cache cleared: {self.prefix} ({count} entries)")
        return count

    def get_or_set(self, key: str, factory: Callable[[], T]) -> T:
        """Get from cache or compute and cache value (cache-aside pattern)."""
        value = self.get(key)
        if value is not None:
            return value

        value = factory()
        if value is not None:
            self.set(key, value)
        return value

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        full_key = cache_key(key, prefix=self.prefix)
        with self._lock:
            return full_key in self._entries
