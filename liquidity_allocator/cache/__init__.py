"""In-process result caching with metrics."""

from .cache import LRUCache, cache_key, hash_payload
from .metrics import CacheMetrics, CacheStats, CacheTimer, cache_metrics


__all__ = [
    "CacheMetrics",
    "CacheStats",
    "CacheTimer",
    "LRUCache",
    "cache_key",
    "cache_metrics",
    "hash_payload",
]
