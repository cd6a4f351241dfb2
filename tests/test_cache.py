"""Tests for the LRU result cache and its metrics."""

import threading

import pytest


class TestCacheKey:
    """Key construction."""

    def test_prefix_and_parts(self):
        from liquidity_allocator.cache.cache import cache_key

        assert cache_key("optimize", "ab:12", prefix="p") == "liquidity_allocator:v1:p:optimize:ab_12"

    def test_hash_payload_order_independent(self):
        from liquidity_allocator.cache.cache import hash_payload

        assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})
        assert len(hash_payload({"a": 1})) == 64


class TestLRUCache:
    """Bounded cache behavior."""

    def test_get_set(self):
        from liquidity_allocator.cache.cache import LRUCache

        cache = LRUCache(prefix="t", max_entries=2)
        cache.set("k", {"v": 1})

        assert cache.get("k") == {"v": 1}
        assert cache.get("missing") is None
        assert "k" in cache
        assert len(cache) == 1

    def test_evicts_least_recently_used(self):
        from liquidity_allocator.cache.cache import LRUCache

        cache = LRUCache(prefix="t", max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache

    def test_delete_and_clear(self):
        from liquidity_allocator.cache.cache import LRUCache

        cache = LRUCache(prefix="t")
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.clear() == 1
        assert len(cache) == 0

    def test_get_or_set(self):
        from liquidity_allocator.cache.cache import LRUCache

        cache = LRUCache(prefix="t")
        calls = []

        def factory():
            calls.append(1)
            return "value"

        assert cache.get_or_set("k", factory) == "value"
        assert cache.get_or_set("k", factory) == "value"
        assert len(calls) == 1

    def test_rejects_zero_capacity(self):
        from liquidity_allocator.cache.cache import LRUCache

        with pytest.raises(ValueError):
            LRUCache(max_entries=0)

    def test_concurrent_writers(self):
        from liquidity_allocator.cache.cache import LRUCache

        cache = LRUCache(prefix="t", max_entries=50)

        def writer(offset: int) -> None:
            for i in range(200):
                cache.set(f"{offset}-{i}", i)
                cache.get(f"{offset}-{i // 2}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 50


class TestCacheMetrics:
    """Hit/miss accounting."""

    def test_records_hits_and_misses(self):
        from liquidity_allocator.cache.cache import LRUCache
        from liquidity_allocator.cache.metrics import cache_metrics

        cache = LRUCache(prefix="metrics_test")
        cache.get("k")
        cache.set("k", 1)
        cache.get("k")

        stats = cache_metrics.get_stats("metrics_test")["metrics_test"]
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 1
        assert stats["hit_rate"] == 0.5

    def test_summary_and_reset(self):
        from liquidity_allocator.cache.metrics import CacheMetrics

        metrics = CacheMetrics()
        metrics.record_hit("a")
        metrics.record_hit("a")
        metrics.record_miss("b")

        summary = metrics.get_summary()
        assert summary["total_hits"] == 2
        assert summary["total_misses"] == 1
        assert summary["caches_tracked"] == 2

        metrics.reset()
        assert metrics.get_stats() == {}

    def test_reset_single_prefix(self):
        from liquidity_allocator.cache.metrics import CacheMetrics

        metrics = CacheMetrics()
        metrics.record_hit("a")
        metrics.record_miss("b")

        metrics.reset("a")

        assert metrics.get_stats("a") == {}
        assert metrics.get_stats("b")["b"]["misses"] == 1

    def test_timer_records_outcome(self):
        from liquidity_allocator.cache.metrics import CacheMetrics, CacheTimer, cache_metrics

        with CacheTimer("timer_test") as timer:
            timer.was_hit = True

        assert cache_metrics.get_stats("timer_test")["timer_test"]["hits"] == 1
        assert isinstance(CacheMetrics().get_stats(), dict)
