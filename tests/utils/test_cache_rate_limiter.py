"""Tests for the LRU cache and sliding-window rate limiter."""

from unittest.mock import patch

from bastion.utils.cache import LRUCache
from bastion.utils.rate_limiter import RateLimiter


class TestLRUCache:
    def test_evicts_least_recently_used(self):
        cache = LRUCache(max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert "b" not in cache
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_ttl_expiry(self):
        cache = LRUCache(max_entries=10, default_ttl=10)
        with patch("bastion.utils.cache.time.monotonic", return_value=100.0):
            cache.set("k", "v")
        with patch("bastion.utils.cache.time.monotonic", return_value=105.0):
            assert cache.get("k") == "v"
        with patch("bastion.utils.cache.time.monotonic", return_value=111.0):
            assert cache.get("k") is None

    def test_stats_count_hits_and_misses(self):
        cache = LRUCache()
        cache.get("missing")
        cache.set("k", 1)
        cache.get("k")
        assert cache.stats() == {"size": 1, "max_entries": 1000, "hits": 1, "misses": 1}


class TestRateLimiter:
    def test_budget_per_window(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        with patch("bastion.utils.rate_limiter.time.monotonic", return_value=0.0):
            assert limiter.try_acquire("api")
            assert limiter.try_acquire("api")
            assert not limiter.try_acquire("api")
            assert limiter.is_rate_limited("api")
            assert limiter.remaining("api") == 0
        with patch("bastion.utils.rate_limiter.time.monotonic", return_value=61.0):
            assert limiter.try_acquire("api")

    def test_keys_are_independent(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        assert limiter.try_acquire("a")
        assert limiter.try_acquire("b")
        assert not limiter.try_acquire("a")

    def test_reset(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        limiter.try_acquire()
        limiter.reset()
        assert limiter.remaining() == 1
