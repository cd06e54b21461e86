"""
Tests for the response cache.
"""

from llm_router.cache import ResponseCache
from llm_router.config import CacheConfig


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestResponseCache:
    """TTL expiry and LRU eviction."""

    def test_hit_and_miss(self):
        cache = ResponseCache(CacheConfig())
        assert cache.get("reviewer", "prompt") is None

        cache.set("reviewer", "prompt", None, "answer")

        assert cache.get("reviewer", "prompt") == "answer"
        stats = cache.stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.size == 1

    def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        cache = ResponseCache(CacheConfig(ttl_seconds=10), clock=clock)
        cache.set("reviewer", "prompt", "ctx", "answer")

        clock.now += 10
        assert cache.get("reviewer", "prompt", "ctx") == "answer"

        clock.now += 0.5
        assert cache.get("reviewer", "prompt", "ctx") is None
        assert len(cache) == 0

    def test_least_recently_used_evicted(self):
        cache = ResponseCache(CacheConfig(max_size=2))
        cache.set("a", "p", None, "1")
        cache.set("b", "p", None, "2")
        cache.get("a", "p")
        cache.set("c", "p", None, "3")

        assert cache.get("b", "p") is None
        assert cache.get("a", "p") == "1"
        assert cache.get("c", "p") == "3"
        assert cache.stats().evictions == 1

    def test_disabled_cache_stores_nothing(self):
        cache = ResponseCache(CacheConfig(enabled=False))
        cache.set("a", "p", None, "1")
        assert cache.get("a", "p") is None
        assert len(cache) == 0

    def test_key_separates_fields(self):
        assert ResponseCache.make_key("ab", "c") != ResponseCache.make_key("a", "bc")
        assert ResponseCache.make_key("a", "b", None) == ResponseCache.make_key("a", "b", "")

    def test_clear(self):
        cache = ResponseCache(CacheConfig())
        cache.set("a", "p", None, "1")
        cache.clear()
        assert len(cache) == 0
