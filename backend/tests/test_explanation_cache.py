"""
Explanation cache backend tests.
"""

import fnmatch

import pytest

from fundmatch.core.config import Settings
from fundmatch.services.explanation_cache import (
    InMemoryCache,
    RedisCache,
    build_cache,
    explanation_cache_key,
)


pytestmark = pytest.mark.unit


class FakeRedis:
    """The handful of redis.Redis commands RedisCache uses (decode_responses=True)."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    def scan_iter(self, match=None):
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key


def test_cache_key_format():
    assert explanation_cache_key("org-1", "prog-9", "EXPIRED") == "match:explanation:org-1:prog-9:EXPIRED"


class TestInMemoryCache:

    def test_set_get_and_expiry(self, clock):
        cache = InMemoryCache(clock=clock)
        key = explanation_cache_key("org-1", "prog-1", "ACTIVE")

        cache.set(key, {"summary": "요약", "reasons": ["a"]}, ttl_seconds=60)

        assert cache.get(key) == {"summary": "요약", "reasons": ["a"]}
        clock.advance(60)
        assert cache.get(key) is None

    def test_delete_prefix(self, clock):
        cache = InMemoryCache(clock=clock)
        for status in ("ACTIVE", "EXPIRED"):
            cache.set(explanation_cache_key("org-1", "prog-1", status), {"s": status}, 60)
        cache.set(explanation_cache_key("org-2", "prog-1", "ACTIVE"), {"s": "other"}, 60)

        removed = cache.delete_prefix("match:explanation:org-1:prog-1:")

        assert removed == 2
        assert cache.get(explanation_cache_key("org-2", "prog-1", "ACTIVE")) == {"s": "other"}

    def test_stats(self, clock):
        cache = InMemoryCache(clock=clock)
        key = explanation_cache_key("org-1", "prog-1", "ACTIVE")
        cache.get(key)
        cache.set(key, {"summary": "x"}, 60)
        cache.get(key)

        stats = cache.stats()

        assert stats["backend"] == "memory"
        assert stats["total_keys"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    def test_delete(self, clock):
        cache = InMemoryCache(clock=clock)
        cache.set("k", {"v": 1}, 60)

        assert cache.delete("k") is True
        assert cache.delete("k") is False


class TestRedisCache:

    def test_round_trip_uses_setex(self):
        client = FakeRedis()
        cache = RedisCache(client)
        key = explanation_cache_key("org-1", "prog-1", "ACTIVE")

        cache.set(key, {"summary": "적합합니다"}, ttl_seconds=86400)

        assert client.ttls[key] == 86400
        assert "적합합니다" in client.store[key]
        assert cache.get(key) == {"summary": "적합합니다"}
        assert cache.get("missing") is None

    def test_delete_prefix_and_stats(self):
        client = FakeRedis()
        cache = RedisCache(client)
        for program in ("prog-1", "prog-2", "prog-3"):
            cache.set(explanation_cache_key("org-1", program, "ACTIVE"), {"summary": "x" * 100}, 60)
        client.store["unrelated"] = "value"

        stats = cache.stats()
        assert stats["backend"] == "redis"
        assert stats["total_keys"] == 3
        assert stats["size_kb"] > 0

        assert cache.delete_prefix("match:explanation:org-1:") == 3
        assert cache.delete_prefix("match:explanation:org-1:") == 0
        assert "unrelated" in client.store


class TestBuildCache:

    def test_in_memory_without_redis_url(self):
        assert isinstance(build_cache(Settings(REDIS_URL="")), InMemoryCache)

    def test_redis_with_url(self):
        cache = build_cache(Settings(REDIS_URL="redis://localhost:6379/0"))

        assert isinstance(cache, RedisCache)
