"""
Cache backends for generated match explanations.

The backend is constructed once at startup and passed into ExplanationService.
Values are plain JSON-serializable dicts.
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis

from fundmatch.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "match:explanation:"


def explanation_cache_key(organization_id: str, program_id: str, program_status: str) -> str:
    """Program status is part of the key so a status change never reuses an old narrative."""
    return f"{CACHE_KEY_PREFIX}{organization_id}:{program_id}:{program_status}"


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> bool: ...

    def delete_prefix(self, prefix: str) -> int: ...

    def stats(self, prefix: str = CACHE_KEY_PREFIX) -> Dict[str, Any]: ...


class InMemoryCache:
    """Process-local TTL cache."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, str]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires_at, payload = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
        return json.loads(payload)

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, payload)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def stats(self, prefix: str = CACHE_KEY_PREFIX) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            live = [
                payload for key, (expires_at, payload) in self._entries.items()
                if key.startswith(prefix) and expires_at > now
            ]
            lookups = self.hits + self.misses
            return {
                "backend": "memory",
                "total_keys": len(live),
                "size_kb": round(sum(len(p.encode("utf-8")) for p in live) / 1024, 2),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / lookups, 4) if lookups else None,
            }


class RedisCache:
    """Redis-backed cache using SETEX with JSON values."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        payload = self.client.get(key)
        if payload is None:
            return None
        return json.loads(payload)

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        self.client.setex(key, ttl_seconds, json.dumps(value, ensure_ascii=False))

    def delete(self, key: str) -> bool:
        return bool(self.client.delete(key))

    def delete_prefix(self, prefix: str) -> int:
        keys = list(self.client.scan_iter(match=f"{prefix}*"))
        if not keys:
            return 0
        return int(self.client.delete(*keys))

    def stats(self, prefix: str = CACHE_KEY_PREFIX) -> Dict[str, Any]:
        keys = list(self.client.scan_iter(match=f"{prefix}*"))

        # Estimate size from a sample of up to 10 keys
        size = 0.0
        if keys:
            sample = keys[:10]
            sampled = sum(len(value.encode("utf-8")) for value in (self.client.get(k) for k in sample) if value)
            size = sampled / len(sample) * len(keys)

        return {
            "backend": "redis",
            "total_keys": len(keys),
            "size_kb": round(size / 1024, 2),
        }


def build_cache(config: Optional[Settings] = None) -> CacheBackend:
    """Redis when REDIS_URL is configured, otherwise an in-memory cache."""
    config = config or default_settings
    if config.REDIS_URL:
        logger.info("Using Redis explanation cache")
        return RedisCache.from_url(config.REDIS_URL)
    logger.info("REDIS_URL not set, using in-memory explanation cache")
    return InMemoryCache()
