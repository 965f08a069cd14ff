"""Redis page cache and call rate limiting."""

from __future__ import annotations

import hashlib
import logging
import time
from typing import TYPE_CHECKING

import redis

from core.config import settings

if TYPE_CHECKING:
    from redis import Redis

logger = logging.getLogger(__name__)


class RedisCache:
    """Shared Redis client for fetched pages and rate limit counters."""

    _instance: RedisCache | None = None
    _client: Redis[str] | None = None

    def __new__(cls) -> RedisCache:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def client(self) -> Redis[str]:
        if self._client is None:
            self._client = redis.from_url(settings.redis_url, decode_responses=True)
        return self._client

    def get_text(self, key: str) -> str | None:
        return self.client.get(key)

    def set_text(self, key: str, value: str, ttl: int | None = None) -> None:
        self.client.setex(key, ttl or settings.cache_ttl_seconds, value)

    def rate_limit(self, key: str, limit: int) -> bool:
        """Count one call in the current window. True while within limit."""
        current = self.client.incr(key)
        if current == 1:
            self.client.expire(key, settings.rate_limit_window_seconds)
        return current <= limit

    def wait_for_rate_limit(self, key: str, limit: int) -> None:
        while not self.rate_limit(key, limit):
            time.sleep(0.1)

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None


def cache_key(prefix: str, identifier: str) -> str:
    id_hash = hashlib.sha256(identifier.encode()).hexdigest()[:16]
    return f"{prefix}:{id_hash}"


def create_cache() -> RedisCache | None:
    """Return the shared cache, or None when Redis is unreachable."""
    try:
        cache = RedisCache()
        cache.client.ping()
        return cache
    except (redis.ConnectionError, redis.TimeoutError):
        logger.info("Redis unavailable at %s, running without cache", settings.redis_url)
        return None
