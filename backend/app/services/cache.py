"""Key/value cache holding short-lived identity secrets such as password reset tokens."""

from __future__ import annotations

import logging
import threading
import time
from functools import lru_cache
from typing import Protocol

from redis import Redis
from redis.exceptions import RedisError

from app.config import get_settings


logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Operations the identity flows rely on."""

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value that expires after ``ttl_seconds``."""

    def get(self, key: str) -> str | None:
        """Return a live value or ``None``."""

    def pop(self, key: str) -> str | None:
        """Return a live value and delete it in the same step."""

    def delete(self, key: str) -> None:
        """Remove a value, ignoring missing keys."""


class InMemoryCache:
    """Process-local cache used when no Redis URL is configured."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.time():
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = time.time() + ttl_seconds if ttl_seconds > 0 else None
        with self._lock:
            self._entries[key] = (value, expires_at)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._live(key)

    def pop(self, key: str) -> str | None:
        with self._lock:
            value = self._live(key)
            self._entries.pop(key, None)
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


class RedisCache:
    """Thin Redis wrapper adhering to :class:`CacheBackend`."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            self._client.setex(key, ttl_seconds, value)
        else:
            self._client.set(key, value)

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def pop(self, key: str) -> str | None:
        return self._client.getdel(key)

    def delete(self, key: str) -> None:
        self._client.delete(key)


@lru_cache(maxsize=1)
def get_cache() -> CacheBackend:
    """Return Redis when configured and reachable, the in-memory cache otherwise."""

    settings = get_settings()
    cache_url = settings.auth_cache_url or settings.realtime_redis_url
    if not cache_url:
        return InMemoryCache()
    client = Redis.from_url(cache_url, decode_responses=True)
    try:
        client.ping()
    except RedisError:
        logger.warning(
            "Auth cache unreachable; password reset tokens are kept in process memory",
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return InMemoryCache()
    return RedisCache(client)
