"""Key/value cache backends shared by the result cache and rate limiter."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

import redis.asyncio as redis

LOGGER = logging.getLogger("captcha_guard.storage")


class CacheBackend:
    """Minimal cache interface used by the captcha guard."""

    async def get(self, key: str) -> Optional[bytes]:  # pragma: no cover - interface
        raise NotImplementedError

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryCache(CacheBackend):
    """Simple in-memory cache used when Redis isn't configured."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, tuple[bytes, Optional[float]]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[bytes]:
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                self._store.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        async with self._lock:
            expires_at = None
            if ttl:
                expires_at = self._clock() + ttl
            self._store[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    def ttl_remaining(self, key: str) -> Optional[float]:
        entry = self._store.get(key)
        if entry is None or entry[1] is None:
            return None
        return entry[1] - self._clock()

    def __contains__(self, key: object) -> bool:
        return key in self._store


class RedisCache(CacheBackend):
    """Redis backed cache using ``redis.asyncio``."""

    def __init__(self, url: str) -> None:
        self._client = redis.from_url(url)

    async def get(self, key: str) -> Optional[bytes]:
        return await self._client.get(key)

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        await self._client.set(name=key, value=value, ex=ttl)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


def build_cache(redis_url: str | None) -> CacheBackend:
    if redis_url:
        try:
            return RedisCache(redis_url)
        except (ValueError, redis.RedisError):
            LOGGER.warning("redis cache initialisation failed", exc_info=True)
    return MemoryCache()


__all__ = ["CacheBackend", "MemoryCache", "RedisCache", "build_cache"]
