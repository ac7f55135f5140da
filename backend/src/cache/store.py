"""
Key/value cache stores with per-entry TTL.

Values are opaque strings that are always replaced whole, so concurrent
writers are last-writer-wins. Every backend failure is raised as
CacheUnavailableError; callers treat it as a cache miss, never as fatal.
"""

import fnmatch
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Tuple

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

from config import Config

logger = logging.getLogger(__name__)


class CacheUnavailableError(Exception):
    """Raised when the cache backend cannot be reached or fails a command."""
    pass


class CacheStore(ABC):
    """Interface shared by the Redis and in-memory stores."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value, or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Overwrite unconditionally and reset the TTL."""

    @abstractmethod
    async def set_many(self, entries: Mapping[str, str], ttl_seconds: int) -> None:
        """Write several entries with the same TTL in one round-trip where supported."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys; returns how many existed."""

    @abstractmethod
    async def keys_matching(self, pattern: str) -> List[str]:
        """Keys matching a glob pattern (``*``, ``?``, ``[...]``)."""

    @abstractmethod
    async def remaining_ttl(self, key: str) -> Optional[int]:
        """Seconds until expiry, or None when the key is absent."""

    async def close(self) -> None:
        """Release backend resources."""


class RedisCacheStore(CacheStore):
    """Redis-backed store. Keys are namespaced with a prefix (``fpl:`` by default)."""

    def __init__(self, client: "redis_asyncio.Redis", key_prefix: str = "fpl:"):
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "fpl:", timeout_seconds: float = 5.0) -> "RedisCacheStore":
        client = redis_asyncio.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client, key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _strip(self, key: str) -> str:
        return key[len(self.key_prefix):] if key.startswith(self.key_prefix) else key

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(self._key(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis GET {key} failed: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.client.set(self._key(key), value, ex=int(ttl_seconds))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis SET {key} failed: {e}") from e

    async def set_many(self, entries: Mapping[str, str], ttl_seconds: int) -> None:
        if not entries:
            return
        try:
            async with self.client.pipeline(transaction=False) as pipe:
                for key, value in entries.items():
                    pipe.set(self._key(key), value, ex=int(ttl_seconds))
                await pipe.execute()
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis pipeline SET of {len(entries)} keys failed: {e}") from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self.client.delete(*(self._key(k) for k in keys)))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis DEL failed: {e}") from e

    async def keys_matching(self, pattern: str) -> List[str]:
        try:
            # SCAN rather than KEYS so a large keyspace does not block the server
            return sorted([
                self._strip(key)
                async for key in self.client.scan_iter(match=self._key(pattern), count=500)
            ])
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis SCAN {pattern} failed: {e}") from e

    async def remaining_ttl(self, key: str) -> Optional[int]:
        try:
            seconds = await self.client.ttl(self._key(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis TTL {key} failed: {e}") from e
        # -2: no such key, -1: no expiry (never written by us)
        if seconds == -2:
            return None
        return int(seconds)

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCacheStore(CacheStore):
    """In-process store for local runs without Redis and for tests."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    def _live_entry(self, key: str) -> Optional[Tuple[str, float]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live_entry(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + int(ttl_seconds))

    async def set_many(self, entries: Mapping[str, str], ttl_seconds: int) -> None:
        expires_at = self._clock() + int(ttl_seconds)
        for key, value in entries.items():
            self._entries[key] = (value, expires_at)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live_entry(key) is not None:
                removed += 1
            self._entries.pop(key, None)
        return removed

    async def keys_matching(self, pattern: str) -> List[str]:
        return sorted(
            key for key in list(self._entries)
            if self._live_entry(key) is not None and fnmatch.fnmatchcase(key, pattern)
        )

    async def remaining_ttl(self, key: str) -> Optional[int]:
        entry = self._live_entry(key)
        if entry is None:
            return None
        return max(int(round(entry[1] - self._clock())), 0)


def create_cache_store(config: Config) -> CacheStore:
    """Build the configured cache backend."""
    if config.cache_backend == "memory":
        logger.info("Using in-memory cache store")
        return MemoryCacheStore()
    logger.info("Using Redis cache store", extra={"key_prefix": config.cache_key_prefix})
    return RedisCacheStore.from_url(config.redis_url, key_prefix=config.cache_key_prefix)
