"""
backend/tests/test_cache_store.py

Purpose:
    In-memory store semantics (TTL, overwrite, glob matching) and the Redis
    store's key prefixing and error mapping, against a small fake client.
"""

from __future__ import annotations

import fnmatch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cache.store import CacheUnavailableError, MemoryCacheStore, RedisCacheStore, create_cache_store
from config import Config


class ManualClock:
    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the store's single-key commands."""

    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match=None, count=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def ttl(self, key):
        if key not in self.data:
            return -2
        return self.expiry.get(key) or -1

    async def aclose(self):
        self.closed = True


class BrokenRedis(FakeRedis):
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("connection refused")


@pytest.mark.asyncio
async def test_memory_store_get_set_and_expiry() -> None:
    clock = ManualClock()
    store = MemoryCacheStore(clock=clock)

    await store.set("teams", "[]", 60)
    assert await store.get("teams") == "[]"
    assert await store.remaining_ttl("teams") == 60

    clock.value = 59.0
    assert await store.get("teams") == "[]"

    clock.value = 60.0
    assert await store.get("teams") is None
    assert await store.remaining_ttl("teams") is None


@pytest.mark.asyncio
async def test_memory_store_overwrite_resets_ttl() -> None:
    clock = ManualClock()
    store = MemoryCacheStore(clock=clock)

    await store.set("fixtures", "old", 100)
    clock.value = 90.0
    await store.set("fixtures", "new", 100)
    clock.value = 150.0

    assert await store.get("fixtures") == "new"
    assert await store.remaining_ttl("fixtures") == 40


@pytest.mark.asyncio
async def test_memory_store_keys_matching_and_delete() -> None:
    store = MemoryCacheStore(clock=ManualClock())
    await store.set_many({
        "players": "a",
        "players:team:1": "b",
        "players:pos:MID": "c",
        "player:7:detail": "d",
    }, 60)

    assert await store.keys_matching("players:*") == ["players:pos:MID", "players:team:1"]
    assert await store.keys_matching("player:*:detail") == ["player:7:detail"]

    assert await store.delete("players:team:1", "players:pos:MID", "missing") == 2
    assert await store.keys_matching("players*") == ["players"]


@pytest.mark.asyncio
async def test_memory_store_skips_expired_keys_in_scans() -> None:
    clock = ManualClock()
    store = MemoryCacheStore(clock=clock)
    await store.set("short", "x", 10)
    await store.set("long", "y", 100)

    clock.value = 20.0
    assert await store.keys_matching("*") == ["long"]


@pytest.mark.asyncio
async def test_redis_store_prefixes_keys() -> None:
    client = FakeRedis()
    store = RedisCacheStore(client, key_prefix="fpl:")

    await store.set("teams", "[]", 43200)

    assert client.data == {"fpl:teams": "[]"}
    assert client.expiry == {"fpl:teams": 43200}
    assert await store.get("teams") == "[]"
    assert await store.keys_matching("*") == ["teams"]
    assert await store.remaining_ttl("teams") == 43200
    assert await store.remaining_ttl("missing") is None


@pytest.mark.asyncio
async def test_redis_store_delete_and_close() -> None:
    client = FakeRedis()
    store = RedisCacheStore(client, key_prefix="fpl:")
    await store.set("players:team:1", "[]", 60)

    assert await store.delete("players:team:1") == 1
    assert await store.delete() == 0
    await store.close()
    assert client.closed


@pytest.mark.asyncio
async def test_redis_errors_become_cache_unavailable() -> None:
    store = RedisCacheStore(BrokenRedis(), key_prefix="fpl:")

    with pytest.raises(CacheUnavailableError):
        await store.get("teams")
    with pytest.raises(CacheUnavailableError):
        await store.set("teams", "[]", 60)


def test_create_cache_store_selects_backend() -> None:
    memory = create_cache_store(Config(cache_backend="memory"))
    assert isinstance(memory, MemoryCacheStore)

    redis_store = create_cache_store(Config(cache_backend="redis", redis_url="redis://localhost:6379/0"))
    assert isinstance(redis_store, RedisCacheStore)
    assert redis_store.key_prefix == "fpl:"
