import asyncio
import fnmatch

from redis.exceptions import ConnectionError as RedisConnectionError

from travelbot.services.cache import QueryVectorCache


class _FakeRedis:
    def __init__(self):
        self.data = {}
        self.expiry = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def scan_iter(self, match=None, count=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    async def unlink(self, *keys):
        return sum(1 for key in keys if self.data.pop(key, None) is not None)


class _DownRedis:
    async def get(self, key):
        raise RedisConnectionError("redis is down")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("redis is down")

    async def scan_iter(self, match=None, count=None):
        raise RedisConnectionError("redis is down")
        yield  # pragma: no cover


def test_round_trip_uses_namespace_and_ttl():
    redis = _FakeRedis()
    cache = QueryVectorCache(ttl_seconds=60, client=redis)
    asyncio.run(cache.set("model:abc", [0.1, 0.2]))
    assert redis.expiry == {"travelbot:query_vectors:model:abc": 60}
    assert asyncio.run(cache.get("model:abc")) == [0.1, 0.2]
    assert asyncio.run(cache.get("model:other")) is None
    assert (cache.hits, cache.misses) == (1, 1)


def test_unreadable_entries_are_misses():
    redis = _FakeRedis()
    redis.data["travelbot:query_vectors:bad"] = "not json"
    redis.data["travelbot:query_vectors:dict"] = '{"a": 1}'
    cache = QueryVectorCache(client=redis)
    assert asyncio.run(cache.get("bad")) is None
    assert asyncio.run(cache.get("dict")) is None


def test_clear_only_touches_own_namespace():
    redis = _FakeRedis()
    redis.data["travelbot:other:x"] = "[1]"
    cache = QueryVectorCache(client=redis)
    for i in range(3):
        asyncio.run(cache.set(f"k{i}", [float(i + 1)]))
    assert asyncio.run(cache.clear()) == 3
    assert list(redis.data) == ["travelbot:other:x"]


def test_stats_report_live_entries():
    cache = QueryVectorCache(ttl_seconds=120, client=_FakeRedis())
    asyncio.run(cache.set("k", [1.0]))
    stats = asyncio.run(cache.stats())
    assert stats["live_entries"] == 1
    assert stats["ttl_seconds"] == 120


def test_redis_outage_degrades_to_miss():
    cache = QueryVectorCache(client=_DownRedis())
    assert asyncio.run(cache.get("k")) is None
    asyncio.run(cache.set("k", [1.0]))
    assert asyncio.run(cache.clear()) == 0
    assert "error" in asyncio.run(cache.stats())
