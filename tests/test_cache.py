import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from freshcart.cache.ttl_cache import FeatureAvailability, InMemoryTTLCache, RedisTTLCache, build_cache
from freshcart.cache.utils import build_key, deserialize, serialize


class Clock:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


@pytest.mark.asyncio
async def test_in_memory_entries_expire():
    clock = Clock()
    cache = InMemoryTTLCache(clock=clock)

    await cache.set("trending:10:7", [1, 2], ttl_seconds=300)
    assert await cache.get("trending:10:7") == [1, 2]

    clock.t += 299
    assert await cache.get("trending:10:7") == [1, 2]

    clock.t += 1
    assert await cache.get("trending:10:7") is None


@pytest.mark.asyncio
async def test_in_memory_cache_is_bounded():
    cache = InMemoryTTLCache(clock=Clock(), max_entries=2)
    await cache.set("a", 1, 60)
    await cache.set("b", 2, 60)
    await cache.set("c", 3, 60)

    assert await cache.get("a") is None
    assert await cache.get("c") == 3

    await cache.delete("c")
    assert await cache.get("c") is None
    await cache.clear()
    assert await cache.get("b") is None


class FakeRedis:
    def __init__(self, fail=False):
        self.data = {}
        self.fail = fail
        self.expiry = {}

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis down")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self._check()
        self.data.pop(key, None)


@pytest.mark.asyncio
async def test_redis_cache_round_trip():
    client = FakeRedis()
    cache = RedisTTLCache(client)

    await cache.set("trending:10:7", [{"id": "x"}], ttl_seconds=0.5)

    assert client.expiry == {"freshcart:trending:10:7": 1}
    assert await cache.get("trending:10:7") == [{"id": "x"}]


@pytest.mark.asyncio
async def test_redis_failures_degrade_to_miss():
    cache = RedisTTLCache(FakeRedis(fail=True))

    await cache.set("k", 1, 60)
    assert await cache.get("k") is None
    await cache.delete("k")


def test_build_cache_picks_backend():
    assert isinstance(build_cache("memory"), InMemoryTTLCache)
    assert isinstance(build_cache("redis"), RedisTTLCache)


def test_feature_availability_first_failure_sticks():
    features = FeatureAvailability()
    assert features.is_available("product_co_purchases")

    features.mark_unavailable("product_co_purchases", "relation does not exist")
    features.mark_unavailable("product_co_purchases", "second reason")
    assert not features.is_available("product_co_purchases")
    assert features._unavailable["product_co_purchases"] == "relation does not exist"

    features.reset()
    assert features.is_available("product_co_purchases")


def test_build_key_and_serialization():
    assert build_key("trending", 10, 7) == "trending:10:7"
    assert build_key("a", None, "", "b") == "a:b"
    assert len(build_key("x" * 300)) == 64
    assert deserialize(serialize({1: "a"})) == {"1": "a"}
