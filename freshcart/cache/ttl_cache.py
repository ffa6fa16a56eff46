import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple
from redis.exceptions import RedisError
from freshcart.cache._cache import redis_client
from freshcart.cache.utils import build_key, deserialize, serialize
from freshcart.common.logging_setup import get_logger
from freshcart.config.settings import config_settings

logger = get_logger("freshcart.cache")

CACHE_NAMESPACE = "freshcart"


class TTLCache(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...
    async def set(self, key: str, value: Any, ttl_seconds: float) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def clear(self) -> None: ...


class InMemoryTTLCache:
    """Process-local TTL cache. Entries expire lazily on read; the clock is injectable for tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_entries: int = 1024):
        self._clock = clock
        self._max_entries = max_entries
        self._entries: Dict[str, Tuple[float, Any]] = {}

    async def get(self, key: str) -> Optional[Any]:
        hit = self._entries.get(key)
        if hit is None:
            return None
        expires_at, value = hit
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if len(self._entries) >= self._max_entries and key not in self._entries:
            self._evict_expired()
            if len(self._entries) >= self._max_entries:
                # oldest insertion goes first
                self._entries.pop(next(iter(self._entries)))
        self._entries[key] = (self._clock() + ttl_seconds, value)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    def _evict_expired(self):
        now_ts = self._clock()
        for k in [k for k, (exp, _) in self._entries.items() if exp <= now_ts]:
            del self._entries[k]


class RedisTTLCache:
    """Shared cache on redis; values are stored as orjson bytes. Redis failures degrade to a miss."""

    def __init__(self, client, namespace: str = CACHE_NAMESPACE):
        self._client = client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return build_key(self._namespace, key)

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(self._key(key))
        except RedisError as exc:
            logger.warning("cache.get_failed", extra={"key": key, "error": str(exc)})
            return None
        if raw is None:
            return None
        return deserialize(raw)

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        try:
            await self._client.set(self._key(key), serialize(value), ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            logger.warning("cache.set_failed", extra={"key": key, "error": str(exc)})

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            logger.warning("cache.delete_failed", extra={"key": key, "error": str(exc)})

    async def clear(self) -> None:
        try:
            async for k in self._client.scan_iter(match=f"{self._namespace}:*"):
                await self._client.delete(k)
        except RedisError as exc:
            logger.warning("cache.clear_failed", extra={"error": str(exc)})


class FeatureAvailability:
    """Remembers optional features (tables, functions) that failed once; the first failure sticks."""

    def __init__(self):
        self._unavailable: Dict[str, str] = {}

    def is_available(self, feature: str) -> bool:
        return feature not in self._unavailable

    def mark_unavailable(self, feature: str, reason: str = ""):
        if feature not in self._unavailable:
            self._unavailable[feature] = reason
            logger.warning("feature.unavailable", extra={"feature": feature, "reason": reason})

    def reset(self):
        self._unavailable.clear()


def build_cache(backend: str = config_settings.CACHE_BACKEND) -> TTLCache:
    if backend == "redis":
        return RedisTTLCache(redis_client)
    return InMemoryTTLCache()


recommendation_cache: TTLCache = build_cache()
feature_availability = FeatureAvailability()
