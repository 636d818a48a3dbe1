"""
검색 캐시 유닛 테스트
"""
from typing import Dict, Optional, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.container import ServiceContainer
from app.models.product import ProductCard
from app.services.cache import InMemoryCache, RedisSearchCache, make_search_key

CARDS = [
    ProductCard(name="Samsung Galaxy S24 128GB", price="CHF 699.00", page_token="token-1"),
    ProductCard(name="Samsung Galaxy S24 256GB", price="CHF 779.00"),
]


class DictRedis:
    """get/setex/delete만 흉내내는 Redis"""

    def __init__(self) -> None:
        self.data: Dict[str, Tuple[str, int]] = {}
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def get(self, key: str) -> Optional[str]:
        self._check()
        entry = self.data.get(key)
        return entry[0] if entry else None

    async def setex(self, key: str, ttl: int, value) -> None:
        self._check()
        self.data[key] = (value.decode() if isinstance(value, bytes) else value, ttl)

    async def delete(self, key: str) -> int:
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0


class TestInMemoryCache:
    """인메모리 캐시 테스트"""

    async def test_set_get(self):
        cache = InMemoryCache()
        await cache.set("k", CARDS)
        assert await cache.get("k") == CARDS
        assert len(cache) == 1

    async def test_expired(self):
        """만료된 항목은 조회되지 않고 정리 대상"""
        cache = InMemoryCache()
        await cache.set("k", CARDS, ttl_seconds=-1)
        assert await cache.clear_expired() == 1
        assert await cache.get("k") is None


class TestRedisSearchCache:
    """Redis 검색 캐시 테스트"""

    async def test_round_trip_with_ttl(self):
        redis = DictRedis()
        cache = RedisSearchCache(redis, default_ttl_seconds=600)
        key = make_search_key("Samsung Galaxy S24", "exact", "ch")

        await cache.set(key, CARDS)

        stored, ttl = redis.data["cache:search:CH:exact:samsung galaxy s24"]
        assert ttl == 600
        assert await cache.get(key) == CARDS

    async def test_miss(self):
        assert await RedisSearchCache(DictRedis()).get("missing") is None

    async def test_corrupt_entry_deleted(self):
        redis = DictRedis()
        redis.data["cache:k"] = ("not json", 60)

        assert await RedisSearchCache(redis).get("k") is None
        assert "cache:k" not in redis.data

    async def test_redis_down_is_cache_miss(self):
        """Redis 장애 시 조회는 미스, 저장은 무시"""
        redis = DictRedis()
        redis.down = True
        cache = RedisSearchCache(redis)

        await cache.set("k", CARDS)
        assert await cache.get("k") is None
        assert await cache.delete("k") is False

    async def test_clear_expired_noop(self):
        """만료는 Redis TTL이 처리"""
        assert await RedisSearchCache(DictRedis()).clear_expired() == 0


class TestContainerCache:
    """설정에 따른 캐시 선택"""

    @pytest.mark.parametrize("redis_enabled,expected", [(False, InMemoryCache), (True, RedisSearchCache)])
    def test_build_selects_cache(self, settings, redis_enabled: bool, expected: type):
        container = ServiceContainer.build(settings.model_copy(update={"redis_enabled": redis_enabled}))
        assert type(container.cache) is expected
