"""
검색 결과 캐시
TTL 기반 캐싱 (단일 프로세스용 인메모리 / 서버 간 공유용 Redis)
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.models.product import ProductCard
from app.utils.text_parser import normalize_query

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheEntry(Generic[T]):
    """캐시 엔트리"""

    def __init__(self, value: T, ttl_seconds: int) -> None:
        self.value = value
        self.expires_at = datetime.utcnow() + timedelta(seconds=ttl_seconds)

    def is_expired(self) -> bool:
        """만료 여부 확인"""
        return datetime.utcnow() > self.expires_at


class SearchCache(ABC):
    """검색 결과 캐시 인터페이스"""

    def __init__(self, default_ttl_seconds: int = 3600) -> None:
        self._default_ttl = default_ttl_seconds

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """캐시 조회"""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """캐시 저장"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """캐시 삭제"""
        pass

    async def clear_expired(self) -> int:
        """만료된 캐시 정리 (저장소가 TTL을 직접 관리하면 0)"""
        return 0


class InMemoryCache(SearchCache):
    """인메모리 TTL 캐시"""

    def __init__(self, default_ttl_seconds: int = 3600) -> None:
        super().__init__(default_ttl_seconds)
        self._cache: Dict[str, CacheEntry[Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                return None

            if entry.is_expired():
                del self._cache[key]
                return None

            return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds or self._default_ttl

        async with self._lock:
            self._cache[key] = CacheEntry(value, ttl)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear_expired(self) -> int:
        async with self._lock:
            expired_keys = [key for key, entry in self._cache.items() if entry.is_expired()]
            for key in expired_keys:
                del self._cache[key]

        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._cache)


_PRODUCT_LIST = TypeAdapter(List[ProductCard])


class RedisSearchCache(SearchCache):
    """
    Redis 검색 캐시

    상품 카드 목록을 JSON으로 저장하고 만료는 Redis TTL(SETEX)에 맡긴다.
    Redis 장애는 캐시 미스로 취급하여 검색 자체는 계속 진행된다.
    """

    KEY_PREFIX = "cache:"

    def __init__(self, redis: Redis, default_ttl_seconds: int = 3600) -> None:
        super().__init__(default_ttl_seconds)
        self._redis = redis

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def get(self, key: str) -> Optional[List[ProductCard]]:
        try:
            raw = await self._redis.get(self._key(key))
        except RedisError as e:
            logger.warning(f"[Cache] 조회 실패 ({key}): {e}")
            return None

        if raw is None:
            return None

        try:
            return _PRODUCT_LIST.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"[Cache] 손상된 캐시 항목 삭제 ({key}): {e}")
            await self.delete(key)
            return None

    async def set(self, key: str, value: List[ProductCard], ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds or self._default_ttl
        try:
            await self._redis.setex(self._key(key), ttl, _PRODUCT_LIST.dump_json(value))
        except RedisError as e:
            logger.warning(f"[Cache] 저장 실패 ({key}): {e}")

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(self._key(key)))
        except RedisError as e:
            logger.warning(f"[Cache] 삭제 실패 ({key}): {e}")
            return False


def make_search_key(query: str, search_type: str, country: str) -> str:
    """
    검색 캐시 키 생성

    가격 범위는 실제 검색에 쓰이지 않으므로 키에 포함하지 않는다.
    """
    return f"search:{country.upper()}:{search_type}:{normalize_query(query)}"
