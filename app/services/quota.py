"""
익명 검색 카운터
브라우저 ID별 무료 검색 횟수 (세션과 독립적으로 유지)
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class QuotaError(Exception):
    """카운터 저장소 접근 실패"""

    pass


class AnonymousCounter(ABC):
    """익명 검색 카운터 인터페이스"""

    @abstractmethod
    async def get(self, browser_id: str) -> int:
        """현재 사용 횟수"""
        pass

    @abstractmethod
    async def increment(self, browser_id: str) -> int:
        """1 증가 후 새 값 반환"""
        pass


class InMemoryAnonymousCounter(AnonymousCounter):
    """인메모리 익명 카운터"""

    def __init__(self) -> None:
        self._counts: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def get(self, browser_id: str) -> int:
        async with self._lock:
            return self._counts.get(browser_id, 0)

    async def increment(self, browser_id: str) -> int:
        async with self._lock:
            self._counts[browser_id] = self._counts.get(browser_id, 0) + 1
            return self._counts[browser_id]


class RedisAnonymousCounter(AnonymousCounter):
    """Redis 익명 카운터 (INCR)"""

    KEY_PREFIX = "anon_searches:"

    def __init__(self, redis: Redis, ttl_seconds: int = 30 * 24 * 3600) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    def _key(self, browser_id: str) -> str:
        return f"{self.KEY_PREFIX}{browser_id}"

    async def get(self, browser_id: str) -> int:
        try:
            value = await self._redis.get(self._key(browser_id))
        except RedisError as e:
            raise QuotaError(f"익명 카운터 조회 실패: {e}") from e
        return int(value) if value else 0

    async def increment(self, browser_id: str) -> int:
        key = self._key(browser_id)
        try:
            value = await self._redis.incr(key)
            await self._redis.expire(key, self._ttl)
        except RedisError as e:
            raise QuotaError(f"익명 카운터 증가 실패: {e}") from e
        return int(value)
