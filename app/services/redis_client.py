"""
Redis 연결 관리
세션 저장소, 익명 카운터, pub/sub가 하나의 연결 풀을 공유
"""
import logging

import redis.asyncio as redis_async
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.config import Settings

logger = logging.getLogger(__name__)


def create_redis(settings: Settings) -> Redis:
    """Redis 클라이언트 생성 (연결은 첫 명령 시 수립)"""
    return redis_async.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5.0,
    )


async def ping(client: Redis) -> bool:
    """연결 상태 확인"""
    try:
        return bool(await client.ping())
    except RedisError as e:
        logger.warning(f"[Redis] ping 실패: {e}")
        return False


async def close_redis(client: Redis) -> None:
    """연결 풀 종료"""
    try:
        await client.aclose()
    except RedisError as e:
        logger.warning(f"[Redis] 종료 중 오류: {e}")
