"""
브로드캐스트 Pub/Sub
여러 서버 프로세스 사이에 사용자 이벤트를 전달 (Redis 채널 / 단일 프로세스용 인메모리)
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_exponential

logger = logging.getLogger(__name__)

# 구독 루프를 재연결로 복구하는 에러
_CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class BroadcastMessage(BaseModel):
    """서버 간 브로드캐스트 메시지"""

    user_id: str = Field(..., description="대상 사용자 ID")
    event_type: str = Field(..., description="이벤트 유형 (assistant_message_sync 등)")
    payload: Dict[str, Any] = Field(default_factory=dict, description="클라이언트로 보낼 이벤트 본문")
    server_id: str = Field(..., description="발행 서버 ID")
    exclude_connection_id: Optional[str] = Field(None, description="제외할 연결 ID (발신 기기)")


MessageHandler = Callable[[BroadcastMessage], Awaitable[None]]


class PubSubBus(ABC):
    """Pub/Sub 인터페이스"""

    @abstractmethod
    async def publish(self, message: BroadcastMessage) -> None:
        """메시지 발행"""
        pass

    @abstractmethod
    async def subscribe(self, handler: MessageHandler) -> None:
        """구독 시작 (프로세스당 1회)"""
        pass

    async def close(self) -> None:
        """구독 종료"""
        pass


class InMemoryPubSub(PubSubBus):
    """단일 프로세스 Pub/Sub (발행 시 구독자 핸들러를 직접 호출)"""

    def __init__(self) -> None:
        self._handlers: List[MessageHandler] = []
        self.published: List[BroadcastMessage] = []

    async def publish(self, message: BroadcastMessage) -> None:
        self.published.append(message)
        for handler in list(self._handlers):
            try:
                await handler(message)
            except Exception as e:
                logger.error(f"[PubSub] 핸들러 오류: {e}", exc_info=True)

    async def subscribe(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    async def close(self) -> None:
        self._handlers.clear()


class RedisPubSub(PubSubBus):
    """Redis 채널 기반 Pub/Sub (구독 연결이 끊기면 재연결 후 재구독)"""

    def __init__(
        self,
        redis: Redis,
        channel: str = "broadcast:all_users",
        reconnect_wait_seconds: float = 1.0,
        reconnect_max_wait_seconds: float = 30.0,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._reconnect_wait = reconnect_wait_seconds
        self._reconnect_max_wait = reconnect_max_wait_seconds
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None
        self.reconnect_count = 0

    async def publish(self, message: BroadcastMessage) -> None:
        try:
            await self._redis.publish(self._channel, message.model_dump_json())
        except RedisError as e:
            # 로컬 전달은 이미 끝났으므로 원격 전달 실패는 로그만 남김
            logger.warning(f"[PubSub] 발행 실패 ({message.event_type}): {e}")

    async def subscribe(self, handler: MessageHandler) -> None:
        if self._listener is not None:
            logger.warning("[PubSub] 이미 구독 중입니다")
            return

        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._listener = asyncio.create_task(self._listen(handler), name="pubsub-listener")
        logger.info(f"[PubSub] 채널 구독: {self._channel}")

    async def _listen(self, handler: MessageHandler) -> None:
        while True:
            try:
                await self._consume(handler)
                return
            except _CONNECTION_ERRORS as e:
                logger.warning(f"[PubSub] 구독 연결 끊김, 재연결 시도: {e}")
                await self._reconnect()

    async def _consume(self, handler: MessageHandler) -> None:
        async for raw in self._pubsub.listen():
            if raw.get("type") != "message":
                continue

            try:
                message = BroadcastMessage.model_validate_json(raw["data"])
            except ValidationError as e:
                logger.warning(f"[PubSub] 잘못된 메시지 무시: {e}")
                continue

            try:
                await handler(message)
            except Exception as e:
                logger.error(f"[PubSub] 핸들러 오류: {e}", exc_info=True)

    async def _reconnect(self) -> None:
        """새 pubsub 연결을 만들고 채널 재구독 (성공할 때까지 지수 백오프)"""
        retrying = AsyncRetrying(
            wait=wait_exponential(multiplier=self._reconnect_wait, max=self._reconnect_max_wait),
            retry=retry_if_exception_type(_CONNECTION_ERRORS),
            before_sleep=_log_reconnect_failure,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                await self._discard_pubsub()
                self._pubsub = self._redis.pubsub()
                await self._pubsub.subscribe(self._channel)

        self.reconnect_count += 1
        logger.info(f"[PubSub] 채널 재구독 완료: {self._channel} (재연결 {self.reconnect_count}회)")

    async def _discard_pubsub(self) -> None:
        if self._pubsub is None:
            return
        try:
            await self._pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.debug(f"[PubSub] 이전 연결 정리 실패: {e}")
        self._pubsub = None

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self._channel)
            except (RedisError, OSError) as e:
                logger.warning(f"[PubSub] 구독 해제 실패: {e}")
            await self._discard_pubsub()


def _log_reconnect_failure(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"[PubSub] 재연결 실패 ({retry_state.attempt_number}회): {error}")
