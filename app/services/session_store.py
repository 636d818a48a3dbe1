"""
세션 저장소
인메모리(asyncio.Lock) / Redis 세션 관리, 버전 기반 낙관적 동시성 제어
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from app.models.session import ChatSession, CycleState

logger = logging.getLogger(__name__)


class SessionStoreError(Exception):
    """세션 저장소 접근 실패"""

    pass


class SessionConflictError(SessionStoreError):
    """다른 요청이 먼저 세션을 저장함 (버전 불일치)"""

    pass


class SessionStore(ABC):
    """세션 저장소 인터페이스"""

    def __init__(self, ttl_minutes: int = 1440) -> None:
        self._ttl = timedelta(minutes=ttl_minutes)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @abstractmethod
    async def get(self, session_id: str) -> Optional[ChatSession]:
        """세션 조회 (없거나 만료되면 None)"""
        pass

    @abstractmethod
    async def put(self, session: ChatSession) -> None:
        """
        세션 저장

        저장된 버전과 session.version이 다르면 SessionConflictError.
        성공 시 session.version이 1 증가한다.
        """
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """세션 삭제"""
        pass

    async def clear_expired(self) -> int:
        """만료된 세션 정리"""
        return 0

    @abstractmethod
    async def count(self) -> int:
        """활성 세션 수"""
        pass

    async def create_with_owner(
        self,
        session_id: str,
        country: str,
        language: str,
        currency: str,
        owner_id: Optional[str] = None,
        cycle_state: Optional[CycleState] = None,
    ) -> ChatSession:
        """지정한 ID로 새 세션 생성 후 저장"""
        session = ChatSession(
            id=session_id,
            user_id=owner_id,
            country_code=country,
            language_code=language,
            currency=currency,
            cycle_state=cycle_state or CycleState(),
        )
        session.touch(self._ttl)
        await self.put(session)
        return session


class InMemorySessionStore(SessionStore):
    """인메모리 세션 저장소"""

    def __init__(self, ttl_minutes: int = 1440) -> None:
        super().__init__(ttl_minutes)
        self._sessions: Dict[str, ChatSession] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[ChatSession]:
        async with self._lock:
            session = self._sessions.get(session_id)

            if session is None:
                return None

            # TTL 체크
            if session.is_expired():
                del self._sessions[session_id]
                return None

            # 호출자는 작업용 복사본을 받음
            return session.model_copy(deep=True)

    async def put(self, session: ChatSession) -> None:
        async with self._lock:
            stored = self._sessions.get(session.id)
            if stored is not None and stored.version != session.version:
                raise SessionConflictError(
                    f"세션 {session.id} 버전 충돌 (저장: {stored.version}, 요청: {session.version})"
                )

            session.version += 1
            session.touch(self._ttl)
            self._sessions[session.id] = session.model_copy(deep=True)

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def clear_expired(self) -> int:
        now = datetime.utcnow()
        async with self._lock:
            expired_ids = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
            for sid in expired_ids:
                del self._sessions[sid]

        return len(expired_ids)

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)


class RedisSessionStore(SessionStore):
    """Redis 세션 저장소 (JSON + 슬라이딩 TTL)"""

    KEY_PREFIX = "session:"

    def __init__(self, redis: Redis, ttl_minutes: int = 1440) -> None:
        super().__init__(ttl_minutes)
        self._redis = redis

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    async def get(self, session_id: str) -> Optional[ChatSession]:
        try:
            raw = await self._redis.get(self._key(session_id))
        except RedisError as e:
            raise SessionStoreError(f"세션 조회 실패: {e}") from e

        if raw is None:
            return None
        return ChatSession.model_validate_json(raw)

    async def put(self, session: ChatSession) -> None:
        key = self._key(session.id)
        expected_version = session.version

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is not None:
                    stored = ChatSession.model_validate_json(raw)
                    if stored.version != expected_version:
                        raise SessionConflictError(
                            f"세션 {session.id} 버전 충돌 (저장: {stored.version}, 요청: {expected_version})"
                        )

                candidate = session.model_copy(deep=True)
                candidate.version = expected_version + 1
                candidate.touch(self._ttl)

                pipe.multi()
                pipe.setex(key, int(self._ttl.total_seconds()), candidate.model_dump_json())
                await pipe.execute()
        except WatchError as e:
            raise SessionConflictError(f"세션 {session.id} 동시 수정 감지") from e
        except RedisError as e:
            raise SessionStoreError(f"세션 저장 실패: {e}") from e

        session.version = candidate.version
        session.updated_at = candidate.updated_at
        session.expires_at = candidate.expires_at

    async def delete(self, session_id: str) -> bool:
        try:
            return bool(await self._redis.delete(self._key(session_id)))
        except RedisError as e:
            raise SessionStoreError(f"세션 삭제 실패: {e}") from e

    async def count(self) -> int:
        total = 0
        async for _ in self._redis.scan_iter(match=f"{self.KEY_PREFIX}*"):
            total += 1
        return total


class SessionLockManager:
    """
    세션 ID별 asyncio.Lock

    같은 세션의 턴은 직렬로 처리된다. 대기자가 없으면 락을 제거한다.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = defaultdict(int)
        self._guard = asyncio.Lock()

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        async with self._guard:
            lock = self._locks.setdefault(session_id, asyncio.Lock())
            self._waiters[session_id] += 1

        try:
            async with lock:
                yield
        finally:
            async with self._guard:
                self._waiters[session_id] -= 1
                if self._waiters[session_id] <= 0:
                    self._waiters.pop(session_id, None)
                    self._locks.pop(session_id, None)

    def active_count(self) -> int:
        return len(self._locks)
