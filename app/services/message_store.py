"""
메시지 / 검색 이력 저장소
인메모리 구현과 SQLAlchemy(PostgreSQL) 구현
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.models.chat_history import ChatMessage, SearchHistory
from app.models.message import Message, SearchHistoryRecord
from app.models.product import ProductCard

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """메시지 저장소 인터페이스"""

    @abstractmethod
    async def append(self, message: Message) -> None:
        """메시지 추가"""
        pass

    @abstractmethod
    async def list_by_session(self, session_id: str, limit: int = 100) -> List[Message]:
        """세션의 메시지 목록 (작성 순)"""
        pass

    @abstractmethod
    async def list_since(self, session_id: str, since: datetime, limit: int = 100) -> List[Message]:
        """since 이후에 작성된 메시지 (재연결 시 놓친 메시지 복구용, 작성 순)"""
        pass


class SearchHistoryStore(ABC):
    """검색 이력 저장소 인터페이스"""

    @abstractmethod
    async def save(self, record: SearchHistoryRecord) -> None:
        """검색 이력 저장"""
        pass


class InMemoryMessageStore(MessageStore):
    """인메모리 메시지 저장소"""

    def __init__(self) -> None:
        self._messages: Dict[str, List[Message]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def append(self, message: Message) -> None:
        async with self._lock:
            self._messages[message.session_id].append(message)

    async def list_by_session(self, session_id: str, limit: int = 100) -> List[Message]:
        async with self._lock:
            return list(self._messages.get(session_id, []))[-limit:]

    async def list_since(self, session_id: str, since: datetime, limit: int = 100) -> List[Message]:
        async with self._lock:
            newer = [m for m in self._messages.get(session_id, []) if m.created_at > since]
        return newer[:limit]


class InMemorySearchHistoryStore(SearchHistoryStore):
    """인메모리 검색 이력 저장소"""

    def __init__(self) -> None:
        self.records: List[SearchHistoryRecord] = []
        self._lock = asyncio.Lock()

    async def save(self, record: SearchHistoryRecord) -> None:
        async with self._lock:
            self.records.append(record)


def _to_message(row: ChatMessage) -> Message:
    return Message(
        id=row.id,
        session_id=row.session_id,
        role=row.role,
        content=row.content,
        response_type=row.response_type,
        quick_replies=row.quick_replies or [],
        products=[ProductCard.model_validate(p) for p in row.products or []],
        product_description=row.product_description,
        created_at=row.created_at,
    )


class SqlMessageStore(MessageStore):
    """PostgreSQL 메시지 저장소"""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def append(self, message: Message) -> None:
        row = ChatMessage(
            id=message.id,
            session_id=message.session_id,
            role=message.role,
            content=message.content,
            response_type=message.response_type,
            quick_replies=list(message.quick_replies),
            products=[p.model_dump() for p in message.products],
            product_description=message.product_description,
            created_at=message.created_at,
        )
        async with self._session_factory() as db:
            db.add(row)
            await db.commit()

    async def list_by_session(self, session_id: str, limit: int = 100) -> List[Message]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatMessage)
                .where(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.created_at.desc())
                .limit(limit)
            )
            rows = list(result.scalars().all())

        rows.reverse()
        return [_to_message(row) for row in rows]

    async def list_since(self, session_id: str, since: datetime, limit: int = 100) -> List[Message]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatMessage)
                .where(ChatMessage.session_id == session_id, ChatMessage.created_at > since)
                .order_by(ChatMessage.created_at.asc())
                .limit(limit)
            )
            return [_to_message(row) for row in result.scalars().all()]


class SqlSearchHistoryStore(SearchHistoryStore):
    """PostgreSQL 검색 이력 저장소"""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def save(self, record: SearchHistoryRecord) -> None:
        row = SearchHistory(
            user_id=record.user_id,
            session_id=record.session_id,
            search_query=record.search_query,
            optimized_query=record.optimized_query,
            search_type=record.search_type,
            category=record.category or None,
            country_code=record.country_code,
            language_code=record.language_code,
            currency=record.currency,
            result_count=record.result_count,
            products_found=[p.model_dump() for p in record.products_found],
            created_at=record.created_at,
        )
        async with self._session_factory() as db:
            db.add(row)
            await db.commit()
