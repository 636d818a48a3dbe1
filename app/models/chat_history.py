"""
대화 메시지 / 검색 이력 ORM 모델
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID
import uuid

from app.database import Base


class ChatMessage(Base):
    """대화 메시지 모델"""

    __tablename__ = "chat_messages"

    # Primary Key (클라이언트 선할당 ID 사용 가능)
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    session_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="user | assistant",
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    response_type: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="dialogue | search | text | error",
    )
    quick_replies: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    products: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    product_description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="AI 생성 상품 설명",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<ChatMessage(id={self.id}, session={self.session_id}, role={self.role})>"


class SearchHistory(Base):
    """검색 이력 모델"""

    __tablename__ = "search_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="익명 검색은 NULL",
    )
    session_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    search_query: Mapped[str] = mapped_column(Text, nullable=False, comment="사용자 원문")
    optimized_query: Mapped[str] = mapped_column(Text, nullable=False, comment="번역된 검색어")
    search_type: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    country_code: Mapped[str] = mapped_column(String(2), nullable=False)
    language_code: Mapped[str] = mapped_column(String(10), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    result_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    products_found: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<SearchHistory(id={self.id}, query={self.search_query})>"
