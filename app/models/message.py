"""
메시지 모델 정의
저장용 대화 메시지 및 검색 이력 레코드
"""
import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.models.product import ProductCard


class Message(BaseModel):
    """사용자/어시스턴트 발화 (저장 후 불변)"""

    id: uuid.UUID = Field(default_factory=uuid.uuid4, description="메시지 ID (클라이언트 선할당 가능)")
    session_id: str = Field(..., description="세션 ID")
    role: Literal["user", "assistant"] = Field(..., description="역할")
    content: str = Field(..., description="내용")
    response_type: Optional[str] = Field(None, description="dialogue | search | text | error")
    quick_replies: List[str] = Field(default_factory=list)
    products: List[ProductCard] = Field(default_factory=list)
    product_description: Optional[str] = Field(None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = {"frozen": True}


class SearchHistoryRecord(BaseModel):
    """검색 이력 레코드"""

    user_id: Optional[str] = None
    session_id: str
    search_query: str = Field(..., description="사용자 원문 검색어")
    optimized_query: str = Field(..., description="실제 검색어 (번역 후)")
    search_type: str
    category: str = ""
    country_code: str
    language_code: str
    currency: str
    result_count: int = 0
    products_found: List[ProductCard] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
