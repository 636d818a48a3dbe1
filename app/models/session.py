"""
세션 모델 정의
채팅 세션, 검색 상태, 사이클 상태, 대화 컨텍스트
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from app.models.product import ProductCard
from app.utils.text_parser import parse_price


class SearchStatus(str, Enum):
    """검색 진행 상태"""

    IDLE = "idle"
    SEARCHING = "searching"
    COMPLETED = "completed"


class ProductInfo(BaseModel):
    """마지막으로 보여준 상품 요약"""

    name: str
    price: float = 0.0


class SearchState(BaseModel):
    """세션 내 검색 한도 및 마지막 결과 추적"""

    status: SearchStatus = Field(default=SearchStatus.IDLE)
    category: str = Field(default="", description="현재 카테고리")
    search_count: int = Field(default=0, ge=0, description="누적 검색 횟수")
    last_product: Optional[ProductInfo] = Field(None)


class CycleMessage(BaseModel):
    """사이클 히스토리 항목"""

    role: Literal["user", "assistant"] = Field(..., description="역할")
    content: str = Field(..., description="내용")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class LastCycleContext(BaseModel):
    """이전 사이클에서 넘어온 요약 컨텍스트"""

    groups: List[str] = Field(default_factory=list, description="카테고리 그룹")
    subgroups: List[str] = Field(default_factory=list, description="검색 문구")
    products: List[ProductInfo] = Field(default_factory=list)
    last_request: str = Field(default="")


class CycleState(BaseModel):
    """사이클/이터레이션 프로토콜 상태"""

    cycle_id: int = Field(default=1, ge=1)
    iteration: int = Field(default=1, ge=1)
    cycle_history: List[CycleMessage] = Field(default_factory=list)
    last_cycle_context: Optional[LastCycleContext] = Field(None)
    last_defined: List[str] = Field(default_factory=list, description="확정된 상품명")
    prompt_id: str = Field(default="")
    prompt_hash: str = Field(default="")


class PriceRange(BaseModel):
    """가격 범위 선호"""

    min: Optional[float] = None
    max: Optional[float] = None
    currency: str = ""


class ConversationPreferences(BaseModel):
    """구조화된 사용자 선호"""

    price_range: Optional[PriceRange] = None
    brands: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    requirements: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        """선호 정보가 비어있는지 확인"""
        return (
            self.price_range is None
            and not self.brands
            and not self.features
            and not self.requirements
        )


class SearchContext(BaseModel):
    """마지막 검색 스냅샷"""

    query: str = ""
    category: str = ""
    products_shown: List[ProductInfo] = Field(default_factory=list)
    user_feedback: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ConversationContext(BaseModel):
    """사이클과 무관한 대화 의미 메모리"""

    summary: str = ""
    preferences: ConversationPreferences = Field(default_factory=ConversationPreferences)
    exclusions: List[str] = Field(default_factory=list)
    last_search: Optional[SearchContext] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ChatSession(BaseModel):
    """채팅 세션"""

    id: str = Field(..., description="세션 ID")
    user_id: Optional[str] = Field(None, description="소유 사용자 ID (익명 가능)")
    country_code: str = Field(..., description="국가 코드")
    language_code: str = Field(..., description="언어 코드")
    currency: str = Field(..., description="통화")
    message_count: int = Field(default=0, ge=0)
    version: int = Field(default=0, description="낙관적 동시성 버전")

    search_state: SearchState = Field(default_factory=SearchState)
    cycle_state: CycleState = Field(default_factory=CycleState)
    conversation_context: Optional[ConversationContext] = Field(None)

    # 메타데이터
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime = Field(default_factory=lambda: datetime.utcnow() + timedelta(hours=24))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """만료 여부 확인"""
        return (now or datetime.utcnow()) > self.expires_at

    def touch(self, ttl: timedelta) -> None:
        """슬라이딩 TTL 갱신"""
        self.updated_at = datetime.utcnow()
        self.expires_at = self.updated_at + ttl

    def ensure_context(self) -> ConversationContext:
        """대화 컨텍스트 반환 (없으면 생성)"""
        if self.conversation_context is None:
            self.conversation_context = ConversationContext()
        return self.conversation_context


def products_to_info(products: List[ProductCard]) -> List[ProductInfo]:
    """상품 카드 목록을 요약 정보로 변환"""
    return [ProductInfo(name=p.name, price=parse_price(p.price) or 0.0) for p in products]
