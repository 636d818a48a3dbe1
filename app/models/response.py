"""
응답 모델 정의
턴 결과, 에러 코드, WebSocket 송신 메시지
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.models.message import Message
from app.models.product import ProductCard


class ErrorCode(str, Enum):
    """사용자에게 노출되는 에러 코드"""

    VALIDATION_ERROR = "validation_error"
    SESSION_ERROR = "session_error"
    SESSION_SAVE_FAILED = "session_save_failed"
    TURN_TIMEOUT = "turn_timeout"
    INVALID_SESSION = "invalid_session"
    SESSION_OWNERSHIP = "session_ownership"
    AUTH_REQUIRED = "auth_required"
    INVALID_TOKEN = "invalid_token"
    UNKNOWN_MESSAGE_TYPE = "unknown_message_type"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SEARCH_FAILED = "search_failed"


class ErrorInfo(BaseModel):
    """에러 정보"""

    code: ErrorCode = Field(..., description="에러 코드")
    message: str = Field(..., description="에러 메시지")


class SearchStateResponse(BaseModel):
    """클라이언트용 검색 상태"""

    status: str = Field(..., description="idle | searching | completed")
    category: str = Field(default="")
    can_continue: bool = Field(..., description="추가 검색 가능 여부")
    search_count: int = Field(..., ge=0)
    max_searches: int = Field(..., ge=0)
    anonymous_search_used: int = Field(default=0, ge=0)
    anonymous_search_limit: int = Field(default=0, ge=0)
    requires_authentication: bool = Field(default=False, description="로그인 필요 여부")
    message: Optional[str] = Field(None, description="상태 안내 메시지")


class TurnResult(BaseModel):
    """채팅 턴 결과"""

    type: str = Field(default="", description="dialogue | search | text | error")
    message_id: Optional[uuid.UUID] = Field(None, description="어시스턴트 메시지 ID")
    output: str = Field(default="")
    quick_replies: List[str] = Field(default_factory=list)
    products: List[ProductCard] = Field(default_factory=list)
    product_description: str = Field(default="")
    search_type: str = Field(default="")
    session_id: str = Field(default="")
    message_count: int = Field(default=0)
    search_state: Optional[SearchStateResponse] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def failure(cls, code: ErrorCode, message: str, **kwargs: Any) -> "TurnResult":
        """에러 결과 생성"""
        return cls(type="error", error=ErrorInfo(code=code, message=message), **kwargs)


class WSResponse(BaseModel):
    """WebSocket 송신 메시지"""

    type: str
    message_id: Optional[str] = None
    output: Optional[str] = None
    quick_replies: Optional[List[str]] = None
    products: Optional[List[ProductCard]] = None
    product_description: Optional[str] = None
    search_type: Optional[str] = None
    session_id: Optional[str] = None
    message_count: Optional[int] = None
    search_state: Optional[SearchStateResponse] = None
    error: Optional[str] = None
    message: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_turn(cls, result: TurnResult, event_type: Optional[str] = None) -> "WSResponse":
        """턴 결과를 송신 메시지로 변환"""
        return cls(
            type=event_type or result.type,
            message_id=str(result.message_id) if result.message_id else None,
            output=result.output,
            quick_replies=result.quick_replies,
            products=result.products,
            product_description=result.product_description,
            search_type=result.search_type,
            session_id=result.session_id,
            message_count=result.message_count,
            search_state=result.search_state,
        )

    @classmethod
    def error_event(cls, code: ErrorCode, message: str) -> "WSResponse":
        """에러 송신 메시지"""
        return cls(type="error", error=code.value, message=message)

    def to_wire(self) -> Dict[str, Any]:
        """JSON 직렬화 (None 필드 제외)"""
        return self.model_dump(mode="json", exclude_none=True)


class SignSessionResponse(BaseModel):
    """세션 ID 서명 응답"""

    session_id: str = Field(..., description="원본 세션 ID")
    signed_session_id: str = Field(..., description="서명된 세션 ID")
    expires_in: int = Field(..., description="유효 시간 (초)")


class MessageListResponse(BaseModel):
    """세션 메시지 목록"""

    session_id: str
    messages: List[Message] = Field(default_factory=list)


class MessagesSinceResponse(BaseModel):
    """재연결 후 놓친 메시지 목록"""

    session_id: str
    since: datetime
    message_count: int = 0
    messages: List[Message] = Field(default_factory=list)
