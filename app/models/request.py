"""
요청 모델 정의
채팅 턴, REST 요청, WebSocket 수신 메시지
"""
import uuid
from typing import Optional

from pydantic import BaseModel, Field


class TurnRequest(BaseModel):
    """오케스트레이터 입력 (전송 계층과 무관)"""

    session_id: Optional[str] = Field(None, description="세션 ID (없으면 새로 생성)")
    user_id: Optional[str] = Field(None, description="인증된 사용자 ID")
    message: str = Field(..., description="사용자 메시지")
    country: Optional[str] = Field(None, description="국가 코드")
    language: Optional[str] = Field(None, description="언어 코드")
    currency: Optional[str] = Field(None, description="통화")
    new_search: bool = Field(default=False, description="새 검색 시작 (세션 상태 초기화)")
    current_category: Optional[str] = Field(None, description="클라이언트가 보고 있는 카테고리")
    browser_id: Optional[str] = Field(None, description="익명 검색 한도 추적용 브라우저 ID")
    user_message_id: Optional[uuid.UUID] = Field(None, description="클라이언트 선할당 사용자 메시지 ID")
    assistant_message_id: Optional[uuid.UUID] = Field(None, description="선할당 어시스턴트 메시지 ID")


class ChatRequest(BaseModel):
    """REST 채팅 요청"""

    message: str = Field(..., max_length=2000, description="사용자 메시지")
    session_id: Optional[str] = Field(None, description="세션 ID (서명된 ID 가능)")
    country: Optional[str] = Field(None, max_length=2)
    language: Optional[str] = Field(None, max_length=10)
    currency: Optional[str] = Field(None, max_length=3)
    new_search: bool = False
    current_category: Optional[str] = None
    browser_id: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "message": "I need a gift for my wife",
                "session_id": None,
                "country": "CH",
                "language": "en",
                "currency": "CHF",
                "new_search": False,
                "browser_id": "b-7f3a",
            }
        }
    }


class WSMessage(BaseModel):
    """WebSocket 수신 메시지"""

    type: str = Field(..., description="chat | ping | sync_session | sync_preferences")
    session_id: Optional[str] = None
    message: str = ""
    country: Optional[str] = None
    language: Optional[str] = None
    currency: Optional[str] = None
    new_search: bool = False
    current_category: Optional[str] = None
    browser_id: Optional[str] = None
    access_token: Optional[str] = None
    preferences: Optional[dict] = Field(None, description="sync_preferences 본문")

    model_config = {"extra": "ignore"}


class SignSessionRequest(BaseModel):
    """세션 ID 서명 요청"""

    session_id: Optional[str] = Field(None, description="서명할 세션 ID (없으면 새로 발급)")


class ProductDetailsRequest(BaseModel):
    """상품 상세 조회 요청"""

    page_token: str = Field(default="", description="상품 카드의 page_token")
    country: Optional[str] = Field(None, max_length=2, description="국가 코드 (없으면 기본 국가)")
