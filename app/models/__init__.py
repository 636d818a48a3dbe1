# Pydantic Models
from app.models.ai_response import (
    AIResponse,
    ApiRequestResponse,
    DialogueResponse,
    ResponseType,
    SearchResponse,
)
from app.models.message import Message, SearchHistoryRecord
from app.models.product import ProductCard, ProductSearchResult
from app.models.request import ChatRequest, SignSessionRequest, TurnRequest, WSMessage
from app.models.response import (
    ErrorCode,
    ErrorInfo,
    MessageListResponse,
    SearchStateResponse,
    SignSessionResponse,
    TurnResult,
    WSResponse,
)
from app.models.session import (
    ChatSession,
    ConversationContext,
    ConversationPreferences,
    CycleState,
    SearchState,
    SearchStatus,
)

__all__ = [
    # AI response models
    "AIResponse",
    "ApiRequestResponse",
    "DialogueResponse",
    "ResponseType",
    "SearchResponse",
    # Message models
    "Message",
    "SearchHistoryRecord",
    # Product models
    "ProductCard",
    "ProductSearchResult",
    # Request models
    "ChatRequest",
    "SignSessionRequest",
    "TurnRequest",
    "WSMessage",
    # Response models
    "ErrorCode",
    "ErrorInfo",
    "MessageListResponse",
    "SearchStateResponse",
    "SignSessionResponse",
    "TurnResult",
    "WSResponse",
    # Session models
    "ChatSession",
    "ConversationContext",
    "ConversationPreferences",
    "CycleState",
    "SearchState",
    "SearchStatus",
]
