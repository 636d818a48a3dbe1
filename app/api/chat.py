"""
채팅 엔드포인트
REST로 채팅 턴 처리 및 세션 메시지 조회
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.container import ServiceContainer
from app.dependencies.auth import get_container, get_current_user_id_optional
from app.models.request import ChatRequest, TurnRequest
from app.models.response import (
    ErrorCode,
    MessageListResponse,
    MessagesSinceResponse,
    TurnResult,
    WSResponse,
)
from app.services.session_signer import SessionOwnershipError, SessionSignatureError

logger = logging.getLogger(__name__)

router = APIRouter()

# 에러 코드 → HTTP 상태
HTTP_STATUS_BY_ERROR = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_SESSION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.AUTH_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.INVALID_TOKEN: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.SESSION_OWNERSHIP: status.HTTP_403_FORBIDDEN,
    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.SEARCH_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.SESSION_SAVE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.SESSION_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.TURN_TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


def api_error(code: ErrorCode, message: str) -> HTTPException:
    """에러 코드를 HTTPException으로 변환"""
    return HTTPException(
        status_code=HTTP_STATUS_BY_ERROR.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"error": code.value, "message": message},
    )


def resolve_session_id(
    container: ServiceContainer,
    session_id: Optional[str],
    user_id: Optional[str],
) -> Optional[str]:
    """서명된 세션 ID 검증 후 원본 ID 반환"""
    try:
        return container.signer.resolve(session_id, user_id, container.signed_session_ttl)
    except SessionSignatureError:
        raise api_error(ErrorCode.INVALID_SESSION, "Invalid or expired session signature")
    except SessionOwnershipError:
        raise api_error(ErrorCode.SESSION_OWNERSHIP, "Session belongs to different user")


@router.post("/chat", response_model=TurnResult)
async def send_chat_message(
    request: ChatRequest,
    user_id: Optional[str] = Depends(get_current_user_id_optional),
    container: ServiceContainer = Depends(get_container),
) -> TurnResult:
    """
    채팅 메시지 처리

    WebSocket과 같은 오케스트레이터를 사용하며, 로그인 사용자의 다른 기기에도 결과를 동기화합니다.

    Args:
        request: 채팅 요청
        user_id: JWT에서 얻은 사용자 ID (선택)

    Returns:
        TurnResult: 응답 텍스트, 상품 카드, 빠른 답변, 검색 상태
    """
    session_id = resolve_session_id(container, request.session_id, user_id)
    user_message_id = uuid.uuid4()
    assistant_message_id = uuid.uuid4()

    if user_id and session_id:
        await container.connections.broadcast_to_user(
            user_id,
            WSResponse(
                type="user_message_sync",
                message_id=str(user_message_id),
                output=request.message,
                session_id=session_id,
            ).to_wire(),
        )

    result = await container.orchestrator.process_turn(
        TurnRequest(
            session_id=session_id,
            user_id=user_id,
            message=request.message,
            country=request.country,
            language=request.language,
            currency=request.currency,
            new_search=request.new_search,
            current_category=request.current_category,
            browser_id=request.browser_id,
            user_message_id=user_message_id,
            assistant_message_id=assistant_message_id,
        )
    )

    if result.error is not None:
        logger.warning(f"[Chat] 턴 실패: {result.error.code.value} - {result.error.message}")
        raise api_error(result.error.code, result.error.message)

    if user_id:
        await container.connections.broadcast_to_user(
            user_id,
            WSResponse.from_turn(result, "assistant_message_sync").to_wire(),
        )

    return result


async def authorize_session(
    container: ServiceContainer,
    session_id: str,
    user_id: Optional[str],
) -> str:
    """세션 ID를 확인하고, 소유자가 있는 세션이면 같은 사용자인지 검사"""
    base_id = resolve_session_id(container, session_id, user_id)

    session = await container.session_store.get(base_id)
    if session is not None and session.user_id and session.user_id != user_id:
        raise api_error(ErrorCode.SESSION_OWNERSHIP, "Session belongs to different user")
    return base_id


@router.get("/chat/messages", response_model=MessageListResponse)
async def get_session_messages(
    session_id: str = Query(..., min_length=1, description="세션 ID (서명된 ID 가능)"),
    limit: int = Query(100, ge=1, le=500),
    user_id: Optional[str] = Depends(get_current_user_id_optional),
    container: ServiceContainer = Depends(get_container),
) -> MessageListResponse:
    """
    세션 메시지 목록 조회

    세션에 소유자가 있으면 같은 사용자만 조회할 수 있습니다.
    """
    base_id = await authorize_session(container, session_id, user_id)
    messages = await container.message_store.list_by_session(base_id, limit)
    return MessageListResponse(session_id=base_id, messages=messages)


@router.get("/chat/messages/since", response_model=MessagesSinceResponse)
async def get_messages_since(
    session_id: str = Query(..., min_length=1, description="세션 ID (서명된 ID 가능)"),
    since: datetime = Query(..., description="마지막으로 받은 메시지 시각 (ISO 8601)"),
    limit: int = Query(100, ge=1, le=500),
    user_id: Optional[str] = Depends(get_current_user_id_optional),
    container: ServiceContainer = Depends(get_container),
) -> MessagesSinceResponse:
    """
    재연결 후 놓친 메시지 조회

    WebSocket 재연결 시 클라이언트가 마지막 메시지 시각 이후의 메시지를 받아 중복 없이 이어 붙입니다.
    """
    base_id = await authorize_session(container, session_id, user_id)

    # 메시지 시각은 UTC naive로 저장
    if since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)

    messages = await container.message_store.list_since(base_id, since, limit)
    logger.info(f"[Chat] 재연결 메시지 복구 - session: {base_id}, {len(messages)}개")
    return MessagesSinceResponse(
        session_id=base_id,
        since=since,
        message_count=len(messages),
        messages=messages,
    )
