"""
WebSocket 엔드포인트
실시간 채팅 및 같은 사용자의 기기 간 동기화
"""
import asyncio
import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.container import ServiceContainer
from app.models.request import TurnRequest, WSMessage
from app.models.response import ErrorCode, WSResponse
from app.services.jwt_service import InvalidTokenError
from app.services.session_signer import SessionOwnershipError, SessionSignatureError

logger = logging.getLogger(__name__)

router = APIRouter()

# 동기화 메시지 타입 → 브로드캐스트 이벤트
SYNC_EVENTS = {
    "sync_preferences": "preferences_updated",
    "sync_session": "session_changed",
}


async def send_event(websocket: WebSocket, event: WSResponse) -> None:
    await websocket.send_json(event.to_wire())


async def authenticate(
    container: ServiceContainer,
    connection_id: str,
    access_token: Optional[str],
) -> Optional[str]:
    """
    메시지에 포함된 토큰으로 사용자 확인

    유효하지 않은 토큰은 익명으로 처리하고, 유효하면 연결을 사용자에 연결합니다.
    """
    user_id = await container.connections.user_of(connection_id)
    if not access_token:
        return user_id

    try:
        claims = container.jwt.validate_access_token(access_token)
    except InvalidTokenError as e:
        logger.info(f"[WS] 토큰 검증 실패, 익명으로 처리: {e}")
        return None

    if claims.user_id != user_id:
        await container.connections.associate_user(connection_id, claims.user_id)
    return claims.user_id


async def handle_chat(
    websocket: WebSocket,
    container: ServiceContainer,
    connection_id: str,
    user_id: Optional[str],
    message: WSMessage,
) -> None:
    """채팅 턴 처리 후 결과 전송 및 다른 기기에 동기화"""
    try:
        session_id = container.signer.resolve(message.session_id, user_id, container.signed_session_ttl)
    except SessionSignatureError:
        await send_event(websocket, WSResponse.error_event(
            ErrorCode.INVALID_SESSION, "Invalid or expired session signature"
        ))
        return
    except SessionOwnershipError:
        await send_event(websocket, WSResponse.error_event(
            ErrorCode.SESSION_OWNERSHIP, "Session belongs to different user"
        ))
        return

    user_message_id = uuid.uuid4()

    if user_id and session_id:
        await container.connections.broadcast_to_user(
            user_id,
            WSResponse(
                type="user_message_sync",
                message_id=str(user_message_id),
                output=message.message,
                session_id=session_id,
            ).to_wire(),
            exclude_connection_id=connection_id,
        )

    result = await container.orchestrator.process_turn(
        TurnRequest(
            session_id=session_id,
            user_id=user_id,
            message=message.message,
            country=message.country,
            language=message.language,
            currency=message.currency,
            new_search=message.new_search,
            current_category=message.current_category,
            browser_id=message.browser_id,
            user_message_id=user_message_id,
            assistant_message_id=uuid.uuid4(),
        )
    )

    if result.error is not None:
        await send_event(websocket, WSResponse.error_event(result.error.code, result.error.message))
        return

    await send_event(websocket, WSResponse.from_turn(result))

    if user_id:
        await container.connections.broadcast_to_user(
            user_id,
            WSResponse.from_turn(result, "assistant_message_sync").to_wire(),
            exclude_connection_id=connection_id,
        )


async def handle_sync(
    websocket: WebSocket,
    container: ServiceContainer,
    connection_id: str,
    user_id: Optional[str],
    message: WSMessage,
) -> None:
    """환경설정/세션 변경을 같은 사용자의 다른 연결에 전파"""
    if not user_id:
        await send_event(websocket, WSResponse.error_event(ErrorCode.AUTH_REQUIRED, "Authentication required"))
        return

    event_type = SYNC_EVENTS[message.type]
    payload = message.preferences if message.type == "sync_preferences" else {"session_id": message.session_id}
    delivered = await container.connections.broadcast_to_user(
        user_id,
        WSResponse(type=event_type, session_id=message.session_id, payload=payload).to_wire(),
        exclude_connection_id=connection_id,
    )

    logger.debug(f"[WS] {event_type} 전파: user={user_id}, 로컬 {delivered}개 연결")
    await send_event(websocket, WSResponse(type="sync_ack", message=event_type))


@router.websocket("/ws")
async def chat_websocket(websocket: WebSocket):
    """
    채팅 WebSocket

    지원 메시지: chat, ping, sync_session, sync_preferences
    클라이언트는 유휴 시간 안에 메시지(또는 ping)를 보내야 하며, 그렇지 않으면 연결이 종료됩니다.
    """
    container: ServiceContainer = websocket.app.state.container
    idle_timeout = container.settings.ws_idle_timeout_seconds

    await websocket.accept()
    connection_id = uuid.uuid4().hex
    await container.connections.register(connection_id, websocket)
    logger.info(f"[WS] 연결: {connection_id}")

    try:
        while True:
            try:
                raw = await asyncio.wait_for(websocket.receive_text(), timeout=idle_timeout)
            except asyncio.TimeoutError:
                logger.info(f"[WS] 유휴 시간 초과로 연결 종료: {connection_id}")
                await websocket.close(code=1000, reason="Idle timeout")
                break

            try:
                message = WSMessage.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.debug(f"[WS] 잘못된 메시지: {e}")
                await send_event(websocket, WSResponse.error_event(ErrorCode.VALIDATION_ERROR, "Invalid message format"))
                continue

            user_id = await authenticate(container, connection_id, message.access_token)

            if message.type == "ping":
                await send_event(websocket, WSResponse(type="pong"))
            elif message.type == "chat":
                await handle_chat(websocket, container, connection_id, user_id, message)
            elif message.type in SYNC_EVENTS:
                await handle_sync(websocket, container, connection_id, user_id, message)
            else:
                await send_event(websocket, WSResponse.error_event(
                    ErrorCode.UNKNOWN_MESSAGE_TYPE, "Unknown message type"
                ))

    except WebSocketDisconnect:
        logger.info(f"[WS] 연결 해제: {connection_id}")
    finally:
        await container.connections.unregister(connection_id)
