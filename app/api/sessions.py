"""
세션 엔드포인트
세션 ID 서명 발급
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from app.container import ServiceContainer
from app.dependencies.auth import get_container, get_current_user_id_optional
from app.models.request import SignSessionRequest
from app.models.response import ErrorCode, SignSessionResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sessions/sign", response_model=SignSessionResponse)
async def sign_session(
    request: SignSessionRequest,
    user_id: Optional[str] = Depends(get_current_user_id_optional),
    container: ServiceContainer = Depends(get_container),
) -> SignSessionResponse:
    """
    세션 ID 서명

    로그인 사용자는 서명에 소유자가 포함되어 다른 사용자가 같은 세션을 쓸 수 없습니다.

    Args:
        request: 서명할 세션 ID (없으면 새로 발급)
        user_id: JWT에서 얻은 사용자 ID (선택)

    Returns:
        SignSessionResponse: 원본 ID, 서명된 ID, 유효 시간
    """
    base_id = request.session_id or str(uuid.uuid4())

    if container.signer.is_signed(base_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": ErrorCode.INVALID_SESSION.value, "message": "Session ID is already signed"},
        )

    try:
        signed = container.signer.sign(base_id, owner_id=user_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": ErrorCode.VALIDATION_ERROR.value, "message": str(e)},
        )

    logger.info(f"[Sessions] 세션 서명 발급: {base_id} (owner={user_id or 'anonymous'})")
    return SignSessionResponse(
        session_id=base_id,
        signed_session_id=signed,
        expires_in=int(container.signed_session_ttl.total_seconds()),
    )
