"""
인증 의존성
"""

from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.container import ServiceContainer
from app.services.jwt_service import InvalidTokenError

# Bearer 토큰 스키마
security = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    """앱에 등록된 서비스 컨테이너"""
    return request.app.state.container


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    container: ServiceContainer = Depends(get_container),
) -> str:
    """
    현재 로그인된 사용자 ID (필수)
    토큰이 없거나 유효하지 않으면 401 에러
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "auth_required", "message": "Authentication required"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = container.jwt.validate_access_token(credentials.credentials)
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "invalid_token", "message": "Invalid or expired token"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    return claims.user_id


async def get_current_user_id_optional(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    container: ServiceContainer = Depends(get_container),
) -> Optional[str]:
    """
    현재 로그인된 사용자 ID (선택)
    토큰이 없으면 None, 토큰이 있는데 유효하지 않으면 401 에러
    """
    if credentials is None:
        return None

    return await get_current_user_id(credentials, container)
