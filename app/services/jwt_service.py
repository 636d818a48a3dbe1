"""
JWT 토큰 서비스
액세스 토큰 검증 (발급은 외부 인증 서비스 담당, create_access_token은 내부 도구/테스트용)
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from jose import jwt, JWTError
from pydantic import BaseModel, Field


class InvalidTokenError(Exception):
    """유효하지 않은 토큰"""

    pass


class TokenClaims(BaseModel):
    """검증된 토큰 클레임"""

    user_id: str
    claims: Dict[str, Any] = Field(default_factory=dict)


class JWTService:
    """JWT 토큰 서비스"""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_minutes: int = 60):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def create_access_token(
        self,
        user_id: str,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """액세스 토큰 생성"""
        if expires_delta:
            expire = datetime.utcnow() + expires_delta
        else:
            expire = datetime.utcnow() + timedelta(minutes=self.expire_minutes)

        payload = {
            "sub": user_id,
            "exp": expire,
            "iat": datetime.utcnow(),
            "type": "access",
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def validate_access_token(self, token: str) -> TokenClaims:
        """
        액세스 토큰 검증 및 디코딩

        Raises:
            InvalidTokenError: 서명 불일치, 만료, 타입 오류, sub 누락
        """
        if not token:
            raise InvalidTokenError("토큰이 비어있습니다")

        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            raise InvalidTokenError(str(e)) from e

        if payload.get("type", "access") != "access":
            raise InvalidTokenError("액세스 토큰이 아닙니다")

        user_id = payload.get("sub")
        if not user_id:
            raise InvalidTokenError("sub 클레임이 없습니다")

        return TokenClaims(user_id=str(user_id), claims=payload)

    def user_id_or_none(self, token: Optional[str]) -> Optional[str]:
        """토큰이 유효하면 사용자 ID, 아니면 None (익명으로 진행)"""
        if not token:
            return None
        try:
            return self.validate_access_token(token).user_id
        except InvalidTokenError:
            return None
