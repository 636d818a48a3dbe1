"""
세션 ID 서명 서비스
HMAC-SHA256으로 세션 ID에 소유자와 발급 시각을 묶어 위조를 방지

형식: s1.{base_id}.{owner_b64}.{issued_at}.{signature}
"""
import base64
import hashlib
import hmac
import time
from datetime import timedelta
from typing import Optional, Tuple

SIGNED_PREFIX = "s1."


class SessionSignatureError(Exception):
    """서명 검증 실패 (변조 또는 만료)"""

    pass


class SessionOwnershipError(Exception):
    """다른 사용자의 세션 접근"""

    pass


def _b64encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


class SessionSigner:
    """세션 ID 서명/검증"""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("세션 서명 시크릿이 비어있습니다")
        self._secret = secret.encode("utf-8")

    def _signature(self, payload: str) -> str:
        digest = hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).digest()
        return _b64encode(digest)

    def sign(self, base_id: str, owner_id: Optional[str] = None, issued_at: Optional[int] = None) -> str:
        """
        세션 ID 서명

        Args:
            base_id: 원본 세션 ID ('.' 포함 불가)
            owner_id: 소유 사용자 ID (익명이면 None)
            issued_at: 발급 시각 (유닉스 초, 테스트용)

        Returns:
            서명된 세션 ID
        """
        if not base_id or "." in base_id:
            raise ValueError(f"서명할 수 없는 세션 ID: {base_id!r}")

        owner = _b64encode(owner_id.encode("utf-8")) if owner_id else ""
        timestamp = int(issued_at if issued_at is not None else time.time())
        payload = f"{SIGNED_PREFIX}{base_id}.{owner}.{timestamp}"
        return f"{payload}.{self._signature(payload)}"

    @staticmethod
    def is_signed(session_id: Optional[str]) -> bool:
        """서명된 세션 ID 형식인지 확인"""
        return bool(session_id) and session_id.startswith(SIGNED_PREFIX) and session_id.count(".") == 4

    def verify_and_extract(
        self,
        signed_id: str,
        max_age: timedelta = timedelta(hours=24),
    ) -> Tuple[str, Optional[str]]:
        """
        서명 검증 후 원본 세션 ID와 소유자 추출

        Returns:
            (원본 세션 ID, 소유 사용자 ID 또는 None)

        Raises:
            SessionSignatureError: 형식 오류, 서명 불일치, 만료
        """
        if not self.is_signed(signed_id):
            raise SessionSignatureError("서명된 세션 ID 형식이 아닙니다")

        payload, _, signature = signed_id.rpartition(".")
        if not hmac.compare_digest(signature, self._signature(payload)):
            raise SessionSignatureError("세션 서명이 일치하지 않습니다")

        _, base_id, owner, timestamp = payload.split(".")
        try:
            issued_at = int(timestamp)
            owner_id = _b64decode(owner).decode("utf-8") if owner else None
        except (ValueError, UnicodeDecodeError) as e:
            raise SessionSignatureError(f"세션 서명 페이로드 오류: {e}") from e

        if time.time() - issued_at > max_age.total_seconds():
            raise SessionSignatureError("세션 서명이 만료되었습니다")

        return base_id, owner_id

    def resolve(
        self,
        session_id: Optional[str],
        user_id: Optional[str],
        max_age: timedelta = timedelta(hours=24),
    ) -> Optional[str]:
        """
        클라이언트가 보낸 세션 ID를 원본 ID로 변환

        서명되지 않은 ID는 그대로 반환한다. 서명에 소유자가 있고 요청 사용자가 다르면 거부한다.

        Raises:
            SessionSignatureError: 서명 검증 실패
            SessionOwnershipError: 다른 사용자의 세션
        """
        if not self.is_signed(session_id):
            return session_id

        base_id, owner_id = self.verify_and_extract(session_id, max_age)
        if owner_id and user_id and owner_id != user_id:
            raise SessionOwnershipError(f"세션 {base_id}는 다른 사용자 소유입니다")
        return base_id
