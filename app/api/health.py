"""
헬스체크 엔드포인트
서버 및 외부 서비스 상태 확인
"""
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.container import ServiceContainer
from app.dependencies.auth import get_container
from app.services.redis_client import ping

router = APIRouter()


class HealthResponse(BaseModel):
    """헬스체크 응답"""

    status: Literal["healthy", "degraded", "unhealthy"]
    llm_provider: str
    search_api: Literal["up", "down", "unchecked"]
    redis: Literal["up", "down", "disabled"]
    active_sessions: int


@router.get("/health", response_model=HealthResponse)
async def health_check(container: ServiceContainer = Depends(get_container)) -> HealthResponse:
    """
    서버 상태 확인

    Returns:
        HealthResponse: 서버 및 외부 서비스 상태
    """
    settings = container.settings

    # 활성 세션 수 조회
    active_sessions = await container.session_store.count()

    # API 키 설정 여부 확인
    llm_configured = bool(settings.llm_api_keys)
    search_configured = bool(settings.serp_api_key_list)

    # Redis 연결 확인
    if container.redis is None:
        redis_status = "disabled"
    else:
        redis_status = "up" if await ping(container.redis) else "down"

    # 전체 상태 결정
    if llm_configured and search_configured and redis_status != "down":
        status = "healthy"
    elif llm_configured or search_configured:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(
        status=status,
        llm_provider=settings.llm_provider,
        search_api="up" if search_configured else "unchecked",
        redis=redis_status,
        active_sessions=active_sessions,
    )
