"""
통계 엔드포인트
API 키 로테이션, 토큰 사용량, 연결/세션 현황
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.container import ServiceContainer
from app.dependencies.auth import get_container

router = APIRouter()


@router.get("/stats")
async def get_stats(container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    """운영 통계 조회"""
    return {
        "server_id": container.server_id,
        "llm_keys": container.llm_keys.stats() if container.llm_keys else None,
        "serp_keys": container.serp_keys.stats() if container.serp_keys else None,
        "token_usage": container.llm.token_stats.snapshot(),
        "connections": await container.connections.stats(),
        "active_sessions": await container.session_store.count(),
        "active_turns": container.lock_manager.active_count(),
        "background_tasks": container.task_runner.pending,
        "scheduler_jobs": container.scheduler.get_jobs(),
    }
