"""
스케줄러 서비스
APScheduler를 사용하여 만료 세션/캐시 정리 작업 실행
"""

import logging
from typing import List, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.services.cache import SearchCache
from app.services.session_store import SessionStore, SessionStoreError

logger = logging.getLogger(__name__)


class SchedulerService:
    """스케줄러 서비스"""

    def __init__(
        self,
        session_store: SessionStore,
        cache: Optional[SearchCache] = None,
        sweep_minutes: int = 10,
    ):
        self.scheduler = AsyncIOScheduler()
        self._session_store = session_store
        self._cache = cache
        self._sweep_minutes = sweep_minutes
        self._is_running = False

    def start(self):
        """스케줄러 시작"""
        if self._is_running:
            logger.warning("스케줄러가 이미 실행 중입니다")
            return

        # 만료 세션 정리
        self.scheduler.add_job(
            self.sweep_sessions,
            trigger=IntervalTrigger(minutes=self._sweep_minutes),
            id="session_sweep",
            name="만료 세션 정리",
            replace_existing=True,
        )

        # 만료 검색 캐시 정리
        if self._cache is not None:
            self.scheduler.add_job(
                self.sweep_cache,
                trigger=IntervalTrigger(minutes=self._sweep_minutes),
                id="cache_sweep",
                name="검색 캐시 정리",
                replace_existing=True,
            )

        self.scheduler.start()
        self._is_running = True
        logger.info("스케줄러 시작됨")

    def stop(self):
        """스케줄러 중지"""
        if not self._is_running:
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("스케줄러 중지됨")

    async def sweep_sessions(self) -> int:
        """만료 세션 정리"""
        try:
            removed = await self._session_store.clear_expired()
        except SessionStoreError as e:
            logger.error(f"세션 정리 중 오류: {e}")
            return 0

        if removed:
            logger.info(f"만료 세션 정리 완료: {removed}개 삭제")
        return removed

    async def sweep_cache(self) -> int:
        """만료 캐시 정리"""
        if self._cache is None:
            return 0

        removed = await self._cache.clear_expired()
        if removed:
            logger.info(f"검색 캐시 정리 완료: {removed}개 삭제")
        return removed

    def get_jobs(self) -> List[dict]:
        """등록된 작업 목록 조회"""
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            })
        return jobs
