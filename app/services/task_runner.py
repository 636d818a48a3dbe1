"""
백그라운드 작업 실행기
응답을 기다리지 않는 작업(검색 이력 저장 등)을 분리된 태스크로 실행하고 오류는 로그로 남김
"""
import asyncio
import logging
from typing import Any, Coroutine, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """fire-and-forget 태스크 실행기"""

    def __init__(self) -> None:
        # 실행 중 태스크가 GC되지 않도록 참조 유지
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, coro: Coroutine[Any, Any, Any], name: str = "background") -> asyncio.Task:
        """코루틴을 분리 실행"""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[TaskRunner] {task.get_name()} 실패: {error}", exc_info=error)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """실행 중인 태스크 완료 대기 (종료/테스트용)"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
