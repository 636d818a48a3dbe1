"""
사이클 상태 머신
세션별 (cycle_id, iteration) 추적, 이터레이션 한도 도달 시 사이클 교체
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from app.models.session import CycleMessage, CycleState, LastCycleContext, ProductInfo
from app.utils.text_parser import unique_preserving_order

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 6


class CycleDecision(str, Enum):
    """이터레이션 증가 결과"""

    CONTINUE = "continue"
    ROTATE = "rotate"


class CycleStateMachine:
    """사이클/이터레이션 프로토콜"""

    def __init__(
        self,
        prompt_id: str = "",
        prompt_hash: str = "",
        max_iterations: int = MAX_ITERATIONS,
    ) -> None:
        self._prompt_id = prompt_id
        self._prompt_hash = prompt_hash
        self.max_iterations = max_iterations

    def initial_state(self) -> CycleState:
        """새 세션의 초기 상태 (cycle 1, iteration 1)"""
        return CycleState(
            cycle_id=1,
            iteration=1,
            cycle_history=[],
            last_cycle_context=None,
            last_defined=[],
            prompt_id=self._prompt_id,
            prompt_hash=self._prompt_hash,
        )

    def add_turn(
        self,
        state: CycleState,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """현재 사이클 히스토리에 메시지 추가"""
        state.cycle_history.append(
            CycleMessage(role=role, content=content, metadata=metadata or {})
        )

    def increment_iteration(self, state: CycleState) -> CycleDecision:
        """
        턴 완료 후 이터레이션 증가

        증가 전에 한도를 확인한다. 이미 한도에 도달했으면 상태를 바꾸지 않고 ROTATE 반환.
        """
        if state.iteration >= self.max_iterations:
            logger.info(
                f"[Cycle] 최대 이터레이션 도달 ({self.max_iterations}), 사이클 {state.cycle_id} 교체 필요"
            )
            return CycleDecision.ROTATE

        state.iteration += 1
        logger.debug(f"[Cycle] 사이클 {state.cycle_id}, 이터레이션 {state.iteration}/{self.max_iterations}")
        return CycleDecision.CONTINUE

    def start_new_cycle(
        self,
        state: CycleState,
        last_request: str,
        products: List[ProductInfo],
    ) -> None:
        """현재 사이클을 요약으로 보존하고 새 사이클 시작"""
        state.last_cycle_context = LastCycleContext(
            groups=self.extract_groups(state.cycle_history),
            subgroups=self.extract_subgroups(state.cycle_history),
            products=list(products),
            last_request=last_request,
        )
        state.cycle_id += 1
        state.iteration = 1
        state.cycle_history = []

        logger.info(f"[Cycle] 새 사이클 {state.cycle_id} 시작 (이전 컨텍스트 이월)")

    def record_defined(self, state: CycleState, names: List[str]) -> None:
        """확정된 상품명 기록 (중복 제외)"""
        state.last_defined = unique_preserving_order(state.last_defined + names)

    def check_prompt_drift(self, state: CycleState) -> bool:
        """
        저장된 프롬프트 해시와 현재 해시 비교

        Returns:
            드리프트 발생 여부 (발생 시 상태를 현재 프롬프트로 갱신)
        """
        if not self._prompt_hash or state.prompt_hash == self._prompt_hash:
            return False

        logger.warning(
            f"[Cycle] 프롬프트 변경 감지: {state.prompt_hash[:12] or '(없음)'} → {self._prompt_hash[:12]}"
        )
        state.prompt_id = self._prompt_id
        state.prompt_hash = self._prompt_hash
        return True

    @staticmethod
    def extract_groups(history: List[CycleMessage]) -> List[str]:
        """히스토리 메타데이터의 카테고리 목록"""
        return unique_preserving_order(
            [str(m.metadata.get("category") or "") for m in history]
        )

    @staticmethod
    def extract_subgroups(history: List[CycleMessage]) -> List[str]:
        """히스토리 메타데이터의 검색 문구 목록"""
        return unique_preserving_order(
            [str(m.metadata.get("search_phrase") or "") for m in history]
        )

    @staticmethod
    def current_category(state: CycleState) -> str:
        """가장 최근 어시스턴트 메시지의 카테고리"""
        for message in reversed(state.cycle_history):
            if message.role == "assistant":
                category = message.metadata.get("category")
                if category:
                    return str(category)
        return "unknown"
