"""
컨텍스트 깊이 정책
턴마다 LLM에 보낼 대화 이력의 양(MINIMAL / MEDIUM / FULL)을 결정
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from app.agents.cycle import MAX_ITERATIONS
from app.models.session import ChatSession

logger = logging.getLogger(__name__)


class ContextDepth(str, Enum):
    """컨텍스트 깊이"""

    MINIMAL = "minimal"  # 최근 1~2개 메시지 + 마지막 상품
    MEDIUM = "medium"  # 최근 N개 메시지 + 선호 요약
    FULL = "full"  # 현재 사이클 전체 + 이전 사이클 요약


# 짧은 후속 질문 키워드 (EN/RU/UK/DE/FR)
FOLLOW_UP_KEYWORDS: List[str] = [
    "cheaper",
    "more expensive",
    "another",
    "similar",
    "other color",
    "bigger",
    "smaller",
    "дешевле",
    "дороже",
    "другой",
    "похож",
    "дешевше",
    "дорожче",
    "інший",
    "billiger",
    "günstiger",
    "teurer",
    "moins cher",
    "plus cher",
]


class DepthClassifier(ABC):
    """깊이 분류 전략"""

    @abstractmethod
    def classify(self, user_message: str, session: ChatSession) -> ContextDepth:
        """메시지와 세션 상태로 깊이 결정"""
        pass


class HeuristicDepthClassifier(DepthClassifier):
    """키워드/길이 기반 기본 분류기"""

    def __init__(
        self,
        short_message_words: int = 3,
        follow_up_keywords: Optional[List[str]] = None,
    ) -> None:
        self._short_words = short_message_words
        self._keywords = follow_up_keywords or FOLLOW_UP_KEYWORDS

    def classify(self, user_message: str, session: ChatSession) -> ContextDepth:
        state = session.cycle_state

        # 사이클 첫 메시지 (현재 메시지만 있음)
        if len(state.cycle_history) <= 1:
            return ContextDepth.FULL

        text = user_message.strip().lower()
        if session.search_state.last_product is not None:
            if any(keyword in text for keyword in self._keywords):
                return ContextDepth.MINIMAL
            if len(text.split()) <= self._short_words:
                return ContextDepth.MINIMAL

        return ContextDepth.MEDIUM


class ContextDepthPolicy:
    """컨텍스트 깊이 및 컨텍스트 갱신 시점 정책"""

    def __init__(
        self,
        classifier: Optional[DepthClassifier] = None,
        update_interval: int = 4,
        max_iterations: int = MAX_ITERATIONS,
        medium_messages: int = 3,
    ) -> None:
        self._classifier = classifier or HeuristicDepthClassifier()
        self._update_interval = max(update_interval, 1)
        self._max_iterations = max_iterations
        self.medium_messages = medium_messages

    def decide_depth(self, user_message: str, session: ChatSession) -> ContextDepth:
        """이번 턴의 컨텍스트 깊이 결정"""
        depth = self._classifier.classify(user_message, session)
        logger.info(
            f"[ContextPolicy] 깊이={depth.value} (cycle={session.cycle_state.cycle_id}, "
            f"iteration={session.cycle_state.iteration})"
        )
        return depth

    def should_update_context(self, session: ChatSession) -> bool:
        """
        컨텍스트 추출기(LLM 호출) 실행 여부

        - 아직 컨텍스트가 없고 한 번 이상 주고받은 경우
        - K개 메시지마다
        - 사이클 교체 직전
        """
        state = session.cycle_state
        context = session.conversation_context

        has_context = context is not None and (
            bool(context.summary) or not context.preferences.is_empty()
        )
        if not has_context and len(state.cycle_history) >= 2:
            return True

        if session.message_count > 0 and session.message_count % self._update_interval == 0:
            return True

        return state.iteration >= self._max_iterations
