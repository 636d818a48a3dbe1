"""
어시스턴트 AI 턴
컨텍스트 깊이 결정 → 프롬프트 조립 → LLM 호출 → 응답 파싱
"""
import logging
from typing import Tuple

from app.agents.context_policy import ContextDepthPolicy
from app.agents.prompts import PromptManager
from app.agents.response_parser import parse_ai_response
from app.models.ai_response import AI_RESPONSE_SCHEMA, BaseAIResponse
from app.models.session import ChatSession
from app.services.llm_provider import GenerationConfig, LLMProvider

logger = logging.getLogger(__name__)


class AssistantService:
    """LLM 기반 쇼핑 어시스턴트 (한 턴의 AI 호출 담당)"""

    def __init__(
        self,
        llm: LLMProvider,
        prompts: PromptManager,
        policy: ContextDepthPolicy,
        temperature: float = 0.7,
        max_output_tokens: int = 2048,
        use_grounding: bool = True,
    ) -> None:
        self._llm = llm
        self._prompts = prompts
        self._policy = policy
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._use_grounding = use_grounding

    def _config(self, grounding: bool) -> GenerationConfig:
        # 제공자 재시도/폴백 없음 (재시도 예산은 오케스트레이터 소유)
        if grounding:
            return GenerationConfig(
                temperature=self._temperature,
                max_output_tokens=self._max_output_tokens,
                use_grounding=True,
                max_attempts=1,
                allow_fallback=False,
            )
        # 그라운딩 없이 호출할 때는 구조화 출력 스키마 강제
        return GenerationConfig(
            temperature=self._temperature,
            max_output_tokens=self._max_output_tokens,
            json_mode=True,
            response_schema=AI_RESPONSE_SCHEMA,
            max_attempts=1,
            allow_fallback=False,
        )

    async def respond(self, session: ChatSession, user_message: str) -> Tuple[BaseAIResponse, bool]:
        """
        사용자 메시지에 대한 AI 응답 생성

        Args:
            session: 작업 중인 세션 (사용자 메시지가 사이클 히스토리에 추가된 상태)
            user_message: 사용자 메시지

        Returns:
            (파싱된 AI 응답, 그라운딩 사용 여부)

        Raises:
            LLMError: LLM 호출 실패
            AIResponseParseError: 응답 파싱 실패
        """
        depth = self._policy.decide_depth(user_message, session)
        prompt = self._prompts.build_prompt(
            session, user_message, depth, self._policy.medium_messages
        )

        grounding = self._use_grounding
        result = await self._llm.generate(prompt, self._config(grounding))

        # 그라운딩 응답이 토큰 한도로 잘리면 그라운딩 없이 1회 재시도
        if result.truncated and grounding:
            logger.warning("[Assistant] MAX_TOKENS로 응답 잘림, 그라운딩 없이 재시도")
            grounding = False
            result = await self._llm.generate(prompt, self._config(grounding))

        response = parse_ai_response(result.text, used_grounding=grounding)
        logger.info(
            f"[Assistant] 응답 유형={response.response_type}, 깊이={depth.value}, "
            f"category={response.category or '-'}"
        )
        return response, grounding
