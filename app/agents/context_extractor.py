"""
대화 컨텍스트 추출기
사이클 히스토리에서 요약, 구조화된 선호, 제외 조건을 추출하여 ConversationContext 갱신
"""
import json
import logging
import re
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ValidationError

from app.models.session import (
    ChatSession,
    ConversationPreferences,
    CycleMessage,
    ProductInfo,
    SearchContext,
)
from app.services.llm_provider import GenerationConfig, LLMError, LLMProvider
from app.utils.json_repair import strip_wrappers
from app.utils.text_parser import unique_preserving_order

logger = logging.getLogger(__name__)


PREFERENCES_PROMPT = """Analyze this shopping conversation and extract user preferences in JSON format.

Conversation:
{conversation}

Current preferences: {current}

Extract and return ONLY a JSON object with these fields (omit fields if not mentioned):
{{
  "price_range": {{"min": 300, "max": 500, "currency": "{currency}"}},
  "brands": ["Apple", "Samsung"],
  "features": ["256GB storage", "OLED screen", "5G"],
  "requirements": ["2-year warranty", "fast delivery"]
}}

Rules:
- Only include information explicitly mentioned by the user
- Keep features and requirements concise
- Prices are in {currency}
- Return ONLY valid JSON, no explanations"""

SUMMARY_PROMPT = """Create a concise summary (2-3 sentences) of this shopping conversation.

Focus on:
- What product the user is looking for
- Key requirements and preferences mentioned
- Current status (still searching, narrowing down, found options)

Previous summary: {previous}

Recent conversation:
{conversation}

Return a clear, concise summary in {language} language. Maximum 3 sentences."""


# 제외 조건 키워드 (EN/RU/UK)
EXCLUSION_KEYWORDS: Dict[str, List[str]] = {
    "brand": ["не хочу", "don't want", "не потрібно", "not interested", "exclude"],
    "chinese": ["китайск", "chinese", "китайськ"],
    "refurbished": ["б/у", "refurbished", "used", "вживан"],
    "cheap": ["дешев", "cheap", "низкого качества", "low quality"],
}

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def build_conversation_text(messages: List[CycleMessage], max_messages: int = 8) -> str:
    """최근 N개 메시지를 'role: content' 줄로 변환"""
    return "\n".join(f"{m.role}: {m.content}" for m in messages[-max_messages:])


def cap_sentences(text: str, limit: int = 3) -> str:
    """문장 수 제한"""
    sentences = [s for s in _SENTENCE_END.split(text.strip()) if s]
    return " ".join(sentences[:limit])


def merge_preferences(
    current: ConversationPreferences,
    extracted: ConversationPreferences,
) -> ConversationPreferences:
    """추출 결과를 기존 선호에 누적 병합 (가격 범위는 새로 보고된 경우에만 교체)"""
    return ConversationPreferences(
        price_range=extracted.price_range or current.price_range,
        brands=unique_preserving_order(current.brands + extracted.brands),
        features=unique_preserving_order(current.features + extracted.features),
        requirements=unique_preserving_order(current.requirements + extracted.requirements),
    )


class ContextExtractor:
    """LLM 기반 대화 컨텍스트 추출기"""

    def __init__(
        self,
        llm: LLMProvider,
        recent_messages: int = 8,
        preferences_temperature: float = 0.2,
        preferences_max_tokens: int = 500,
        summary_temperature: float = 0.3,
        summary_max_tokens: int = 200,
    ) -> None:
        self._llm = llm
        self._recent = recent_messages
        self._preferences_config = GenerationConfig(
            temperature=preferences_temperature,
            max_output_tokens=preferences_max_tokens,
            json_mode=True,
        )
        self._summary_config = GenerationConfig(
            temperature=summary_temperature,
            max_output_tokens=summary_max_tokens,
        )

    async def extract_preferences(
        self,
        messages: List[CycleMessage],
        current: ConversationPreferences,
        currency: str,
    ) -> ConversationPreferences:
        """
        대화에서 구조화된 선호 추출

        Raises:
            LLMError: LLM 호출 실패
            ValueError: 응답이 올바른 JSON이 아님
        """
        if not messages:
            return current

        prompt = PREFERENCES_PROMPT.format(
            conversation=build_conversation_text(messages, self._recent),
            current=current.model_dump_json(exclude_none=True),
            currency=currency,
        )
        result = await self._llm.generate(prompt, self._preferences_config)

        try:
            extracted = ConversationPreferences.model_validate(json.loads(strip_wrappers(result.text)))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ValueError(f"선호 추출 응답 파싱 실패: {e}") from e

        merged = merge_preferences(current, extracted)
        logger.info(
            f"[ContextExtractor] 선호 추출: brands={merged.brands}, features={merged.features}, "
            f"price_range={merged.price_range}"
        )
        return merged

    async def generate_summary(
        self,
        messages: List[CycleMessage],
        previous: str,
        language: str,
    ) -> str:
        """대화 요약 생성 (최대 3문장, 빈 응답이면 이전 요약 유지)"""
        if not messages:
            return previous

        prompt = SUMMARY_PROMPT.format(
            previous=previous or "No previous summary",
            conversation=build_conversation_text(messages, self._recent),
            language=language,
        )
        result = await self._llm.generate(prompt, self._summary_config)

        summary = cap_sentences(result.text)
        if not summary:
            return previous

        logger.info(f"[ContextExtractor] 요약 생성: {summary}")
        return summary

    @staticmethod
    def extract_exclusions(messages: List[CycleMessage]) -> List[str]:
        """사용자 메시지에서 제외 조건 추출 (키워드 기반, 최초 등장 순)"""
        exclusions: List[str] = []

        for message in messages:
            if message.role != "user":
                continue

            content = message.content.lower()
            for category, keywords in EXCLUSION_KEYWORDS.items():
                if category in exclusions:
                    continue
                if any(keyword in content for keyword in keywords):
                    exclusions.append(category)

        return exclusions

    async def update_conversation_context(
        self,
        session: ChatSession,
        messages: List[CycleMessage],
    ) -> List[Exception]:
        """
        요약/선호/제외 조건 갱신

        실패한 하위 작업은 이전 값을 유지하고 오류를 반환 목록에 담는다.

        Returns:
            하위 작업 오류 목록 (로그용)
        """
        context = session.ensure_context()
        errors: List[Exception] = []

        try:
            context.preferences = await self.extract_preferences(
                messages, context.preferences, session.currency
            )
        except (LLMError, ValueError) as e:
            logger.warning(f"[ContextExtractor] 선호 추출 실패: {e}")
            errors.append(e)

        try:
            context.summary = await self.generate_summary(
                messages, context.summary, session.language_code
            )
        except LLMError as e:
            logger.warning(f"[ContextExtractor] 요약 생성 실패: {e}")
            errors.append(e)

        context.exclusions = unique_preserving_order(
            context.exclusions + self.extract_exclusions(messages)
        )
        context.updated_at = datetime.utcnow()

        logger.info(
            f"[ContextExtractor] 컨텍스트 갱신: summary_len={len(context.summary)}, "
            f"brands={len(context.preferences.brands)}, exclusions={len(context.exclusions)}"
        )
        return errors

    @staticmethod
    def update_last_search(
        session: ChatSession,
        query: str,
        category: str,
        products: List[ProductInfo],
        feedback: Optional[str] = None,
    ) -> None:
        """마지막 검색 스냅샷 갱신"""
        context = session.ensure_context()
        context.last_search = SearchContext(
            query=query,
            category=category,
            products_shown=list(products),
            user_feedback=feedback or "",
            timestamp=datetime.utcnow(),
        )
        logger.info(
            f"[ContextExtractor] 마지막 검색 갱신: query='{query}', category='{category}', "
            f"products={len(products)}"
        )
