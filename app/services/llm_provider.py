"""
LLM Provider 추상화
Gemini와 OpenAI를 선택적으로 사용할 수 있는 추상화 계층
키 로테이션, 에러 분류, 재시도, 폴백 모델 처리 포함
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage
from pydantic import BaseModel, Field, model_validator
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import Settings
from app.services.key_rotator import KeyRotator, KeysExhaustedError

logger = logging.getLogger(__name__)


# ========== 에러 ==========


class LLMError(Exception):
    """LLM 호출 에러"""

    pass


class LLMQuotaError(LLMError):
    """할당량 초과 (429 / RESOURCE_EXHAUSTED)"""

    pass


class LLMUnavailableError(LLMError):
    """서비스 과부하 (503 / UNAVAILABLE)"""

    pass


class LLMTimeoutError(LLMError):
    """요청 타임아웃"""

    pass


class LLMEmptyResponseError(LLMError):
    """빈 응답"""

    pass


_QUOTA_MARKERS = ("quota", "429", "RESOURCE_EXHAUSTED", "rate limit")
_UNAVAILABLE_MARKERS = ("503", "UNAVAILABLE", "overloaded")
_TIMEOUT_MARKERS = ("timeout", "timed out", "deadline exceeded")

RETRYABLE_ERRORS = (LLMQuotaError, LLMUnavailableError, LLMTimeoutError)


def classify_error(exc: BaseException) -> LLMError:
    """제공자 예외를 LLMError 계층으로 분류"""
    if isinstance(exc, LLMError):
        return exc

    message = str(exc)
    lowered = message.lower()

    if any(marker.lower() in lowered for marker in _QUOTA_MARKERS):
        return LLMQuotaError(message)
    if any(marker.lower() in lowered for marker in _UNAVAILABLE_MARKERS):
        return LLMUnavailableError(message)
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        return LLMTimeoutError(message)
    return LLMError(message)


# ========== 요청/응답 모델 ==========


class GenerationConfig(BaseModel):
    """생성 설정"""

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=2048, gt=0)
    use_grounding: bool = Field(default=False, description="Google 검색 그라운딩 사용")
    json_mode: bool = Field(default=False, description="JSON 출력 강제")
    response_schema: Optional[Dict[str, Any]] = Field(None, description="구조화 출력 스키마")
    model: Optional[str] = Field(None, description="모델 오버라이드")
    max_attempts: Optional[int] = Field(None, ge=1, description="제공자 재시도 횟수 오버라이드 (1이면 재시도 없음)")
    allow_fallback: bool = Field(default=True, description="실패 시 폴백 모델 사용")

    @model_validator(mode="after")
    def _grounding_excludes_schema(self) -> "GenerationConfig":
        # 그라운딩과 구조화 출력 스키마는 동시에 사용할 수 없음
        if self.use_grounding and (self.response_schema is not None or self.json_mode):
            raise ValueError("그라운딩과 JSON 스키마는 함께 사용할 수 없습니다")
        return self


class LLMResult(BaseModel):
    """생성 결과"""

    text: str
    usage: Dict[str, int] = Field(default_factory=dict)
    finish_reason: str = ""
    used_grounding: bool = False
    model: str = ""

    @property
    def truncated(self) -> bool:
        """토큰 한도로 잘렸는지 여부"""
        return self.finish_reason.upper() in ("MAX_TOKENS", "LENGTH")


class TokenStats:
    """토큰 사용량 통계"""

    def __init__(self) -> None:
        self.total_requests = 0
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.total_tokens = 0
        self.requests_with_grounding = 0

    def record(self, result: LLMResult) -> None:
        self.total_requests += 1
        self.total_input_tokens += result.usage.get("input_tokens", 0)
        self.total_output_tokens += result.usage.get("output_tokens", 0)
        self.total_tokens += result.usage.get("total_tokens", 0)
        if result.used_grounding:
            self.requests_with_grounding += 1

    def snapshot(self) -> Dict[str, Any]:
        requests = self.total_requests or 1
        return {
            "total_requests": self.total_requests,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_tokens": self.total_tokens,
            "requests_with_grounding": self.requests_with_grounding,
            "average_input_tokens": round(self.total_input_tokens / requests, 1),
            "average_output_tokens": round(self.total_output_tokens / requests, 1),
        }


def _message_text(message: BaseMessage) -> str:
    """응답 메시지 본문 추출 (파트 리스트 형태 포함)"""
    content = message.content
    if isinstance(content, str):
        return content

    parts: List[str] = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(str(part.get("text", "")))
    return "".join(parts)


# ========== 제공자 ==========


class LLMProvider(ABC):
    """LLM 제공자 추상 기본 클래스"""

    name = "base"

    def __init__(
        self,
        key_rotator: KeyRotator,
        model: str,
        fallback_model: str = "",
        attempt_timeout: float = 30.0,
        max_attempts: int = 3,
    ) -> None:
        self._key_rotator = key_rotator
        self.model = model
        self.fallback_model = fallback_model
        self._attempt_timeout = attempt_timeout
        self._max_attempts = max_attempts
        self.token_stats = TokenStats()

    @abstractmethod
    def get_chat_model(self, api_key: str, config: GenerationConfig, model: str) -> BaseChatModel:
        """채팅 모델 인스턴스 반환"""
        pass

    def _bind_options(self, chat_model: BaseChatModel, config: GenerationConfig) -> Any:
        """그라운딩/JSON 출력 옵션 바인딩 (기본: 없음)"""
        return chat_model

    async def generate(self, prompt: str, config: GenerationConfig) -> LLMResult:
        """
        프롬프트로 텍스트 생성

        기본 모델로 재시도 후 실패하면 폴백 모델을 시도한다.

        Args:
            prompt: 전체 프롬프트
            config: 생성 설정

        Returns:
            LLMResult

        Raises:
            LLMError: 모든 모델 실패
        """
        primary = config.model or self.model
        models = [primary]
        if config.allow_fallback and self.fallback_model and self.fallback_model != primary:
            models.append(self.fallback_model)

        last_error: Optional[LLMError] = None
        for model_name in models:
            try:
                return await self._generate_with_retry(prompt, config, model_name)
            except LLMError as e:
                last_error = e
                if model_name != models[-1]:
                    logger.warning(f"[LLM] {model_name} 실패, 폴백 모델 시도: {e}")

        if last_error is None:
            raise LLMError("시도할 모델이 없습니다")
        raise last_error

    async def _generate_with_retry(
        self, prompt: str, config: GenerationConfig, model_name: str
    ) -> LLMResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(config.max_attempts or self._max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._invoke_once(prompt, config, model_name)
        raise LLMError("재시도 루프가 결과 없이 종료되었습니다")

    async def _invoke_once(
        self, prompt: str, config: GenerationConfig, model_name: str
    ) -> LLMResult:
        try:
            api_key, key_index = self._key_rotator.get_next_key()
        except KeysExhaustedError as e:
            raise LLMError(str(e)) from e

        runnable = self._bind_options(self.get_chat_model(api_key, config, model_name), config)

        try:
            message = await asyncio.wait_for(
                runnable.ainvoke([HumanMessage(content=prompt)]),
                timeout=self._attempt_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"[LLM] 요청 타임아웃 ({self._attempt_timeout}s, {model_name})")
            raise LLMTimeoutError(f"{model_name} 요청 타임아웃") from e
        except Exception as e:
            error = classify_error(e)
            if isinstance(error, LLMQuotaError):
                logger.warning(f"[LLM] 할당량 초과, 키 #{key_index} 교체")
                self._key_rotator.mark_exhausted(key_index)
            else:
                logger.warning(f"[LLM] 호출 실패 ({type(error).__name__}): {e}")
            raise error from e

        text = _message_text(message).strip()
        usage = dict(getattr(message, "usage_metadata", None) or {})
        metadata = getattr(message, "response_metadata", None) or {}
        finish_reason = str(metadata.get("finish_reason") or "")

        result = LLMResult(
            text=text,
            usage={k: int(v) for k, v in usage.items() if isinstance(v, int)},
            finish_reason=finish_reason,
            used_grounding=config.use_grounding,
            model=model_name,
        )
        self.token_stats.record(result)

        if not text and not result.truncated:
            raise LLMEmptyResponseError(f"{model_name} 빈 응답")

        return result


class GeminiProvider(LLMProvider):
    """Google Gemini LLM 제공자"""

    name = "gemini"

    def get_chat_model(self, api_key: str, config: GenerationConfig, model: str) -> BaseChatModel:
        """ChatGoogleGenerativeAI 인스턴스 반환"""
        from langchain_google_genai import ChatGoogleGenerativeAI

        kwargs: Dict[str, Any] = {}
        if config.json_mode or config.response_schema is not None:
            kwargs["response_mime_type"] = "application/json"
        if config.response_schema is not None:
            kwargs["response_schema"] = config.response_schema

        return ChatGoogleGenerativeAI(
            google_api_key=api_key,
            model=model,
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
            max_retries=0,
            **kwargs,
        )

    def _bind_options(self, chat_model: BaseChatModel, config: GenerationConfig) -> Any:
        if config.use_grounding:
            return chat_model.bind_tools([{"google_search": {}}])
        return chat_model


class OpenAIProvider(LLMProvider):
    """OpenAI LLM 제공자"""

    name = "openai"

    def get_chat_model(self, api_key: str, config: GenerationConfig, model: str) -> BaseChatModel:
        """ChatOpenAI 인스턴스 반환"""
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            api_key=api_key,
            model=model,
            temperature=config.temperature,
            max_tokens=config.max_output_tokens,
            max_retries=0,
        )

    def _bind_options(self, chat_model: BaseChatModel, config: GenerationConfig) -> Any:
        # OpenAI에는 Google 검색 그라운딩이 없으므로 JSON 출력만 지원
        if config.json_mode or config.response_schema is not None:
            return chat_model.bind(response_format={"type": "json_object"})
        return chat_model


def create_llm_provider(settings: Settings, key_rotator: KeyRotator) -> LLMProvider:
    """설정에 따른 LLM 제공자 생성"""
    options = dict(
        key_rotator=key_rotator,
        model=settings.llm_model,
        fallback_model=settings.llm_fallback_model,
        attempt_timeout=settings.ai_attempt_timeout_seconds,
    )

    if settings.llm_provider == "gemini":
        return GeminiProvider(**options)
    if settings.llm_provider == "openai":
        return OpenAIProvider(**options)
    raise ValueError(f"지원하지 않는 LLM 제공자: {settings.llm_provider}")
