"""
LLM 제공자 유닛 테스트
"""
import pytest
from langchain_core.language_models import FakeListChatModel
from pydantic import ValidationError

from app.services.key_rotator import KeyRotator
from app.services.llm_provider import (
    GenerationConfig,
    LLMError,
    LLMProvider,
    LLMQuotaError,
    LLMResult,
    LLMTimeoutError,
    LLMUnavailableError,
    TokenStats,
    classify_error,
)


class FakeListProvider(LLMProvider):
    """FakeListChatModel을 사용하는 제공자"""

    name = "fake"

    def __init__(self, responses, key_rotator=None) -> None:
        super().__init__(key_rotator or KeyRotator("fake", ["key-1"]), model="fake-model")
        self.responses = responses
        self.used_models = []

    def get_chat_model(self, api_key, config, model):
        self.used_models.append(model)
        return FakeListChatModel(responses=self.responses)


class TestErrorClassification:
    """에러 분류 테스트"""

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("429 Resource has been exhausted (RESOURCE_EXHAUSTED)", LLMQuotaError),
            ("You exceeded your current quota", LLMQuotaError),
            ("503 The model is overloaded", LLMUnavailableError),
            ("Request timed out", LLMTimeoutError),
            ("Invalid argument", LLMError),
        ],
    )
    def test_classify(self, message: str, expected: type):
        """메시지로 에러 유형 분류"""
        assert type(classify_error(Exception(message))) is expected


class TestModels:
    """생성 설정/결과 모델 테스트"""

    def test_grounding_excludes_schema(self):
        """그라운딩과 JSON 스키마는 함께 사용할 수 없음"""
        with pytest.raises(ValidationError):
            GenerationConfig(use_grounding=True, json_mode=True)

    @pytest.mark.parametrize(
        "finish_reason,truncated",
        [("MAX_TOKENS", True), ("length", True), ("STOP", False), ("", False)],
    )
    def test_truncated(self, finish_reason: str, truncated: bool):
        assert LLMResult(text="x", finish_reason=finish_reason).truncated is truncated

    def test_token_stats(self):
        """토큰 사용량 누적"""
        stats = TokenStats()
        stats.record(LLMResult(text="a", usage={"input_tokens": 100, "output_tokens": 20, "total_tokens": 120}))
        stats.record(
            LLMResult(
                text="b",
                usage={"input_tokens": 50, "output_tokens": 10, "total_tokens": 60},
                used_grounding=True,
            )
        )

        snapshot = stats.snapshot()
        assert snapshot["total_requests"] == 2
        assert snapshot["total_tokens"] == 180
        assert snapshot["requests_with_grounding"] == 1
        assert snapshot["average_input_tokens"] == 75.0


class TestGenerate:
    """생성 호출 테스트"""

    async def test_generate_returns_text(self):
        """채팅 모델 응답 텍스트 반환"""
        provider = FakeListProvider(['  {"response_type": "dialogue", "output": "Hi"}  '])
        result = await provider.generate("prompt", GenerationConfig())

        assert result.text == '{"response_type": "dialogue", "output": "Hi"}'
        assert result.model == "fake-model"
        assert provider.token_stats.total_requests == 1

    async def test_model_override(self):
        """설정의 모델 오버라이드 사용"""
        provider = FakeListProvider(["ok"])
        await provider.generate("prompt", GenerationConfig(model="other-model"))
        assert provider.used_models == ["other-model"]

    async def test_no_keys(self):
        """키가 없으면 LLMError"""
        provider = FakeListProvider(["ok"], key_rotator=KeyRotator("fake", []))
        with pytest.raises(LLMError):
            await provider.generate("prompt", GenerationConfig())


class OverloadedModel:
    """항상 503을 던지는 모델"""

    def __init__(self) -> None:
        self.calls = 0

    async def ainvoke(self, messages):
        self.calls += 1
        raise Exception("503 The model is overloaded")


class OverloadedProvider(FakeListProvider):
    def __init__(self, fallback_model: str = "") -> None:
        super().__init__(["unused"])
        self.fallback_model = fallback_model
        self.overloaded = OverloadedModel()

    def _bind_options(self, chat_model, config):
        return self.overloaded


class TestRetryBudget:
    """재시도 횟수/폴백 설정 테스트"""

    async def test_single_attempt(self):
        """max_attempts=1이면 일시적 에러도 재시도하지 않음"""
        provider = OverloadedProvider()
        with pytest.raises(LLMUnavailableError):
            await provider.generate("prompt", GenerationConfig(max_attempts=1))
        assert provider.overloaded.calls == 1

    async def test_fallback_disabled(self):
        provider = OverloadedProvider(fallback_model="backup-model")
        with pytest.raises(LLMUnavailableError):
            await provider.generate("prompt", GenerationConfig(max_attempts=1, allow_fallback=False))
        assert provider.used_models == ["fake-model"]

    async def test_fallback_enabled(self):
        """기본 설정에서는 기본 모델 실패 후 폴백 모델 시도"""
        provider = OverloadedProvider(fallback_model="backup-model")
        with pytest.raises(LLMUnavailableError):
            await provider.generate("prompt", GenerationConfig(max_attempts=1))
        assert provider.used_models == ["fake-model", "backup-model"]
        assert provider.overloaded.calls == 2

    def test_invalid_attempts(self):
        with pytest.raises(ValidationError):
            GenerationConfig(max_attempts=0)
