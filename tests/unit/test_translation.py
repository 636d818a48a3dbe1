"""
검색어 번역 유닛 테스트
"""
from app.services.llm_provider import LLMError
from app.services.translation import TranslationService


class TestTranslation:
    """영어 번역 테스트"""

    async def test_english_passthrough(self, llm):
        """영어 검색어는 LLM 호출 없이 그대로"""
        translator = TranslationService(llm)
        assert await translator.translate_to_english("Samsung Galaxy S24") == "Samsung Galaxy S24"
        assert llm.translation_prompts == []

    async def test_translates_non_english(self, llm):
        """비영어 검색어는 번역 결과에서 따옴표 제거"""
        llm.translation_reply = '"wireless headphones"'
        translator = TranslationService(llm)

        assert await translator.translate_to_english("무선 헤드폰") == "wireless headphones"
        assert "무선 헤드폰" in llm.translation_prompts[0]

    async def test_failure_keeps_original(self, llm, monkeypatch):
        """번역 실패 시 원문 유지"""

        async def failing_generate(prompt, config):
            raise LLMError("503 UNAVAILABLE")

        monkeypatch.setattr(llm, "generate", failing_generate)
        translator = TranslationService(llm)

        assert await translator.translate_to_english("무선 헤드폰") == "무선 헤드폰"

    async def test_empty_reply_keeps_original(self, llm):
        """빈 번역 결과는 원문 유지"""
        llm.translation_reply = '""'
        translator = TranslationService(llm)
        assert await translator.translate_to_english("무선 헤드폰") == "무선 헤드폰"
