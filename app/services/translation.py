"""
검색어 번역 서비스
Google Shopping 검색용으로 검색어를 영어로 번역 (실패 시 원문 유지)
"""
import logging

from app.services.llm_provider import GenerationConfig, LLMError, LLMProvider
from app.utils.text_parser import is_english, strip_quotes

logger = logging.getLogger(__name__)

TRANSLATION_PROMPT = """Translate this product search query to English. Keep it concise and optimized for Google Shopping.
Only return the translated query, nothing else.

Query: {query}

Translated query:"""


class TranslationService:
    """LLM 기반 검색어 번역"""

    def __init__(
        self,
        llm: LLMProvider,
        temperature: float = 0.1,
        max_tokens: int = 100,
    ) -> None:
        self._llm = llm
        self._config = GenerationConfig(temperature=temperature, max_output_tokens=max_tokens)

    async def translate_to_english(self, text: str) -> str:
        """
        검색어를 영어로 번역

        이미 영어이거나 번역에 실패하면 원문을 그대로 반환한다.
        """
        if is_english(text):
            return text

        try:
            result = await self._llm.generate(TRANSLATION_PROMPT.format(query=text), self._config)
        except LLMError as e:
            logger.warning(f"[Translation] 번역 실패, 원문 사용: {e}")
            return text

        translated = strip_quotes(result.text)
        if not translated:
            return text

        logger.info(f"[Translation] '{text}' → '{translated}'")
        return translated
