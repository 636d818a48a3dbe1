"""
pytest 공통 fixture
"""
import json
from typing import Any, Dict, List, Optional, Tuple, Union

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.container import ServiceContainer
from app.main import create_app
from app.models.product import ProductCard, ProductDetails
from app.services.key_rotator import KeyRotator
from app.services.llm_provider import GenerationConfig, LLMError, LLMProvider, LLMResult
from app.services.message_store import InMemoryMessageStore, InMemorySearchHistoryStore
from app.services.pubsub import InMemoryPubSub
from app.services.quota import InMemoryAnonymousCounter
from app.services.search_client import SearchClient, SearchError
from app.services.session_store import InMemorySessionStore

ScriptedReply = Union[str, Dict[str, Any], Exception]


class ScriptedLLM(LLMProvider):
    """
    스크립트 기반 LLM

    번역/선호 추출/요약 프롬프트는 고정 응답을 주고,
    어시스턴트 프롬프트에는 등록된 응답을 순서대로 반환한다.
    """

    name = "scripted"

    def __init__(self, replies: Optional[List[ScriptedReply]] = None) -> None:
        super().__init__(KeyRotator("scripted", ["test-key"]), model="scripted-model")
        self.replies: List[ScriptedReply] = list(replies or [])
        self.assistant_prompts: List[str] = []
        self.assistant_configs: List[GenerationConfig] = []
        self.translation_prompts: List[str] = []
        self.preferences_reply = "{}"
        self.summary_reply = "User is looking for a product."
        self.translation_reply = "translated query"

    def get_chat_model(self, api_key: str, config: GenerationConfig, model: str):
        raise NotImplementedError("ScriptedLLM은 generate를 직접 구현합니다")

    def script(self, *replies: ScriptedReply) -> None:
        self.replies.extend(replies)

    async def generate(self, prompt: str, config: GenerationConfig) -> LLMResult:
        if prompt.startswith("Translate this product search query"):
            self.translation_prompts.append(prompt)
            return self._result(self.translation_reply)
        if prompt.startswith("Analyze this shopping conversation"):
            return self._result(self.preferences_reply)
        if prompt.startswith("Create a concise summary"):
            return self._result(self.summary_reply)

        self.assistant_prompts.append(prompt)
        self.assistant_configs.append(config)
        if not self.replies:
            raise LLMError("스크립트된 응답이 없습니다")

        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            reply = json.dumps(reply)
        return self._result(reply)

    def _result(self, text: str) -> LLMResult:
        result = LLMResult(
            text=text,
            usage={"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
            finish_reason="STOP",
            model=self.model,
        )
        self.token_stats.record(result)
        return result


class FakeSearchClient(SearchClient):
    """고정 결과를 돌려주는 검색 클라이언트"""

    def __init__(
        self,
        products: Optional[List[ProductCard]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        super().__init__(cache=None)
        self.products: List[ProductCard] = list(products or [])
        self.error = error
        self.calls: List[Tuple[str, str, str]] = []
        self.details: Optional[ProductDetails] = None
        self.details_calls: List[Tuple[str, str]] = []

    async def search(
        self,
        query: str,
        search_type: str,
        country: str,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
    ) -> Tuple[List[ProductCard], int]:
        self.calls.append((query, search_type, country))
        if self.error is not None:
            raise self.error
        return list(self.products), 0

    async def get_product_details(self, page_token: str, country: str) -> ProductDetails:
        self.details_calls.append((page_token, country))
        if self.details is None:
            raise SearchError("상세 정보 없음")
        return self.details


def make_products(count: int = 3, prefix: str = "Samsung Galaxy S24") -> List[ProductCard]:
    """테스트용 상품 카드"""
    return [
        ProductCard(
            name=f"{prefix} #{i + 1}",
            price=f"CHF {699 + i * 50}.00",
            link=f"https://shop.example.com/p/{i + 1}",
            description="Digitec",
        )
        for i in range(count)
    ]


@pytest.fixture
def settings() -> Settings:
    """재시도 대기 없는 테스트 설정"""
    return Settings(
        _env_file=None,
        llm_provider="gemini",
        google_api_keys="",
        serp_api_keys="",
        llm_use_grounding=False,
        ai_retry_base_delay=0.0,
        save_initial_delay=0.0,
        save_max_delay=0.0,
        turn_timeout_seconds=5.0,
        ai_attempt_timeout_seconds=2.0,
        ws_idle_timeout_seconds=5.0,
        jwt_secret_key="test-jwt-secret",
        session_signing_secret="test-signing-secret",
        storage_backend="memory",
        redis_enabled=False,
        server_id="test-server",
    )


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def search_client() -> FakeSearchClient:
    return FakeSearchClient(make_products(3))


@pytest.fixture
def session_store(settings) -> InMemorySessionStore:
    return InMemorySessionStore(settings.session_ttl_minutes)


@pytest.fixture
def container(settings, llm, search_client, session_store) -> ServiceContainer:
    """인메모리 구현으로 조립된 컨테이너"""
    return ServiceContainer(
        settings=settings,
        session_store=session_store,
        message_store=InMemoryMessageStore(),
        search_history_store=InMemorySearchHistoryStore(),
        anonymous_counter=InMemoryAnonymousCounter(),
        bus=InMemoryPubSub(),
        llm=llm,
        search_client=search_client,
    )


@pytest.fixture
def client(container):
    """테스트 클라이언트 (lifespan 포함)"""
    with TestClient(create_app(container)) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(container):
    """user-1 액세스 토큰 헤더"""
    token = container.jwt.create_access_token("user-1")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def sample_gift_query():
    """선물 대화 샘플 쿼리"""
    return "I need a gift for my wife"


@pytest.fixture
def sample_search_query():
    """검색 샘플 쿼리"""
    return "Samsung Galaxy S24"


@pytest.fixture
def product_factory():
    """상품 카드 생성 함수"""
    return make_products
