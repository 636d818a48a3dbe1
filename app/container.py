"""
서비스 컨테이너
설정에 따라 저장소/외부 클라이언트/에이전트를 조립하고 수명주기를 관리
"""
import logging
import uuid
from datetime import timedelta
from typing import Optional

from redis.asyncio import Redis

from app.agents.assistant import AssistantService
from app.agents.context_extractor import ContextExtractor
from app.agents.context_policy import ContextDepthPolicy
from app.agents.cycle import CycleStateMachine
from app.agents.orchestrator import ChatOrchestrator
from app.agents.prompts import PromptManager
from app.config import Settings
from app.database import close_db, get_session_factory, init_db
from app.services.cache import InMemoryCache, RedisSearchCache, SearchCache
from app.services.connection_manager import ConnectionManager
from app.services.jwt_service import JWTService
from app.services.key_rotator import KeyRotator
from app.services.llm_provider import LLMProvider, create_llm_provider
from app.services.message_store import (
    InMemoryMessageStore,
    InMemorySearchHistoryStore,
    MessageStore,
    SearchHistoryStore,
    SqlMessageStore,
    SqlSearchHistoryStore,
)
from app.services.pubsub import InMemoryPubSub, PubSubBus, RedisPubSub
from app.services.quota import AnonymousCounter, InMemoryAnonymousCounter, RedisAnonymousCounter
from app.services.redis_client import close_redis, create_redis
from app.services.scheduler import SchedulerService
from app.services.search_client import SearchClient, SerpShoppingClient
from app.services.session_signer import SessionSigner
from app.services.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionLockManager,
    SessionStore,
)
from app.services.task_runner import BackgroundTaskRunner
from app.services.translation import TranslationService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """애플리케이션 서비스 묶음"""

    def __init__(
        self,
        settings: Settings,
        session_store: SessionStore,
        message_store: MessageStore,
        search_history_store: SearchHistoryStore,
        anonymous_counter: AnonymousCounter,
        bus: PubSubBus,
        llm: LLMProvider,
        search_client: SearchClient,
        cache: Optional[SearchCache] = None,
        llm_keys: Optional[KeyRotator] = None,
        serp_keys: Optional[KeyRotator] = None,
        redis: Optional[Redis] = None,
    ) -> None:
        self.settings = settings
        self.session_store = session_store
        self.message_store = message_store
        self.search_history_store = search_history_store
        self.anonymous_counter = anonymous_counter
        self.bus = bus
        self.llm = llm
        self.search_client = search_client
        self.cache = cache
        self.llm_keys = llm_keys
        self.serp_keys = serp_keys
        self.redis = redis

        self.server_id = settings.server_id or f"server-{uuid.uuid4().hex[:8]}"
        self.task_runner = BackgroundTaskRunner()
        self.lock_manager = SessionLockManager()
        self.connections = ConnectionManager(self.server_id, bus)
        self.jwt = JWTService(settings.jwt_secret_key, settings.jwt_algorithm)
        self.signer = SessionSigner(settings.session_signing_secret)
        self.signed_session_ttl = timedelta(hours=settings.signed_session_ttl_hours)

        # 에이전트
        self.prompts = PromptManager()
        self.cycle = CycleStateMachine(self.prompts.prompt_id, self.prompts.prompt_hash)
        self.policy = ContextDepthPolicy(update_interval=settings.context_update_interval)
        self.translator = TranslationService(
            llm,
            temperature=settings.translation_temperature,
            max_tokens=settings.translation_max_tokens,
        )
        self.extractor = ContextExtractor(
            llm,
            recent_messages=settings.context_recent_messages,
            preferences_temperature=settings.preferences_temperature,
            preferences_max_tokens=settings.preferences_max_tokens,
            summary_temperature=settings.summary_temperature,
            summary_max_tokens=settings.summary_max_tokens,
        )
        self.assistant = AssistantService(
            llm,
            self.prompts,
            self.policy,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
            use_grounding=settings.llm_use_grounding,
        )
        self.orchestrator = ChatOrchestrator(
            settings=settings,
            session_store=session_store,
            message_store=message_store,
            search_history_store=search_history_store,
            anonymous_counter=anonymous_counter,
            assistant=self.assistant,
            search_client=search_client,
            translator=self.translator,
            extractor=self.extractor,
            policy=self.policy,
            cycle=self.cycle,
            task_runner=self.task_runner,
            lock_manager=self.lock_manager,
        )
        self.scheduler = SchedulerService(session_store, cache, settings.session_sweep_minutes)

    @classmethod
    def build(cls, settings: Settings) -> "ServiceContainer":
        """설정에 맞는 구현체로 컨테이너 생성"""
        redis: Optional[Redis] = create_redis(settings) if settings.redis_enabled else None
        cache: SearchCache = (
            RedisSearchCache(redis, settings.cache_ttl_seconds)
            if redis is not None
            else InMemoryCache(settings.cache_ttl_seconds)
        )
        llm_keys = KeyRotator(settings.llm_provider, settings.llm_api_keys)
        serp_keys = KeyRotator("serpapi", settings.serp_api_key_list)

        llm = create_llm_provider(settings, llm_keys)
        search_client = SerpShoppingClient(
            serp_keys,
            base_url=settings.serp_base_url,
            timeout=settings.serp_timeout_seconds,
            max_results=settings.search_max_results,
            cache=cache,
            cache_ttl_seconds=settings.cache_ttl_seconds,
        )

        if redis is not None:
            session_store: SessionStore = RedisSessionStore(redis, settings.session_ttl_minutes)
            anonymous_counter: AnonymousCounter = RedisAnonymousCounter(redis)
            bus: PubSubBus = RedisPubSub(redis, settings.broadcast_channel)
        else:
            session_store = InMemorySessionStore(settings.session_ttl_minutes)
            anonymous_counter = InMemoryAnonymousCounter()
            bus = InMemoryPubSub()

        if settings.storage_backend == "postgres":
            factory = get_session_factory()
            message_store: MessageStore = SqlMessageStore(factory)
            search_history_store: SearchHistoryStore = SqlSearchHistoryStore(factory)
        else:
            message_store = InMemoryMessageStore()
            search_history_store = InMemorySearchHistoryStore()

        logger.info(
            f"[Container] LLM={settings.llm_provider} ({llm_keys.total_keys}개 키), "
            f"SERP 키={serp_keys.total_keys}개, redis={settings.redis_enabled}, "
            f"storage={settings.storage_backend}"
        )

        return cls(
            settings=settings,
            session_store=session_store,
            message_store=message_store,
            search_history_store=search_history_store,
            anonymous_counter=anonymous_counter,
            bus=bus,
            llm=llm,
            search_client=search_client,
            cache=cache,
            llm_keys=llm_keys,
            serp_keys=serp_keys,
            redis=redis,
        )

    async def start(self) -> None:
        """구독/스케줄러 시작, DB 테이블 확인"""
        if self.settings.storage_backend == "postgres":
            await init_db()
            logger.info("[Container] 데이터베이스 연결 성공")

        await self.connections.start()
        self.scheduler.start()

    async def stop(self) -> None:
        """리소스 정리"""
        self.scheduler.stop()
        await self.bus.close()
        await self.task_runner.drain()

        if self.settings.storage_backend == "postgres":
            await close_db()
        if self.redis is not None:
            await close_redis(self.redis)
