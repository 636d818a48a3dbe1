"""
메인 오케스트레이터
채팅 한 턴의 전체 흐름 관리

세션 로드 → 검색 한도 확인 → 사용자 메시지 저장 → AI 호출 → 응답 유형별 처리(검색)
→ 어시스턴트 메시지 저장 → 사이클/컨텍스트 갱신 → 세션 저장 → 커밋 후 부수 효과
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
)

from app.agents.assistant import AssistantService
from app.agents.context_extractor import ContextExtractor
from app.agents.context_policy import ContextDepthPolicy
from app.agents.cycle import CycleDecision, CycleStateMachine
from app.agents.response_parser import AIResponseParseError
from app.config import Settings
from app.models.ai_response import (
    ApiRequestResponse,
    BaseAIResponse,
    DialogueResponse,
    SearchResponse,
)
from app.models.message import Message, SearchHistoryRecord
from app.models.product import ProductCard
from app.models.request import TurnRequest
from app.models.response import ErrorCode, SearchStateResponse, TurnResult
from app.models.session import ChatSession, ProductInfo, SearchState, SearchStatus, products_to_info
from app.services.llm_provider import LLMError
from app.services.message_store import MessageStore, SearchHistoryStore
from app.services.quota import AnonymousCounter, QuotaError
from app.services.search_client import SearchClient, SearchError
from app.services.session_store import SessionLockManager, SessionStore, SessionStoreError
from app.services.task_runner import BackgroundTaskRunner
from app.services.translation import TranslationService

logger = logging.getLogger(__name__)


# ========== 고정 응답 문구 ==========

ANONYMOUS_LIMIT_OUTPUT = (
    "You've used all 3 free searches! Please sign up or log in to continue searching for products."
)
SESSION_LIMIT_OUTPUT = "You have reached the maximum number of searches. Please start a new search."
AI_FALLBACK_OUTPUT = (
    "I'm having trouble processing your request right now. "
    "Could you please rephrase your question or try again in a moment?"
)
AI_FALLBACK_QUICK_REPLIES = ["Start over", "Try again"]
NEED_DETAILS_OUTPUT = (
    "I need more details about what product you're looking for. Could you be more specific?"
)
SEARCH_FAILED_OUTPUT = "Sorry, I couldn't find any products. Please try different keywords."
NO_EXACT_MATCH_OUTPUT = "I couldn't find that exact product. Would you like to see similar alternatives?"
UNSUPPORTED_API_OUTPUT = "I encountered an error processing your request. Please try again."
SAVE_FAILED_OUTPUT = "An error occurred while saving your conversation. Please try again."
EMPTY_OUTPUT_PLACEHOLDER = "..."

SUPPORTED_API = "google_shopping"

_AI_ERRORS = (LLMError, AIResponseParseError, asyncio.TimeoutError)


@dataclass
class TurnEffects:
    """세션 저장이 성공한 뒤에만 실행할 부수 효과"""

    increment_anonymous: bool = False
    search_history: Optional[SearchHistoryRecord] = None


@dataclass
class TurnDraft:
    """턴 처리 중 조립되는 응답"""

    type: str
    output: str
    quick_replies: List[str] = field(default_factory=list)
    products: List[ProductCard] = field(default_factory=list)
    product_description: str = ""
    search_type: str = ""
    status_message: Optional[str] = None


class ChatOrchestrator:
    """채팅 턴 처리기"""

    def __init__(
        self,
        settings: Settings,
        session_store: SessionStore,
        message_store: MessageStore,
        search_history_store: SearchHistoryStore,
        anonymous_counter: AnonymousCounter,
        assistant: AssistantService,
        search_client: SearchClient,
        translator: TranslationService,
        extractor: ContextExtractor,
        policy: ContextDepthPolicy,
        cycle: CycleStateMachine,
        task_runner: BackgroundTaskRunner,
        lock_manager: Optional[SessionLockManager] = None,
    ) -> None:
        self._settings = settings
        self._sessions = session_store
        self._messages = message_store
        self._search_history = search_history_store
        self._anonymous = anonymous_counter
        self._assistant = assistant
        self._search = search_client
        self._translator = translator
        self._extractor = extractor
        self._policy = policy
        self._cycle = cycle
        self._tasks = task_runner
        self._locks = lock_manager or SessionLockManager()

    async def process_turn(self, request: TurnRequest) -> TurnResult:
        """
        채팅 한 턴 처리

        같은 세션의 턴은 세션 락으로 직렬화되며 전체 턴은 타임아웃 안에서 실행된다.

        Args:
            request: 턴 요청

        Returns:
            TurnResult (에러 시 error 필드 포함)
        """
        if not request.message or not request.message.strip():
            return TurnResult.failure(
                ErrorCode.VALIDATION_ERROR,
                "Message is required",
                session_id=request.session_id or "",
            )

        session_id = request.session_id or str(uuid.uuid4())

        try:
            async with self._locks.hold(session_id):
                return await asyncio.wait_for(
                    self._run_turn(request, session_id),
                    timeout=self._settings.turn_timeout_seconds,
                )
        except asyncio.TimeoutError:
            logger.error(
                f"[Orchestrator] 턴 타임아웃 ({self._settings.turn_timeout_seconds}s) - session: {session_id}"
            )
            return TurnResult.failure(
                ErrorCode.TURN_TIMEOUT,
                "Request took too long to process",
                session_id=session_id,
            )

    # ========== 턴 본체 ==========

    async def _run_turn(self, request: TurnRequest, session_id: str) -> TurnResult:
        settings = self._settings
        unauthenticated = request.user_id is None

        # 1. 세션 로드 또는 생성
        try:
            session = await self._load_or_create(request, session_id)
        except SessionStoreError as e:
            logger.error(f"[Orchestrator] 세션 로드 실패 - session: {session_id}: {e}", exc_info=True)
            return TurnResult.failure(
                ErrorCode.SESSION_ERROR,
                "Failed to create session",
                session_id=session_id,
            )

        # 2. 새 검색 / 카테고리 힌트
        if request.new_search:
            logger.info(f"[Orchestrator] 새 검색 시작 - session: {session.id}")
            session.search_state = SearchState()
            session.cycle_state = self._cycle.initial_state()

        if request.current_category and request.current_category != session.search_state.category:
            session.search_state.category = request.current_category

        # 3. 검색 한도 (AI 호출 전)
        anonymous_used = 0
        if unauthenticated and request.browser_id:
            anonymous_used = await self._read_anonymous_count(request.browser_id)
            if anonymous_used >= settings.anonymous_search_limit:
                logger.info(f"[Orchestrator] 익명 검색 한도 도달 - browser: {request.browser_id}")
                return self._limit_result(
                    session,
                    ANONYMOUS_LIMIT_OUTPUT,
                    anonymous_used,
                    requires_authentication=True,
                    message="Anonymous search limit reached - authentication required",
                )

        if session.search_state.search_count >= settings.max_searches:
            logger.info(f"[Orchestrator] 세션 검색 한도 도달 - session: {session.id}")
            return self._limit_result(
                session,
                SESSION_LIMIT_OUTPUT,
                anonymous_used,
                requires_authentication=False,
                message="Search limit reached",
            )

        # 4. 사용자 메시지 저장
        user_message = Message(
            id=request.user_message_id or uuid.uuid4(),
            session_id=session.id,
            role="user",
            content=request.message,
        )
        await self._persist_message(user_message)
        session.message_count += 1
        self._cycle.add_turn(session.cycle_state, "user", request.message)

        # 5. AI 호출
        ai_response = await self._call_assistant(session, request.message)

        effects = TurnEffects()
        if ai_response is None:
            draft = TurnDraft(
                type="dialogue",
                output=AI_FALLBACK_OUTPUT,
                quick_replies=list(AI_FALLBACK_QUICK_REPLIES),
                status_message="Temporary processing issue",
            )
            ai_response = DialogueResponse(output=AI_FALLBACK_OUTPUT)
        else:
            if ai_response.category:
                session.search_state.category = ai_response.category
            draft = await self._interpret(session, request, ai_response, effects)

        # 6. 어시스턴트 메시지 (내용 == 최종 출력)
        if not draft.output:
            logger.warning("[Orchestrator] 최종 출력이 비어있어 플레이스홀더 사용")
            draft.output = EMPTY_OUTPUT_PLACEHOLDER

        assistant_message = Message(
            id=request.assistant_message_id or uuid.uuid4(),
            session_id=session.id,
            role="assistant",
            content=draft.output,
            response_type=draft.type,
            quick_replies=draft.quick_replies,
            products=draft.products,
            product_description=draft.product_description or None,
        )
        await self._persist_message(assistant_message)

        # 7. 사이클 / 대화 컨텍스트 갱신
        metadata = {"category": ai_response.category}
        if isinstance(ai_response, SearchResponse) and ai_response.search_phrase:
            metadata["search_phrase"] = ai_response.search_phrase
        elif isinstance(ai_response, ApiRequestResponse) and ai_response.search_query:
            metadata["search_phrase"] = ai_response.search_query
        self._cycle.add_turn(session.cycle_state, "assistant", draft.output, metadata)

        if self._policy.should_update_context(session):
            errors = await self._extractor.update_conversation_context(
                session, session.cycle_state.cycle_history
            )
            for error in errors:
                logger.warning(f"[Orchestrator] 컨텍스트 추출 일부 실패: {error}")

        if self._cycle.increment_iteration(session.cycle_state) == CycleDecision.ROTATE:
            carried: List[ProductInfo] = []
            if session.search_state.last_product is not None:
                carried.append(session.search_state.last_product)
            self._cycle.start_new_cycle(session.cycle_state, request.message, carried)

        session.search_state.status = SearchStatus.IDLE

        # 8. 세션 저장
        try:
            await self._save_session(session)
        except SessionStoreError as e:
            logger.error(
                f"[Orchestrator] 세션 저장 최종 실패 - session: {session.id}: {e}", exc_info=True
            )
            return TurnResult.failure(
                ErrorCode.SESSION_SAVE_FAILED,
                "Failed to persist session changes",
                output=SAVE_FAILED_OUTPUT,
                session_id=session.id,
                message_count=session.message_count,
            )

        # 9. 커밋 후 부수 효과
        await self._apply_effects(request, effects)

        current_anonymous = 0
        if unauthenticated and request.browser_id:
            current_anonymous = await self._read_anonymous_count(request.browser_id)
        requires_auth = unauthenticated and current_anonymous >= settings.anonymous_search_limit

        return TurnResult(
            type=draft.type,
            message_id=assistant_message.id,
            output=draft.output,
            quick_replies=draft.quick_replies,
            products=draft.products,
            product_description=draft.product_description,
            search_type=draft.search_type,
            session_id=session.id,
            message_count=session.message_count,
            search_state=SearchStateResponse(
                status=session.search_state.status.value,
                category=session.search_state.category,
                can_continue=session.search_state.search_count < settings.max_searches and not requires_auth,
                search_count=session.search_state.search_count,
                max_searches=settings.max_searches,
                anonymous_search_used=current_anonymous,
                anonymous_search_limit=settings.anonymous_search_limit,
                requires_authentication=requires_auth,
                message=draft.status_message,
            ),
        )

    # ========== 세션 ==========

    async def _load_or_create(self, request: TurnRequest, session_id: str) -> ChatSession:
        """세션 조회, 없으면 같은 ID로 생성. 기존 세션은 명시적으로 바뀐 로케일만 반영"""
        settings = self._settings
        session = await self._sessions.get(session_id)

        if session is None:
            logger.info(f"[Orchestrator] 세션 없음, 같은 ID로 생성 - session: {session_id}")
            return await self._sessions.create_with_owner(
                session_id,
                country=request.country or settings.default_country,
                language=request.language or settings.default_language,
                currency=request.currency or settings.default_currency,
                owner_id=request.user_id,
                cycle_state=self._cycle.initial_state(),
            )

        if request.user_id and session.user_id != request.user_id:
            logger.info(f"[Orchestrator] 세션을 사용자에 연결 - user: {request.user_id}")
            session.user_id = request.user_id

        if request.language and request.language != session.language_code:
            logger.info(f"[Orchestrator] 언어 변경: {session.language_code} → {request.language}")
            session.language_code = request.language
        if request.currency and request.currency != session.currency:
            logger.info(f"[Orchestrator] 통화 변경: {session.currency} → {request.currency}")
            session.currency = request.currency
        if request.country and request.country != session.country_code:
            logger.info(f"[Orchestrator] 국가 변경: {session.country_code} → {request.country}")
            session.country_code = request.country

        self._cycle.check_prompt_drift(session.cycle_state)
        return session

    async def _save_session(self, session: ChatSession) -> None:
        """세션 저장 (지수 백오프 재시도)"""
        settings = self._settings
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.save_max_attempts),
            wait=wait_exponential(
                multiplier=settings.save_initial_delay,
                exp_base=settings.save_backoff_factor,
                max=settings.save_max_delay,
            ),
            retry=retry_if_exception_type(SessionStoreError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"[Orchestrator] 세션 저장 재시도 {attempt.retry_state.attempt_number}/"
                        f"{settings.save_max_attempts}"
                    )
                await self._sessions.put(session)

    # ========== AI ==========

    async def _call_assistant(self, session: ChatSession, user_message: str) -> Optional[BaseAIResponse]:
        """AI 호출 (시도별 타임아웃, 500ms/1000ms 간격 재시도). 모두 실패하면 None"""
        settings = self._settings
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.ai_max_attempts),
            wait=wait_incrementing(start=settings.ai_retry_base_delay, increment=settings.ai_retry_base_delay),
            retry=retry_if_exception_type(_AI_ERRORS),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    if number > 1:
                        logger.info(f"[Orchestrator] AI 재시도 {number}/{settings.ai_max_attempts}")
                    response, _ = await asyncio.wait_for(
                        self._assistant.respond(session, user_message),
                        timeout=settings.ai_attempt_timeout_seconds,
                    )
                    return response
        except _AI_ERRORS as e:
            logger.error(f"[Orchestrator] AI 호출 최종 실패, 대체 응답 사용: {e}")

        return None

    async def _interpret(
        self,
        session: ChatSession,
        request: TurnRequest,
        ai_response: BaseAIResponse,
        effects: TurnEffects,
    ) -> TurnDraft:
        """응답 유형별 처리 (검색 실행 포함)"""
        draft = TurnDraft(
            type=ai_response.response_type,
            output=ai_response.output,
            quick_replies=list(ai_response.quick_replies),
        )

        if isinstance(ai_response, SearchResponse):
            if not ai_response.search_query:
                logger.warning("[Orchestrator] 검색 요청에 search_phrase 없음")
                draft.type = "dialogue"
                draft.output = NEED_DETAILS_OUTPUT
                return draft

            await self._run_search(
                session,
                request,
                draft,
                effects,
                phrase=ai_response.search_query,
                search_type=ai_response.search_type,
                ai_response=ai_response,
                min_price=ai_response.min_price,
                max_price=ai_response.max_price,
            )
            return draft

        if isinstance(ai_response, ApiRequestResponse):
            if ai_response.api != SUPPORTED_API:
                logger.warning(f"[Orchestrator] 지원하지 않는 API: {ai_response.api!r}")
                draft.type = "dialogue"
                draft.output = UNSUPPORTED_API_OUTPUT
                return draft

            if not ai_response.search_query:
                logger.warning("[Orchestrator] api_request에 params.q 없음")
                draft.type = "dialogue"
                draft.output = NEED_DETAILS_OUTPUT
                return draft

            draft.type = "search"
            found = await self._run_search(
                session,
                request,
                draft,
                effects,
                phrase=ai_response.search_query,
                search_type="exact",
                ai_response=ai_response,
            )
            if found is not None and not found:
                draft.type = "dialogue"
                draft.output = NO_EXACT_MATCH_OUTPUT
            elif found:
                self._cycle.record_defined(session.cycle_state, [p.name for p in found])
                logger.info(f"[Orchestrator] 사이클 완료 검색: {len(found)}개 상품")
            return draft

        return draft

    async def _run_search(
        self,
        session: ChatSession,
        request: TurnRequest,
        draft: TurnDraft,
        effects: TurnEffects,
        phrase: str,
        search_type: str,
        ai_response: BaseAIResponse,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
    ) -> Optional[List[ProductCard]]:
        """
        검색 실행 후 draft/세션 갱신

        Returns:
            찾은 상품 목록 (검색 실패 시 None)
        """
        translated = await self._translator.translate_to_english(phrase)

        try:
            result = await self._search.search_with_cache(
                translated, search_type, session.country_code, min_price, max_price
            )
        except SearchError as e:
            logger.warning(f"[Orchestrator] 검색 실패 - query: {translated}: {e}")
            draft.type = "text"
            draft.output = SEARCH_FAILED_OUTPUT
            return None

        products = result.items
        if not products:
            logger.info(f"[Orchestrator] 검색 결과 없음 - query: {translated}")
            draft.type = "text"
            draft.output = SEARCH_FAILED_OUTPUT
            return products

        draft.products = products
        draft.product_description = ai_response.product_description
        draft.search_type = search_type

        infos = products_to_info(products)
        priced = [info for info in infos if info.price > 0]
        session.search_state.last_product = priced[0] if priced else infos[0]
        session.search_state.search_count += 1

        self._extractor.update_last_search(session, translated, ai_response.category, infos)

        effects.increment_anonymous = request.user_id is None and bool(request.browser_id)
        effects.search_history = SearchHistoryRecord(
            user_id=request.user_id,
            session_id=session.id,
            search_query=phrase,
            optimized_query=translated,
            search_type=search_type,
            category=ai_response.category,
            country_code=session.country_code,
            language_code=session.language_code,
            currency=session.currency,
            result_count=len(products),
            products_found=products,
        )
        return products

    # ========== 저장 / 한도 ==========

    async def _persist_message(self, message: Message) -> None:
        """메시지 저장 (실패해도 턴 계속)"""
        try:
            await self._messages.append(message)
        except Exception as e:
            logger.error(
                f"[Orchestrator] {message.role} 메시지 저장 실패 - session: {message.session_id}: {e}",
                exc_info=True,
            )

    async def _read_anonymous_count(self, browser_id: str) -> int:
        """익명 검색 횟수 (조회 실패 시 0)"""
        try:
            return await self._anonymous.get(browser_id)
        except QuotaError as e:
            logger.error(f"[Orchestrator] 익명 검색 횟수 조회 실패 - browser: {browser_id}: {e}")
            return 0

    async def _apply_effects(self, request: TurnRequest, effects: TurnEffects) -> None:
        if effects.increment_anonymous and request.browser_id:
            try:
                await self._anonymous.increment(request.browser_id)
            except QuotaError as e:
                logger.error(f"[Orchestrator] 익명 검색 횟수 증가 실패 - browser: {request.browser_id}: {e}")

        if effects.search_history is not None:
            record = effects.search_history
            self._tasks.submit(self._search_history.save(record), name="search-history")
            logger.info(
                f"[Orchestrator] 검색 이력 저장 요청: '{record.search_query}' ({record.result_count}개)"
            )

    def _limit_result(
        self,
        session: ChatSession,
        output: str,
        anonymous_used: int,
        requires_authentication: bool,
        message: str,
    ) -> TurnResult:
        """검색 한도 도달 응답 (AI/검색 호출 없음)"""
        settings = self._settings
        return TurnResult(
            type="text",
            output=output,
            session_id=session.id,
            message_count=session.message_count,
            search_state=SearchStateResponse(
                status=session.search_state.status.value,
                category=session.search_state.category,
                can_continue=False,
                search_count=session.search_state.search_count,
                max_searches=settings.max_searches,
                anonymous_search_used=anonymous_used,
                anonymous_search_limit=settings.anonymous_search_limit,
                requires_authentication=requires_authentication,
                message=message,
            ),
        )
