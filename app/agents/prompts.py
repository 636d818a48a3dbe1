"""
프롬프트 관리
시스템 프롬프트(세션 시작 시 1회), 미니 커널(매 턴), 깊이별 상태 컨텍스트 생성
"""
import hashlib
from datetime import datetime
from typing import List, Optional

from app.agents.context_policy import ContextDepth
from app.agents.cycle import MAX_ITERATIONS, CycleStateMachine
from app.models.session import ChatSession, CycleMessage
from app.utils.text_parser import truncate

PROMPT_ID = "UniversalPrompt v1.0.1"

SYSTEM_PROMPT = """You are a shopping assistant that helps users find products to buy online.
The user is located in {location}, writes in {language} and pays in {currency}.
Today is {current_date}. Products from {previous_year} and {current_year} are current.

## How you work
- Understand what the user wants. Ask short clarifying questions when the request is vague
  (recipient, budget, size, brand, use case).
- When you know enough to search, request a product search.
- Always answer in the user's language ({language}). Search phrases are always in English.
- Never invent prices, stock or links. Products come from the search system only.

## Output format
Respond with exactly ONE JSON object and nothing else. No markdown, no text outside JSON.

Dialogue (question, advice, clarification):
{{"response_type": "dialogue", "output": "<text>", "quick_replies": ["<option>", "..."], "category": "<category>"}}

Product search:
{{"response_type": "search", "output": "<short text shown with results>", "search_phrase": "<english query>",
  "search_type": "exact|parameters|category", "category": "<category>",
  "price_filter": "cheaper|expensive", "min_price": <number>, "max_price": <number>,
  "product_description": "<one paragraph about what you are searching for>"}}

Direct shopping API call for one exact product:
{{"response_type": "api_request", "output": "<text>", "api": "google_shopping", "params": {{"q": "<exact model name>"}},
  "category": "<category>"}}

## Rules
- quick_replies: 2 to 4 short options in {language}.
- search_type "exact" for a specific model, "parameters" for a described product,
  "category" for browsing a product group.
- min_price / max_price use {currency}. Omit them when the user gave no budget.
- Respect exclusions the user stated (brands, used/refurbished, cheap quality).
"""

MINI_KERNEL = """[KERNEL] Reply with ONE JSON object only (response_type: dialogue | search | api_request).
Locale: {location} / {language} / {currency}. Date: {current_date}.
Cycle {cycle_id}, iteration {iteration}/{max_iterations}, category: {category}.
Answer in {language}; search_phrase in English."""


def hash_prompt(prompt: str) -> str:
    """프롬프트 SHA-256 해시 (드리프트 감지용)"""
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()


def _format_history_line(message: CycleMessage, limit: Optional[int] = None) -> str:
    content = truncate(message.content, limit) if limit else message.content
    return f"{message.role}: {content}"


class PromptManager:
    """시스템 프롬프트 및 상태 컨텍스트 빌더"""

    def __init__(
        self,
        system_prompt: str = SYSTEM_PROMPT,
        mini_kernel: str = MINI_KERNEL,
        prompt_id: str = PROMPT_ID,
    ) -> None:
        self._system_prompt = system_prompt
        self._mini_kernel = mini_kernel
        self.prompt_id = prompt_id
        self.prompt_hash = hash_prompt(system_prompt)

    @staticmethod
    def _date_values() -> dict:
        now = datetime.utcnow()
        return {
            "current_date": now.strftime("%B %d, %Y"),
            "current_year": str(now.year),
            "previous_year": str(now.year - 1),
        }

    def get_system_prompt(self, location: str, language: str, currency: str) -> str:
        """세션 시작 시 1회 전송하는 전체 시스템 프롬프트"""
        return self._system_prompt.format(
            location=location,
            language=language,
            currency=currency,
            **self._date_values(),
        )

    def get_mini_kernel(self, session: ChatSession) -> str:
        """매 턴 전송하는 축약 규칙"""
        state = session.cycle_state
        return self._mini_kernel.format(
            location=session.country_code,
            language=session.language_code,
            currency=session.currency,
            cycle_id=state.cycle_id,
            iteration=state.iteration,
            max_iterations=MAX_ITERATIONS,
            category=CycleStateMachine.current_category(state),
            **self._date_values(),
        )

    def should_send_system_prompt(self, session: ChatSession) -> bool:
        """전체 시스템 프롬프트 전송 여부 (세션 첫 턴)"""
        state = session.cycle_state
        return state.cycle_id == 1 and state.iteration == 1

    # ========== 깊이별 컨텍스트 ==========

    def build_minimal_context(self, session: ChatSession) -> str:
        """짧은 후속 질문용: 최근 2개 메시지 + 마지막 상품"""
        state = session.cycle_state
        lines: List[str] = [
            "=== MINIMAL CONTEXT ===",
            f"CYCLE: {state.cycle_id}, ITERATION: {state.iteration}",
        ]

        if state.cycle_history:
            lines.append("")
            lines.append("Recent exchange:")
            for message in state.cycle_history[-2:]:
                lines.append(_format_history_line(message, 150))

        last_product = session.search_state.last_product
        if last_product:
            lines.append("")
            lines.append(f"Last product: {last_product.name} ({last_product.price:.2f} {session.currency})")

        context = session.conversation_context
        if context and context.last_search:
            lines.append(f"Last search: {context.last_search.query}")

        return "\n".join(lines) + "\n"

    def build_compact_context(self, session: ChatSession, max_recent_messages: int = 3) -> str:
        """일반 턴용: 요약 + 선호 + 최근 N개 메시지"""
        state = session.cycle_state
        lines: List[str] = [
            "=== STATE CONTEXT ===",
            f"CYCLE: {state.cycle_id}, ITERATION: {state.iteration}/{MAX_ITERATIONS}, "
            f"CATEGORY: {CycleStateMachine.current_category(state)}",
        ]

        context = session.conversation_context
        if context and context.summary:
            lines.append("")
            lines.append("=== CONVERSATION SUMMARY ===")
            lines.append(context.summary)

            prefs = context.preferences
            if prefs.price_range:
                low = prefs.price_range.min or 0
                high = prefs.price_range.max or 0
                lines.append(f"Price range: {low:.0f}-{high:.0f} {prefs.price_range.currency}")
            if prefs.brands:
                lines.append(f"Preferred brands: {', '.join(prefs.brands)}")
            if prefs.features:
                lines.append(f"Required features: {', '.join(prefs.features)}")
            if context.exclusions:
                lines.append(f"Exclusions: {', '.join(context.exclusions)}")

        lines.append("")
        lines.append("=== RECENT MESSAGES ===")
        history = state.cycle_history
        if not history:
            lines.append("(no messages yet)")
        else:
            recent = history[-max_recent_messages:]
            if len(recent) < len(history):
                lines.append(f"(showing last {len(recent)} of {len(history)})")
            for message in recent:
                lines.append(_format_history_line(message, 300))

        last_product = session.search_state.last_product
        if last_product:
            lines.append("")
            lines.append(
                f"Last product shown: {last_product.name} ({last_product.price:.2f} {session.currency})"
            )

        return "\n".join(lines) + "\n"

    def build_full_context(self, session: ChatSession) -> str:
        """사이클 시작 또는 복잡한 턴용: 사이클 전체 + 이전 사이클 요약"""
        state = session.cycle_state
        lines: List[str] = [
            "=== CURRENT STATE ===",
            f"CYCLE_ID: {state.cycle_id}",
            f"ITERATION: {state.iteration}/{MAX_ITERATIONS}",
            f"CURRENT_CATEGORY: {CycleStateMachine.current_category(state)}",
            "",
            "=== CYCLE_HISTORY (Current Cycle) ===",
        ]

        history = state.cycle_history
        if not history:
            lines.append("(empty - first message in cycle)")
        else:
            start = max(len(history) - MAX_ITERATIONS, 0)
            if start > 0:
                lines.append(f"(showing last {len(history) - start} of {len(history)} messages)")
            for index in range(start, len(history)):
                lines.append(f"{index + 1}. {_format_history_line(history[index])}")

        last_cycle = state.last_cycle_context
        if last_cycle:
            lines.append("")
            lines.append("=== LAST_CYCLE_CONTEXT ===")
            if last_cycle.groups:
                lines.append(f"Groups: {', '.join(last_cycle.groups)}")
            if last_cycle.subgroups:
                lines.append(f"Subgroups: {', '.join(last_cycle.subgroups)}")
            if last_cycle.products:
                lines.append("Products from last cycle:")
                for product in last_cycle.products:
                    lines.append(f"  - {product.name} ({product.price:.2f})")
            if last_cycle.last_request:
                lines.append(f"Last request: {last_cycle.last_request}")

        if state.last_defined:
            lines.append("")
            lines.append("=== LAST_DEFINED (confirmed products) ===")
            lines.append(", ".join(state.last_defined))

        return "\n".join(lines) + "\n"

    def build_state_context(
        self,
        session: ChatSession,
        depth: ContextDepth,
        medium_messages: int = 3,
    ) -> str:
        """깊이에 따른 상태 컨텍스트"""
        if depth == ContextDepth.MINIMAL:
            return self.build_minimal_context(session)
        if depth == ContextDepth.MEDIUM:
            return self.build_compact_context(session, medium_messages)
        return self.build_full_context(session)

    def build_prompt(
        self,
        session: ChatSession,
        user_message: str,
        depth: ContextDepth,
        medium_messages: int = 3,
    ) -> str:
        """
        LLM 프롬프트 조립

        첫 턴에는 전체 시스템 프롬프트, 이후에는 미니 커널만 포함한다.
        """
        parts: List[str] = []
        if self.should_send_system_prompt(session):
            parts.append(
                self.get_system_prompt(session.country_code, session.language_code, session.currency)
            )
        parts.append(self.get_mini_kernel(session))
        parts.append(self.build_state_context(session, depth, medium_messages))
        parts.append(f"USER_MESSAGE: {user_message}")
        return "\n\n".join(parts)
