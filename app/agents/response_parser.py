"""
AI 응답 파서
LLM 원문을 태그드 유니온 AIResponse로 변환하고, 실패 시 단계별 복구 수행

1. 추출: 래퍼 제거, 그라운딩 사용 시 첫 번째 균형 객체만 사용
2. 직접 디코딩: 스키마 우선, response_type 누락 시 필드 기반 추론 (2차 디코더)
3. 복구 파이프라인: 중복 제거 → 구조 복구 → 마크다운 추출
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from app.models.ai_response import (
    ApiRequestResponse,
    BaseAIResponse,
    DialogueResponse,
    ResponseType,
    SearchResponse,
    ai_response_adapter,
)
from app.utils.json_repair import (
    extract_first_object,
    extract_from_markdown,
    remove_duplicate_json,
    repair_structure,
    strip_wrappers,
)

logger = logging.getLogger(__name__)

# 모델이 자주 잘못 쓰는 카테고리 필드명
_CATEGORY_KEYS = ("category", "query_category", "CURRENT_CATEGORY")


class AIResponseParseError(Exception):
    """AI 응답 파싱 실패"""

    def __init__(self, message: str, raw_text: str) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class ResponseTypeError(ValueError):
    """response_type을 결정할 수 없음"""

    pass


def _recover_category(data: Dict[str, Any]) -> str:
    """여러 후보 필드에서 카테고리 복원"""
    for key in _CATEGORY_KEYS:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _probe_misplaced_output(data: Dict[str, Any]) -> Optional[str]:
    """
    모델이 output 대신 다른 필드에 답변을 넣은 경우 탐지

    - 최상위 response 문자열
    - query / prompt_text 문자열
    - response.query_refinement 중첩 필드
    - ASSISTANT_RESPONSE 문자열
    """
    response_field = data.get("response")
    if isinstance(response_field, str) and response_field:
        return response_field

    for key in ("query", "prompt_text"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value

    if isinstance(response_field, dict):
        refinement = response_field.get("query_refinement")
        if isinstance(refinement, str) and refinement:
            return refinement

    assistant = data.get("ASSISTANT_RESPONSE")
    if isinstance(assistant, str) and assistant:
        return assistant

    return None


def infer_response(data: Dict[str, Any]) -> BaseAIResponse:
    """
    response_type이 없거나 알 수 없는 값일 때 필드로 유형을 추론 (2차 디코더)

    Raises:
        ResponseTypeError: 어떤 규칙으로도 유형을 정할 수 없을 때
    """
    payload = {k: v for k, v in data.items() if k != "response_type"}
    category = _recover_category(payload)
    if category:
        payload["category"] = category

    if payload.get("output") or payload.get("quick_replies") is not None:
        logger.info("[ResponseParser] response_type 추론: dialogue (output/quick_replies)")
        return DialogueResponse.model_validate(payload)

    if payload.get("search_phrase"):
        logger.info("[ResponseParser] response_type 추론: search (search_phrase)")
        return SearchResponse.model_validate(payload)

    if payload.get("api") or payload.get("params") is not None:
        logger.info("[ResponseParser] response_type 추론: api_request (api/params)")
        return ApiRequestResponse.model_validate(payload)

    misplaced = _probe_misplaced_output(data)
    if misplaced:
        logger.info("[ResponseParser] 잘못된 필드에서 output 복원")
        return DialogueResponse(
            output=misplaced,
            quick_replies=[],
            category=category,
        )

    raise ResponseTypeError("response_type을 추론할 수 없습니다")


def decode_payload(data: Any) -> BaseAIResponse:
    """디코딩된 JSON 값을 AIResponse로 변환 (스키마 우선)"""
    if not isinstance(data, dict):
        raise ResponseTypeError("JSON 객체가 아닙니다")

    response_type = data.get("response_type")
    known_types = {t.value for t in ResponseType}

    if isinstance(response_type, str) and response_type in known_types:
        return ai_response_adapter.validate_python(data)

    return infer_response(data)


def decode_response(text: str) -> BaseAIResponse:
    """JSON 문자열 디코딩 후 AIResponse 변환"""
    return decode_payload(json.loads(text))


def prepare_text(raw_text: str, used_grounding: bool) -> str:
    """추출 단계: 래퍼 제거 및 (그라운딩 시) 첫 번째 객체 선택"""
    text = strip_wrappers(raw_text)
    if used_grounding:
        text = extract_first_object(text)
    return text


# 복구 단계 (순서대로 시도)
REPAIR_STAGES: List[Tuple[str, Callable[[str], str]]] = [
    ("duplicate_removal", remove_duplicate_json),
    ("structural_repair", repair_structure),
    ("markdown_extraction", extract_from_markdown),
]


def parse_ai_response(raw_text: str, used_grounding: bool = False) -> BaseAIResponse:
    """
    LLM 원문을 AIResponse로 파싱

    Args:
        raw_text: LLM 응답 원문
        used_grounding: 그라운딩(웹 검색) 사용 여부

    Returns:
        DialogueResponse | SearchResponse | ApiRequestResponse

    Raises:
        AIResponseParseError: 모든 복구 단계 실패
    """
    if not raw_text or not raw_text.strip():
        raise AIResponseParseError("빈 응답입니다", raw_text or "")

    text = prepare_text(raw_text, used_grounding)

    try:
        return decode_response(text)
    except (ValueError, ValidationError) as e:
        logger.warning(f"[ResponseParser] 직접 디코딩 실패, 복구 시도: {e}")

    last_error: Optional[Exception] = None
    for stage_name, stage in REPAIR_STAGES:
        candidate = stage(text)
        try:
            result = decode_response(candidate)
            logger.info(f"[ResponseParser] 복구 성공: {stage_name}")
            return result
        except (ValueError, ValidationError) as e:
            last_error = e
            continue

    logger.error(f"[ResponseParser] 모든 복구 단계 실패: {last_error}")
    raise AIResponseParseError(f"AI 응답 파싱 실패: {last_error}", raw_text)
