"""
AI 응답 모델 정의
LLM 출력은 response_type으로 구분되는 태그드 유니온으로 표현
"""
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from app.utils.text_parser import parse_price


class ResponseType(str, Enum):
    """AI 응답 유형"""

    DIALOGUE = "dialogue"
    SEARCH = "search"
    API_REQUEST = "api_request"


class BaseAIResponse(BaseModel):
    """AI 응답 공통 필드"""

    output: str = Field(default="", description="사용자에게 보여줄 텍스트")
    quick_replies: List[str] = Field(default_factory=list, description="빠른 답변 버튼")
    category: str = Field(default="", description="상품 카테고리")
    product_description: str = Field(default="", description="AI 생성 상품 설명")

    model_config = {"extra": "ignore"}

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # 모델이 null을 넣는 경우 기본값 사용
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @field_validator("quick_replies", mode="before")
    @classmethod
    def _coerce_quick_replies(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value] if value else []
        if isinstance(value, list):
            return [str(v) for v in value if v]
        return value

    @property
    def search_query(self) -> str:
        """검색에 사용할 문구 (없으면 빈 문자열)"""
        return ""


class DialogueResponse(BaseAIResponse):
    """대화 응답 (추가 질문, 안내)"""

    response_type: Literal["dialogue"] = "dialogue"


class SearchResponse(BaseAIResponse):
    """검색 요청 응답"""

    response_type: Literal["search"] = "search"
    search_phrase: str = Field(default="", description="검색 문구")
    search_type: str = Field(default="parameters", description="exact | parameters | category")
    price_filter: str = Field(default="", description="cheaper | expensive")
    min_price: Optional[float] = Field(None, description="최소 가격 (표시용)")
    max_price: Optional[float] = Field(None, description="최대 가격 (표시용)")

    @field_validator("min_price", "max_price", mode="before")
    @classmethod
    def _coerce_price(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_price(value)
        return value

    @property
    def search_query(self) -> str:
        return self.search_phrase.strip()


class ApiRequestResponse(BaseAIResponse):
    """외부 API 직접 호출 요청 응답"""

    response_type: Literal["api_request"] = "api_request"
    api: str = Field(default="", description="API 이름 (예: google_shopping)")
    params: Dict[str, Any] = Field(default_factory=dict, description="API 파라미터")

    @property
    def search_query(self) -> str:
        query = self.params.get("q")
        return query.strip() if isinstance(query, str) else ""


AIResponse = Annotated[
    Union[DialogueResponse, SearchResponse, ApiRequestResponse],
    Field(discriminator="response_type"),
]

# 스키마 우선 디코딩용 어댑터
ai_response_adapter: TypeAdapter = TypeAdapter(AIResponse)

# ========== 구조화 출력 스키마 (그라운딩 미사용 시) ==========

_CATEGORY = {"type": "string", "description": "Product category or group"}

DIALOGUE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "response_type": {"type": "string", "enum": [ResponseType.DIALOGUE.value]},
        "output": {"type": "string", "description": "Short helpful question or message (<400 chars)"},
        "quick_replies": {"type": "array", "items": {"type": "string"}, "minItems": 1, "maxItems": 6},
        "category": _CATEGORY,
    },
    "required": ["response_type", "output", "category"],
}

SEARCH_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "response_type": {"type": "string", "enum": [ResponseType.SEARCH.value]},
        "output": {"type": "string"},
        "search_phrase": {
            "type": "string",
            "description": "Product name with specifications only, no country, currency or the word 'price'",
        },
        "search_type": {"type": "string", "enum": ["exact", "parameters", "category"]},
        "category": _CATEGORY,
        "price_filter": {"type": "string", "enum": ["cheaper", "expensive"]},
        "min_price": {"type": "number"},
        "max_price": {"type": "number"},
        "product_description": {"type": "string"},
    },
    "required": ["response_type", "search_phrase", "search_type", "category"],
}

API_REQUEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "response_type": {"type": "string", "enum": [ResponseType.API_REQUEST.value]},
        "api": {"type": "string", "enum": ["google_shopping"]},
        "params": {
            "type": "object",
            "properties": {
                "q": {"type": "string", "description": "Full official product name"},
                "gl": {"type": "string", "description": "Geographic location code"},
                "hl": {"type": "string", "description": "Host language code"},
                "currency": {"type": "string", "description": "Currency code"},
            },
            "required": ["q", "gl", "hl", "currency"],
        },
        "category": _CATEGORY,
        "output": {"type": "string"},
        "product_description": {"type": "string", "description": "1-2 sentences, max 200 chars"},
    },
    "required": ["response_type", "api", "params", "category", "product_description"],
}

RESPONSE_SCHEMAS: Dict[ResponseType, Dict[str, Any]] = {
    ResponseType.DIALOGUE: DIALOGUE_SCHEMA,
    ResponseType.SEARCH: SEARCH_SCHEMA,
    ResponseType.API_REQUEST: API_REQUEST_SCHEMA,
}


def build_universal_schema() -> Dict[str, Any]:
    """
    세 응답 유형을 모두 받는 단일 스키마

    유형별 스키마의 속성을 합치고 response_type만 필수로 둔다.
    """
    properties: Dict[str, Any] = {}
    for schema in RESPONSE_SCHEMAS.values():
        for name, prop in schema["properties"].items():
            properties.setdefault(name, prop)

    properties["response_type"] = {"type": "string", "enum": [t.value for t in ResponseType]}
    return {"type": "object", "properties": properties, "required": ["response_type"]}


# LLM 호출에 사용하는 통합 스키마
AI_RESPONSE_SCHEMA: Dict[str, Any] = build_universal_schema()
