"""
텍스트 파싱 유틸리티
가격 문자열 파싱, 언어 판별, 검색어 정규화
"""
import re
from typing import List, Optional

# 가격 문자열에서 제거할 통화 표기
_CURRENCY_MARKERS = ["CHF", "$", "€", "£"]

_WHITESPACE_RE = re.compile(r"\s+")


def parse_price(price: Optional[str]) -> Optional[float]:
    """
    표시용 가격 문자열을 숫자로 변환

    지원 패턴:
    - "$1,299.99", "€ 499", "CHF 89.90", "£20"

    Args:
        price: 가격 문자열

    Returns:
        float 또는 None (파싱 불가)
    """
    if not price:
        return None

    cleaned = price
    for marker in _CURRENCY_MARKERS:
        cleaned = cleaned.replace(marker, "")
    cleaned = cleaned.replace(",", "").strip()

    if not cleaned:
        return None

    try:
        return float(cleaned)
    except ValueError:
        return None


def is_english(text: str) -> bool:
    """
    영어 텍스트 여부 추정

    ASCII 밖 문자가 20%를 넘으면 영어가 아닌 것으로 본다.
    """
    if not text:
        return True

    non_ascii = sum(1 for ch in text if ord(ch) > 127)
    return non_ascii / len(text) <= 0.2


def normalize_query(query: str) -> str:
    """캐시 키용 검색어 정규화 (소문자, 공백 정리)"""
    return _WHITESPACE_RE.sub(" ", query.strip().lower())


def strip_quotes(text: str) -> str:
    """앞뒤 따옴표 제거"""
    return text.strip().strip("\"'").strip()


def truncate(text: str, limit: int) -> str:
    """지정 길이로 자르고 말줄임표 추가"""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def unique_preserving_order(items: List[str]) -> List[str]:
    """순서를 유지하며 중복 제거 (빈 값 제외)"""
    seen = set()
    result: List[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result
