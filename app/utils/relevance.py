"""
검색 결과 관련성 판별
정확한 모델 검색(exact)에서 검색어와 무관한 상품 제목을 걸러낸다
"""
import re
from typing import List

# 관련성 계산에서 무시하는 단어
COMMON_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "be",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "can", "new", "latest", "best", "pro", "air",
    "version", "model", "series", "generation", "gen",
})

# 검색어에 있으면 제목에도 있어야 하는 브랜드/제품군
BRANDS = frozenset({
    "apple", "iphone", "ipad", "macbook", "samsung", "galaxy",
    "google", "pixel", "xiaomi", "oneplus", "sony", "dell",
    "hp", "lenovo", "asus", "acer", "msi", "lg", "huawei",
    "nike", "adidas", "puma", "reebok",
})

MIN_MATCH_RATIO = 0.5

_WORD_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> List[str]:
    """소문자 영숫자 단어 목록"""
    return _WORD_RE.findall(text.lower())


def significant_words(words: List[str]) -> List[str]:
    """짧은 단어와 흔한 단어를 제외한 핵심 단어"""
    return [w for w in words if len(w) > 2 and w not in COMMON_WORDS]


def model_numbers(words: List[str]) -> List[str]:
    """숫자가 포함된 단어 (모델 번호: s24, 15, wh1000xm5)"""
    return [w for w in words if len(w) >= 2 and any(ch.isdigit() for ch in w)]


def match_ratio(query: str, title: str) -> float:
    """검색어 핵심 단어 중 제목에 포함된 비율 (핵심 단어가 없으면 1.0)"""
    words = significant_words(tokenize(query))
    if not words:
        return 1.0

    title_lower = title.lower()
    matched = sum(1 for w in words if w in title_lower)
    return matched / len(words)


def is_relevant(query: str, title: str) -> bool:
    """
    상품 제목이 검색어와 관련 있는지 판별

    - 검색어에 모델 번호가 있으면 제목에 같은 번호가 단어로 있어야 한다 ("15"는 "150"과 다름)
    - 검색어에 브랜드가 있으면 제목에도 하나 이상 있어야 한다
    - 핵심 단어의 절반 이상이 제목에 있어야 한다
    """
    query_words = tokenize(query)
    title_words = set(tokenize(title))

    numbers = model_numbers(query_words)
    if numbers and not any(n in title_words for n in numbers):
        return False

    brands = [w for w in query_words if w in BRANDS]
    if brands and not any(b in title_words for b in brands):
        return False

    return match_ratio(query, title) >= MIN_MATCH_RATIO
