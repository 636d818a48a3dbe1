"""
검색 결과 관련성 판별 유닛 테스트
"""
import pytest

from app.utils.relevance import is_relevant, match_ratio, model_numbers, significant_words, tokenize


class TestTokens:
    """단어 분리 테스트"""

    def test_tokenize(self):
        assert tokenize("Samsung Galaxy S24, 128GB!") == ["samsung", "galaxy", "s24", "128gb"]

    def test_significant_words(self):
        """짧은 단어와 흔한 단어 제외"""
        assert significant_words(["the", "new", "iphone", "15", "pro", "max"]) == ["iphone", "max"]

    def test_model_numbers(self):
        assert model_numbers(["sony", "wh1000xm5", "headphones", "5"]) == ["wh1000xm5"]


class TestRelevance:
    """관련성 판별 테스트"""

    @pytest.mark.parametrize(
        "query,title,expected",
        [
            ("Samsung Galaxy S24", "Samsung Galaxy S24 128GB Onyx Black", True),
            ("Samsung Galaxy S24", "Samsung Galaxy S24 Case", True),
            ("Samsung Galaxy S24", "Samsung Galaxy S23 128GB", False),
            ("iPhone 15", "Apple iPhone 150 Sticker", False),
            ("iPhone 15", "Samsung Galaxy S24 128GB", False),
            ("Sony WH-1000XM5", "Sony WH-1000XM5 Wireless Headphones", True),
            ("Dyson V15 Detect", "Dyson V15 Detect Absolute", True),
        ],
    )
    def test_is_relevant(self, query: str, title: str, expected: bool):
        assert is_relevant(query, title) is expected

    def test_unknown_brand_needs_half_of_words(self):
        """모델 번호/브랜드가 없으면 핵심 단어 절반 이상 일치"""
        assert is_relevant("wooden chess board", "Handmade Wooden Chess Set") is True
        assert is_relevant("wooden chess board", "Plastic Toy Car") is False

    def test_only_common_words(self):
        """핵심 단어가 없으면 무조건 관련"""
        assert match_ratio("the best", "anything") == 1.0
