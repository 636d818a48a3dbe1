"""
텍스트 파서 유닛 테스트
"""
import pytest

from app.utils.text_parser import (
    is_english,
    normalize_query,
    parse_price,
    strip_quotes,
    truncate,
    unique_preserving_order,
)


class TestPriceParsing:
    """가격 파싱 테스트"""

    @pytest.mark.parametrize(
        "price,expected",
        [
            ("$1,299.99", 1299.99),
            ("€ 499", 499.0),
            ("CHF 89.90", 89.9),
            ("£20", 20.0),
            ("", None),
            (None, None),
            ("price on request", None),
        ],
    )
    def test_parse_price(self, price, expected):
        """표시용 가격 문자열 변환"""
        assert parse_price(price) == expected


class TestLanguage:
    """언어 판별 테스트"""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("wireless headphones", True),
            ("Kopfhörer", True),
            ("беспроводные наушники", False),
            ("무선 이어폰", False),
            ("", True),
        ],
    )
    def test_is_english(self, text: str, expected: bool):
        """ASCII 비율 기반 판별"""
        assert is_english(text) is expected


class TestNormalization:
    """정규화 헬퍼 테스트"""

    def test_normalize_query(self):
        assert normalize_query("  Samsung   Galaxy\tS24 ") == "samsung galaxy s24"

    def test_strip_quotes(self):
        assert strip_quotes('"wireless earbuds"\n') == "wireless earbuds"

    def test_truncate(self):
        assert truncate("abcdef", 3) == "abc..."
        assert truncate("abc", 3) == "abc"

    def test_unique_preserving_order(self):
        assert unique_preserving_order(["b", "", "a", "b", "c", "a"]) == ["b", "a", "c"]
