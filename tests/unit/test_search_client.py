"""
쇼핑 검색 클라이언트 유닛 테스트
httpx.MockTransport로 SerpAPI 응답을 흉내낸다
"""
from typing import Any, Dict, List

import httpx
import pytest

from app.services.cache import InMemoryCache
from app.services.key_rotator import KeyRotator
from app.services.search_client import SearchError, SerpShoppingClient, language_for_country

SHOPPING_RESULTS = {
    "shopping_results": [
        {
            "title": "Samsung Galaxy S24 128GB",
            "price": "CHF 699.00",
            "old_price": "CHF 799.00",
            "product_link": "https://www.google.com/shopping/product/1",
            "thumbnail": "https://img.example.com/1.jpg",
            "source": "Digitec",
            "rating": 4.56,
            "immersive_product_page_token": "token-1",
        },
        {
            "title": "Samsung Galaxy S24 256GB",
            "price": "CHF 779.00",
            "link": "https://shop.example.com/2",
            "serpapi_product_api": "https://serpapi.com/search.json?engine=google_product&page_token=token-2&gl=ch",
        },
        {
            "title": "Samsung Galaxy S24 Case",
            "price": "CHF 19.90",
            "product_id": "12345",
        },
    ]
}


class FakeSerpApi:
    """요청을 기록하고 준비된 응답을 순서대로 반환"""

    def __init__(self, responses: List[httpx.Response]) -> None:
        self.responses = responses
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def make_client(api: FakeSerpApi, keys=("key-a",), cache=None, max_results: int = 10) -> SerpShoppingClient:
    return SerpShoppingClient(
        KeyRotator("serpapi", list(keys)),
        max_results=max_results,
        cache=cache,
        transport=httpx.MockTransport(api),
    )


def json_response(status_code: int, data: Dict[str, Any]) -> httpx.Response:
    return httpx.Response(status_code, json=data)


class TestParsing:
    """결과 파싱 테스트"""

    async def test_parses_product_cards(self):
        """shopping_results를 상품 카드로 변환"""
        api = FakeSerpApi([json_response(200, SHOPPING_RESULTS)])
        items, key_index = await make_client(api).search("Samsung Galaxy S24", "exact", "CH")

        assert key_index == 0
        assert len(items) == 3

        first = items[0]
        assert first.name == "Samsung Galaxy S24 128GB"
        assert first.price == "CHF 699.00"
        assert first.old_price == "CHF 799.00"
        assert first.link == "https://www.google.com/shopping/product/1"
        assert first.image == "https://img.example.com/1.jpg"
        assert first.description == "Digitec"
        assert first.badge == "⭐ 4.6"
        assert first.page_token == "token-1"

        assert items[1].link == "https://shop.example.com/2"
        assert items[1].page_token == "token-2"
        assert items[1].badge is None
        assert items[2].page_token == "12345"

    async def test_request_params(self):
        """국가 코드와 검색 언어가 요청에 포함"""
        api = FakeSerpApi([json_response(200, SHOPPING_RESULTS)])
        await make_client(api).search("Samsung Galaxy S24", "exact", "CH")

        params = api.requests[0].url.params
        assert params["engine"] == "google_shopping"
        assert params["q"] == "Samsung Galaxy S24"
        assert params["gl"] == "ch"
        assert params["hl"] == "de"
        assert params["api_key"] == "key-a"

    async def test_max_results(self):
        """최대 결과 수 제한"""
        api = FakeSerpApi([json_response(200, SHOPPING_RESULTS)])
        items, _ = await make_client(api, max_results=2).search("Samsung", "parameters", "CH")
        assert len(items) == 2

    @pytest.mark.parametrize("country,language", [("CH", "de"), ("fr", "fr"), ("US", "en"), ("JP", "en")])
    def test_language_for_country(self, country: str, language: str):
        assert language_for_country(country) == language


class TestErrors:
    """에러 처리 테스트"""

    async def test_quota_rotates_key(self):
        """할당량 초과 시 키를 소진 처리하고 다음 키로 재시도"""
        api = FakeSerpApi([
            json_response(429, {"error": "Your account has run out of searches."}),
            json_response(200, SHOPPING_RESULTS),
        ])
        client = make_client(api, keys=("key-a", "key-b"))

        items, key_index = await client.search("Samsung Galaxy S24", "exact", "CH")

        assert key_index == 1
        assert len(items) == 3
        assert [r.url.params["api_key"] for r in api.requests] == ["key-a", "key-b"]

    async def test_all_keys_exhausted(self):
        """모든 키가 소진되면 SearchError"""
        api = FakeSerpApi([json_response(429, {"error": "Your account has run out of searches."})])
        with pytest.raises(SearchError):
            await make_client(api, keys=("key-a", "key-b")).search("Samsung", "exact", "CH")

    async def test_no_results_is_empty(self):
        """결과 없음 메시지는 빈 목록"""
        api = FakeSerpApi([
            json_response(200, {"error": "Google hasn't returned any results for this query."})
        ])
        items, _ = await make_client(api).search("qwertyuiop", "exact", "CH")
        assert items == []

    async def test_unauthorized(self):
        """인증 실패는 재시도하지 않음"""
        api = FakeSerpApi([json_response(401, {"error": "Invalid API key."})])
        with pytest.raises(SearchError):
            await make_client(api).search("Samsung", "exact", "CH")
        assert len(api.requests) == 1

    async def test_empty_query(self):
        """빈 검색어는 호출 없이 실패"""
        api = FakeSerpApi([json_response(200, SHOPPING_RESULTS)])
        with pytest.raises(SearchError):
            await make_client(api).search("   ", "exact", "CH")
        assert api.requests == []


class TestCache:
    """캐시 우선 조회 테스트"""

    async def test_cache_hit_skips_api(self):
        """같은 검색어(대소문자/공백 무관)는 캐시에서 반환"""
        api = FakeSerpApi([json_response(200, SHOPPING_RESULTS)])
        client = make_client(api, cache=InMemoryCache())

        first = await client.search_with_cache("Samsung Galaxy S24", "exact", "CH", max_price=800)
        second = await client.search_with_cache("  samsung   galaxy s24 ", "exact", "ch", min_price=100)

        assert first.cached is False
        assert second.cached is True
        assert len(second.items) == 3
        assert len(api.requests) == 1

    async def test_empty_results_not_cached(self):
        """빈 결과는 캐시하지 않음"""
        api = FakeSerpApi([json_response(200, {"shopping_results": []})])
        client = make_client(api, cache=InMemoryCache())

        await client.search_with_cache("nothing", "exact", "CH")
        await client.search_with_cache("nothing", "exact", "CH")

        assert len(api.requests) == 2


IPHONE_ITEM = {"title": "Apple iPhone 15 Pro 256GB", "price": "CHF 1099.00", "product_id": "999"}


class TestRelevanceFilter:
    """exact 검색 관련성 필터 테스트"""

    async def test_irrelevant_exact_raises(self):
        """결과가 모두 무관하면 재시도 없이 SearchError"""
        api = FakeSerpApi([json_response(200, SHOPPING_RESULTS)])
        with pytest.raises(SearchError):
            await make_client(api).search("Apple iPhone 15", "exact", "CH")
        assert len(api.requests) == 1

    async def test_drops_unrelated_items(self):
        results = {"shopping_results": [IPHONE_ITEM] + SHOPPING_RESULTS["shopping_results"]}
        api = FakeSerpApi([json_response(200, results)])

        items, _ = await make_client(api).search("Samsung Galaxy S24", "exact", "CH")

        assert [p.name for p in items] == [
            "Samsung Galaxy S24 128GB",
            "Samsung Galaxy S24 256GB",
            "Samsung Galaxy S24 Case",
        ]

    async def test_filter_before_limit(self):
        """무관한 상품을 거른 뒤 최대 결과 수 적용"""
        results = {"shopping_results": [IPHONE_ITEM] + SHOPPING_RESULTS["shopping_results"]}
        api = FakeSerpApi([json_response(200, results)])

        items, _ = await make_client(api, max_results=2).search("Samsung Galaxy S24", "exact", "CH")

        assert [p.name for p in items] == ["Samsung Galaxy S24 128GB", "Samsung Galaxy S24 256GB"]

    @pytest.mark.parametrize("search_type", ["parameters", "category"])
    async def test_broad_search_not_filtered(self, search_type: str):
        """조건/카테고리 검색은 검색 엔진 순서를 그대로 사용"""
        api = FakeSerpApi([json_response(200, SHOPPING_RESULTS)])
        items, _ = await make_client(api).search("Apple iPhone 15", search_type, "CH")
        assert len(items) == 3


IMMERSIVE_PRODUCT = {
    "product_results": {
        "title": "Samsung Galaxy S24 128GB",
        "rating": 4.6,
        "reviews": 1532,
        "thumbnails": ["https://img.example.com/1.jpg", {"link": "https://img.example.com/2.jpg"}],
        "about_the_product": {"description": "6.2 inch flagship phone"},
        "stores": [
            {
                "name": "Digitec",
                "logo": "https://img.example.com/digitec.png",
                "link": "https://digitec.example/1",
                "price": "CHF 699.00",
                "extracted_price": 699.0,
                "shipping": "Free delivery",
                "rating": 4.7,
                "reviews": 210,
                "details_and_offers": ["In stock"],
            },
            {"name": "Galaxus", "link": "https://galaxus.example/1", "price": "CHF 709.00"},
        ],
        "ratings": [{"stars": 5, "amount": 1100}, {"stars": 1, "amount": 40}],
    }
}


class TestProductDetails:
    """상품 상세 조회 테스트"""

    async def test_parses_details(self):
        api = FakeSerpApi([json_response(200, IMMERSIVE_PRODUCT)])
        details = await make_client(api).get_product_details("token-1", "CH")

        assert details.title == "Samsung Galaxy S24 128GB"
        assert details.price == "CHF 699.00"
        assert details.rating == 4.6
        assert details.reviews == 1532
        assert details.description == "6.2 inch flagship phone"
        assert details.images == ["https://img.example.com/1.jpg", "https://img.example.com/2.jpg"]
        assert [o.merchant for o in details.offers] == ["Digitec", "Galaxus"]
        assert details.offers[0].extracted_price == 699.0
        assert details.offers[0].details_and_offers == ["In stock"]
        assert details.rating_breakdown[0] == {"stars": 5, "amount": 1100}

    async def test_request_params(self):
        api = FakeSerpApi([json_response(200, IMMERSIVE_PRODUCT)])
        await make_client(api).get_product_details("token-1", "CH")

        params = api.requests[0].url.params
        assert params["engine"] == "google_immersive_product"
        assert params["page_token"] == "token-1"
        assert params["api_key"] == "key-a"

    async def test_quota_rotates_key(self):
        api = FakeSerpApi([
            json_response(429, {"error": "Your account has run out of searches."}),
            json_response(200, IMMERSIVE_PRODUCT),
        ])
        details = await make_client(api, keys=("key-a", "key-b")).get_product_details("token-1", "CH")

        assert details.title == "Samsung Galaxy S24 128GB"
        assert [r.url.params["api_key"] for r in api.requests] == ["key-a", "key-b"]

    @pytest.mark.parametrize("data", [{}, {"product_results": {"title": ""}}])
    async def test_missing_product(self, data):
        api = FakeSerpApi([json_response(200, data)])
        with pytest.raises(SearchError):
            await make_client(api).get_product_details("token-1", "CH")

    async def test_empty_token(self):
        api = FakeSerpApi([json_response(200, IMMERSIVE_PRODUCT)])
        with pytest.raises(SearchError):
            await make_client(api).get_product_details("  ", "CH")
        assert api.requests == []
