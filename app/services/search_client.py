"""
쇼핑 검색 API 클라이언트
SerpAPI Google Shopping 엔진으로 상품 검색 (키 로테이션 + 캐시 우선 조회)
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.models.product import ProductCard, ProductDetails, ProductOffer, ProductSearchResult
from app.services.cache import SearchCache, make_search_key
from app.services.key_rotator import KeyRotator, KeysExhaustedError
from app.utils.relevance import is_relevant

logger = logging.getLogger(__name__)


class SearchError(Exception):
    """쇼핑 검색 에러"""

    pass


class SearchQuotaError(SearchError):
    """API 키 할당량 소진"""

    pass


class SearchNetworkError(SearchError):
    """일시적 네트워크/서버 에러"""

    pass


_QUOTA_MARKERS = ("run out of searches", "quota exceeded", "limit exceeded", "rate limit")
_NO_RESULTS_MARKER = "hasn't returned any results"

# 국가별 검색 언어
COUNTRY_LANGUAGES: Dict[str, str] = {
    "CH": "de", "DE": "de", "AT": "de",
    "FR": "fr", "IT": "it", "ES": "es",
    "PT": "pt", "NL": "nl", "BE": "nl",
    "PL": "pl", "CZ": "cs", "SE": "sv",
    "NO": "no", "DK": "da", "FI": "fi",
    "GB": "en", "US": "en",
}


def language_for_country(country: str) -> str:
    """국가 코드에 맞는 검색 언어"""
    return COUNTRY_LANGUAGES.get(country.upper(), "en")


_network_wait = wait_exponential(multiplier=0.5, min=0.5, max=2)


def _search_backoff(retry_state: RetryCallState) -> float:
    """할당량 에러는 즉시 다음 키로, 네트워크 에러는 0.5s → 1s → 2s 대기"""
    outcome = retry_state.outcome
    if outcome is not None and isinstance(outcome.exception(), SearchQuotaError):
        return 0.0
    return _network_wait(retry_state)


class SearchClient(ABC):
    """상품 검색 클라이언트 인터페이스"""

    def __init__(self, cache: Optional[SearchCache] = None, cache_ttl_seconds: int = 3600) -> None:
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds

    @abstractmethod
    async def search(
        self,
        query: str,
        search_type: str,
        country: str,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
    ) -> Tuple[List[ProductCard], int]:
        """
        상품 검색

        Returns:
            (상품 카드 목록, 사용한 키 인덱스)
        """
        pass

    async def search_with_cache(
        self,
        query: str,
        search_type: str,
        country: str,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
    ) -> ProductSearchResult:
        """캐시 우선 검색 (키: 국가 + 유형 + 정규화된 검색어)"""
        cache_key = make_search_key(query, search_type, country)

        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                logger.info(f"[Search] 캐시 히트: {cache_key}")
                return ProductSearchResult(
                    query=query,
                    search_type=search_type,
                    country=country,
                    items=cached,
                    cached=True,
                )

        items, key_index = await self.search(query, search_type, country, min_price, max_price)

        if self._cache is not None and items:
            await self._cache.set(cache_key, items, self._cache_ttl)

        return ProductSearchResult(
            query=query,
            search_type=search_type,
            country=country,
            items=items,
            key_index=key_index,
            cached=False,
        )

    async def get_product_details(self, page_token: str, country: str) -> ProductDetails:
        """상품 상세 조회 (page_token 기반)"""
        raise SearchError("상품 상세 조회를 지원하지 않는 검색 클라이언트입니다")


class SerpShoppingClient(SearchClient):
    """SerpAPI Google Shopping 클라이언트"""

    def __init__(
        self,
        key_rotator: KeyRotator,
        base_url: str = "https://serpapi.com/search.json",
        timeout: float = 15.0,
        max_results: int = 10,
        cache: Optional[SearchCache] = None,
        cache_ttl_seconds: int = 3600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(cache, cache_ttl_seconds)
        self._key_rotator = key_rotator
        self._base_url = base_url
        self._timeout = timeout
        self._max_results = max_results
        self._transport = transport

    @staticmethod
    def _page_token(item: Dict[str, Any]) -> Optional[str]:
        """상세 조회용 토큰 추출"""
        token = item.get("immersive_product_page_token")
        if token:
            return str(token)

        api_link = item.get("serpapi_product_api") or ""
        marker = "page_token="
        if marker in api_link:
            return api_link.split(marker, 1)[1].split("&", 1)[0]

        product_id = item.get("product_id")
        return str(product_id) if product_id else None

    def _parse_product(self, item: Dict[str, Any]) -> ProductCard:
        """shopping_results 항목을 ProductCard로 변환"""
        rating = item.get("rating")
        badge = f"⭐ {float(rating):.1f}" if isinstance(rating, (int, float)) and rating > 0 else None

        return ProductCard(
            name=str(item.get("title") or ""),
            price=str(item.get("price") or ""),
            old_price=str(item["old_price"]) if item.get("old_price") else None,
            link=str(item.get("product_link") or item.get("link") or ""),
            image=item.get("thumbnail") or None,
            description=item.get("source") or None,
            badge=badge,
            page_token=self._page_token(item),
        )

    async def _request(self, params: Dict[str, str]) -> Dict[str, Any]:
        """SerpAPI 호출 및 에러 분류"""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(self._base_url, params=params)
        except httpx.TimeoutException as e:
            raise SearchNetworkError(f"검색 API 타임아웃: {e}") from e
        except httpx.TransportError as e:
            raise SearchNetworkError(f"검색 API 연결 실패: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        error_text = str(data.get("error") or "") if isinstance(data, dict) else ""
        lowered = error_text.lower()

        if response.status_code == 429 or any(m in lowered for m in _QUOTA_MARKERS):
            raise SearchQuotaError(error_text or "API 호출 한도 초과")
        if response.status_code >= 500:
            raise SearchNetworkError(f"API 오류: {response.status_code}")
        if response.status_code == 401:
            raise SearchError("API 인증 실패")
        if error_text and _NO_RESULTS_MARKER not in lowered:
            raise SearchError(f"API 오류: {error_text}")
        if response.status_code != 200 and not error_text:
            raise SearchError(f"API 오류: {response.status_code}")

        return data

    async def _request_with_key(self, params: Dict[str, str]) -> Tuple[Dict[str, Any], int]:
        """다음 키로 호출 (할당량 초과 시 해당 키를 소진 처리)"""
        try:
            api_key, key_index = self._key_rotator.get_next_key()
        except KeysExhaustedError as e:
            raise SearchError(str(e)) from e

        try:
            data = await self._request({**params, "api_key": api_key})
        except SearchQuotaError:
            logger.warning(f"[Search] 할당량 초과, 키 #{key_index} 소진 처리")
            self._key_rotator.mark_exhausted(key_index)
            raise

        return data, key_index

    def _retrying(self) -> AsyncRetrying:
        """할당량 에러는 다음 키로, 네트워크 에러는 백오프 후 재시도"""
        return AsyncRetrying(
            stop=stop_after_attempt(self._key_rotator.total_keys + 2),
            wait=_search_backoff,
            retry=retry_if_exception_type((SearchQuotaError, SearchNetworkError)),
            reraise=True,
        )

    async def _search_once(self, query: str, search_type: str, country: str) -> Tuple[List[ProductCard], int]:
        data, key_index = await self._request_with_key({
            "engine": "google_shopping",
            "q": query,
            "gl": country.lower(),
            "hl": language_for_country(country),
        })

        results = data.get("shopping_results") or []
        if not results:
            logger.warning(f"[Search] shopping_results 없음: {query}")

        items = [self._parse_product(item) for item in results if isinstance(item, dict)]
        if search_type == "exact" and items:
            relevant = [p for p in items if is_relevant(query, p.name)]
            if not relevant:
                logger.warning(f"[Search] 관련 상품 없음 - query: {query}, 원본 {len(items)}개")
                raise SearchError(f"관련 상품을 찾지 못했습니다: {query}")
            if len(relevant) < len(items):
                logger.info(f"[Search] 관련성 필터: {len(items)}개 → {len(relevant)}개")
            items = relevant

        return items[: self._max_results], key_index

    async def search(
        self,
        query: str,
        search_type: str,
        country: str,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
    ) -> Tuple[List[ProductCard], int]:
        """
        상품 검색

        가격 범위는 표시용 힌트이므로 실제 API 호출에 포함하지 않는다.
        exact 검색은 관련성 필터를 거치며, 결과가 있었는데 모두 무관하면 SearchError.

        Args:
            query: 검색어 (영어)
            search_type: exact | parameters | category
            country: 국가 코드
            min_price: 최소 가격 (로그용)
            max_price: 최대 가격 (로그용)

        Returns:
            (상품 카드 목록, 사용한 키 인덱스)
        """
        if not query.strip():
            raise SearchError("빈 검색어")

        logger.info(
            f"[Search] 검색 시작 - query: {query}, type: {search_type}, country: {country}, "
            f"price: {min_price}~{max_price}"
        )

        async for attempt in self._retrying():
            with attempt:
                items, key_index = await self._search_once(query, search_type, country)
                logger.info(f"[Search] 검색 완료: {len(items)}개 (키 #{key_index})")
                return items, key_index

        raise SearchError("재시도 루프가 결과 없이 종료되었습니다")

    # ========== 상품 상세 ==========

    @staticmethod
    def _parse_offer(store: Dict[str, Any]) -> ProductOffer:
        extracted = store.get("extracted_price")
        rating = store.get("rating")
        reviews = store.get("reviews")
        return ProductOffer(
            merchant=str(store.get("name") or store.get("merchant") or ""),
            price=str(store.get("price") or ""),
            link=str(store.get("link") or ""),
            logo=store.get("logo") or None,
            extracted_price=float(extracted) if isinstance(extracted, (int, float)) else None,
            shipping=store.get("shipping") or None,
            total=store.get("total") or None,
            rating=float(rating) if isinstance(rating, (int, float)) else None,
            reviews=int(reviews) if isinstance(reviews, int) else None,
            tag=store.get("tag") or None,
            details_and_offers=[str(d) for d in store.get("details_and_offers") or []],
        )

    def _parse_details(self, data: Dict[str, Any]) -> ProductDetails:
        """google_immersive_product 응답을 ProductDetails로 변환"""
        product = data.get("product_results")
        if not isinstance(product, dict) or not product.get("title"):
            raise SearchError("상품 상세 정보가 없습니다")

        offers = [self._parse_offer(s) for s in product.get("stores") or [] if isinstance(s, dict)]

        images: List[str] = []
        for thumb in product.get("thumbnails") or []:
            if isinstance(thumb, str):
                images.append(thumb)
            elif isinstance(thumb, dict) and thumb.get("link"):
                images.append(str(thumb["link"]))

        about = product.get("about_the_product") or {}
        description = product.get("description") or (about.get("description") if isinstance(about, dict) else None)

        specifications = [
            {"title": str(spec.get("title") or ""), "value": str(spec.get("value") or "")}
            for spec in product.get("specs") or (about.get("features") if isinstance(about, dict) else None) or []
            if isinstance(spec, dict)
        ]

        rating = product.get("rating")
        reviews = product.get("reviews")
        return ProductDetails(
            title=str(product["title"]),
            price=offers[0].price if offers else str(product.get("price") or ""),
            rating=float(rating) if isinstance(rating, (int, float)) else None,
            reviews=int(reviews) if isinstance(reviews, int) else None,
            description=description or None,
            images=images,
            specifications=specifications,
            offers=offers,
            rating_breakdown=[
                {"stars": int(r.get("stars", 0)), "amount": int(r.get("amount", 0))}
                for r in product.get("ratings") or []
                if isinstance(r, dict)
            ],
        )

    async def get_product_details(self, page_token: str, country: str) -> ProductDetails:
        """
        상품 상세 조회

        검색 결과 카드의 page_token으로 판매처별 가격, 이미지, 평점 등을 가져온다.
        키 로테이션과 재시도 규칙은 검색과 같다.
        """
        if not page_token.strip():
            raise SearchError("빈 page_token")

        logger.info(f"[Search] 상품 상세 조회 - country: {country}")

        async for attempt in self._retrying():
            with attempt:
                data, key_index = await self._request_with_key({
                    "engine": "google_immersive_product",
                    "page_token": page_token,
                    "more_stores": "true",
                    "gl": country.lower(),
                    "hl": language_for_country(country),
                })
                details = self._parse_details(data)
                logger.info(f"[Search] 상품 상세 완료: 판매처 {len(details.offers)}곳 (키 #{key_index})")
                return details

        raise SearchError("재시도 루프가 결과 없이 종료되었습니다")
