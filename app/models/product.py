"""
상품 모델 정의
Google Shopping 검색 결과를 클라이언트용 카드로 표현
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ProductCard(BaseModel):
    """상품 카드 모델"""

    name: str = Field(..., description="상품명")
    price: str = Field(default="", description="표시용 가격 문자열 (통화 기호 포함)")
    old_price: Optional[str] = Field(None, description="할인 전 가격")
    link: str = Field(default="", description="상품 상세 URL")
    image: Optional[str] = Field(None, description="썸네일 이미지 URL")
    description: Optional[str] = Field(None, description="판매처")
    badge: Optional[str] = Field(None, description="평점 배지 (예: ⭐ 4.5)")
    page_token: Optional[str] = Field(None, description="상세 조회용 토큰")

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Samsung Galaxy S24 128GB",
                "price": "CHF 699.00",
                "link": "https://www.google.com/shopping/product/...",
                "image": "https://encrypted-tbn0.gstatic.com/...",
                "description": "Digitec",
                "badge": "⭐ 4.6",
            }
        }
    }


class ProductSearchResult(BaseModel):
    """상품 검색 결과"""

    query: str = Field(..., description="실제 검색어 (번역 후)")
    search_type: str = Field(default="parameters", description="검색 유형")
    country: str = Field(..., description="검색 국가 코드")
    items: List[ProductCard] = Field(default_factory=list)
    key_index: Optional[int] = Field(None, description="사용된 API 키 인덱스")
    cached: bool = Field(default=False, description="캐시 히트 여부")


class ProductOffer(BaseModel):
    """판매처별 가격 정보"""

    merchant: str = Field(..., description="판매처 이름")
    price: str = Field(default="", description="표시용 가격")
    link: str = Field(default="", description="구매 링크")
    logo: Optional[str] = Field(None, description="판매처 로고 URL")
    extracted_price: Optional[float] = Field(None, description="숫자 가격")
    shipping: Optional[str] = Field(None, description="배송비 안내")
    total: Optional[str] = Field(None, description="배송비 포함 총액")
    rating: Optional[float] = Field(None, description="판매처 평점")
    reviews: Optional[int] = Field(None, description="판매처 리뷰 수")
    tag: Optional[str] = Field(None, description="할인/특가 태그")
    details_and_offers: List[str] = Field(default_factory=list, description="부가 혜택")


class ProductDetails(BaseModel):
    """상품 상세 (상품 카드의 page_token으로 조회)"""

    type: str = Field(default="product_details")
    title: str = Field(..., description="상품명")
    price: str = Field(default="", description="대표 가격 (첫 번째 판매처)")
    rating: Optional[float] = Field(None, description="평균 평점")
    reviews: Optional[int] = Field(None, description="리뷰 수")
    description: Optional[str] = Field(None, description="상품 설명")
    images: List[str] = Field(default_factory=list, description="이미지 URL 목록")
    specifications: List[Dict[str, str]] = Field(default_factory=list, description="사양 (title, value)")
    offers: List[ProductOffer] = Field(default_factory=list, description="판매처별 가격")
    rating_breakdown: List[Dict[str, int]] = Field(default_factory=list, description="별점 분포 (stars, amount)")
