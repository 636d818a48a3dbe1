"""
상품 상세 엔드포인트
검색 결과 카드의 page_token으로 판매처별 가격과 상세 정보를 조회
"""
import logging

from fastapi import APIRouter, Depends

from app.api.chat import api_error
from app.container import ServiceContainer
from app.dependencies.auth import get_container
from app.models.product import ProductDetails
from app.models.request import ProductDetailsRequest
from app.models.response import ErrorCode
from app.services.search_client import SearchError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/product-details", response_model=ProductDetails)
async def get_product_details(
    request: ProductDetailsRequest,
    container: ServiceContainer = Depends(get_container),
) -> ProductDetails:
    """
    상품 상세 조회

    Args:
        request: page_token (필수), country (없으면 기본 국가)

    Returns:
        ProductDetails: 판매처별 가격, 이미지, 평점, 사양
    """
    if not request.page_token.strip():
        raise api_error(ErrorCode.VALIDATION_ERROR, "Page token is required")

    country = (request.country or container.settings.default_country).upper()

    try:
        return await container.search_client.get_product_details(request.page_token, country)
    except SearchError as e:
        logger.warning(f"[Products] 상세 조회 실패: {e}")
        raise api_error(ErrorCode.SEARCH_FAILED, "Failed to fetch product details")
