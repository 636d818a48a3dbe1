"""
FastAPI 메인 애플리케이션
pricehound 쇼핑 어시스턴트 채팅 백엔드
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import chat, health, products, sessions, stats, ws
from app.config import get_settings
from app.container import ServiceContainer

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """애플리케이션 생명주기 관리"""
    # 시작 시 초기화
    if app.state.container is None:
        app.state.container = ServiceContainer.build(get_settings())
    container: ServiceContainer = app.state.container

    logger.info(f"[Main] pricehound 서버 시작 (LLM: {container.settings.llm_provider}, server={container.server_id})")
    await container.start()

    yield

    # 종료 시 정리
    await container.stop()
    logger.info("[Main] pricehound 서버 종료")


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    FastAPI 앱 팩토리

    Args:
        container: 미리 조립된 서비스 컨테이너 (테스트용). 없으면 시작 시 설정으로 생성
    """
    settings = container.settings if container is not None else get_settings()
    configure_logging(settings.debug)

    app = FastAPI(
        title="pricehound Shopping Assistant",
        description="대화형 쇼핑 어시스턴트 API - 대화, 상품 검색, 기기 간 동기화",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.container = container

    # CORS 설정
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 라우터 등록
    app.include_router(health.router, prefix="/api", tags=["Health"])
    app.include_router(chat.router, prefix="/api", tags=["Chat"])
    app.include_router(products.router, prefix="/api", tags=["Products"])
    app.include_router(sessions.router, prefix="/api", tags=["Sessions"])
    app.include_router(stats.router, prefix="/api", tags=["Stats"])
    app.include_router(ws.router, tags=["WebSocket"])

    # Docker healthcheck용 루트 레벨 헬스체크
    @app.get("/health")
    async def root_health():
        return {"status": "ok"}

    return app


# 앱 인스턴스
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.server_port,
        reload=settings.debug,
    )
