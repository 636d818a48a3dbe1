"""
환경변수 설정 모듈
Pydantic Settings를 사용하여 환경변수를 관리합니다.
모든 설정은 .env 파일에서 가져옵니다.
"""

from typing import Literal, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


def _split_csv(value: str) -> List[str]:
    """콤마 구분 문자열을 리스트로 변환"""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """애플리케이션 설정"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========== LLM 제공자 설정 ==========
    llm_provider: Literal["openai", "gemini"] = "gemini"
    # 키 로테이션용 콤마 구분 키 목록
    openai_api_keys: str = ""
    google_api_keys: str = ""
    llm_model: str = "gemini-2.5-flash"
    llm_fallback_model: str = "gemini-2.0-flash"
    llm_temperature: float = 0.7
    llm_max_output_tokens: int = 2048
    llm_use_grounding: bool = True

    @property
    def llm_api_keys(self) -> List[str]:
        """현재 제공자의 API 키 목록"""
        if self.llm_provider == "openai":
            return _split_csv(self.openai_api_keys)
        return _split_csv(self.google_api_keys)

    # ========== 번역 / 컨텍스트 추출 설정 ==========
    translation_temperature: float = 0.1
    translation_max_tokens: int = 100
    preferences_temperature: float = 0.2
    preferences_max_tokens: int = 500
    summary_temperature: float = 0.3
    summary_max_tokens: int = 200
    context_update_interval: int = 4
    context_recent_messages: int = 8

    # ========== 쇼핑 검색 API 설정 (SerpAPI) ==========
    serp_api_keys: str = ""
    serp_base_url: str = "https://serpapi.com/search.json"
    serp_timeout_seconds: float = 15.0
    search_max_results: int = 10

    @property
    def serp_api_key_list(self) -> List[str]:
        """SerpAPI 키 목록"""
        return _split_csv(self.serp_api_keys)

    # ========== 세션/캐시 설정 ==========
    session_ttl_minutes: int = 1440
    cache_ttl_seconds: int = 3600
    session_sweep_minutes: int = 10

    # ========== 검색 한도 설정 ==========
    max_searches: int = 5
    anonymous_search_limit: int = 3

    # ========== 기본 로케일 ==========
    default_country: str = "CH"
    default_language: str = "en"
    default_currency: str = "CHF"

    # ========== 타임아웃 / 재시도 설정 ==========
    turn_timeout_seconds: float = 60.0
    ai_attempt_timeout_seconds: float = 30.0
    ai_max_attempts: int = 3
    ai_retry_base_delay: float = 0.5
    save_max_attempts: int = 3
    save_initial_delay: float = 0.1
    save_max_delay: float = 2.0
    save_backoff_factor: float = 2.0

    # ========== WebSocket 설정 ==========
    ws_idle_timeout_seconds: float = 60.0

    # ========== 서버 설정 ==========
    api_host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    server_id: str = ""

    @property
    def server_port(self) -> int:
        """PORT 환경변수 우선 사용"""
        return self.port

    # ========== CORS 설정 ==========
    cors_origins: str = ""

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins를 리스트로 변환"""
        return _split_csv(self.cors_origins)

    # ========== 저장소 설정 ==========
    # memory: 단일 프로세스 개발용 / postgres: 메시지와 검색 이력을 DB에 저장
    storage_backend: Literal["memory", "postgres"] = "memory"

    # ========== 데이터베이스 설정 ==========
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "pricehound"

    @property
    def database_url(self) -> str:
        """PostgreSQL 비동기 연결 URL"""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        """PostgreSQL 동기 연결 URL (Alembic용)"""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # ========== JWT 인증 설정 ==========
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"

    # ========== 세션 서명 설정 ==========
    session_signing_secret: str = "change-me-too"
    signed_session_ttl_hours: int = 24

    # ========== Redis 설정 ==========
    redis_enabled: bool = False
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    broadcast_channel: str = "broadcast:all_users"

    @property
    def redis_url(self) -> str:
        """Redis 연결 URL"""
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"


@lru_cache()
def get_settings() -> Settings:
    """캐싱된 설정 인스턴스 반환"""
    return Settings()
