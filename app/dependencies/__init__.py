"""
FastAPI 의존성 모듈
"""

from app.dependencies.auth import get_container, get_current_user_id, get_current_user_id_optional

__all__ = ["get_container", "get_current_user_id", "get_current_user_id_optional"]
