"""Create search_history table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "search_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=True, comment="익명 검색은 NULL"),
        sa.Column("session_id", sa.String(255), nullable=False),
        # 검색 정보
        sa.Column("search_query", sa.Text(), nullable=False, comment="사용자 원문"),
        sa.Column("optimized_query", sa.Text(), nullable=False, comment="번역된 검색어"),
        sa.Column("search_type", sa.String(20), nullable=False),
        sa.Column("category", sa.String(100), nullable=True),
        # 로케일
        sa.Column("country_code", sa.String(2), nullable=False),
        sa.Column("language_code", sa.String(10), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        # 결과
        sa.Column("result_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("products_found", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        comment="상품 검색 이력",
    )

    op.create_index("ix_search_history_user_id", "search_history", ["user_id"])
    op.create_index("ix_search_history_session_id", "search_history", ["session_id"])
    op.create_index("ix_search_history_created_at", "search_history", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_search_history_created_at", table_name="search_history")
    op.drop_index("ix_search_history_session_id", table_name="search_history")
    op.drop_index("ix_search_history_user_id", table_name="search_history")
    op.drop_table("search_history")
