"""Create chat_messages table

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "chat_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, comment="user | assistant"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "response_type",
            sa.String(20),
            nullable=True,
            comment="dialogue | search | text | error",
        ),
        # 응답 부가 정보
        sa.Column("quick_replies", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("products", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("product_description", sa.Text(), nullable=True, comment="AI 생성 상품 설명"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        comment="대화 메시지 - 세션별 사용자/어시스턴트 메시지",
    )

    op.create_index("ix_chat_messages_session_id", "chat_messages", ["session_id"])
    op.create_index("ix_chat_messages_created_at", "chat_messages", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_chat_messages_created_at", table_name="chat_messages")
    op.drop_index("ix_chat_messages_session_id", table_name="chat_messages")
    op.drop_table("chat_messages")
