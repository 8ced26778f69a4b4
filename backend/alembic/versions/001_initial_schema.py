"""Initial schema: profiles, roles, conversations, messages, materials, daily limits.

Revision ID: 001
Revises:
Create Date: 2026-10-19

Users live in the external auth service; user_id columns hold its ids and
carry no foreign key.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP, ARRAY

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ==========================================================================
    # PROFILES AND ROLES
    # ==========================================================================
    op.create_table(
        "profiles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )

    op.create_table(
        "user_roles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(), nullable=False),  # admin, user
        sa.UniqueConstraint("user_id", "role", name="unique_user_role"),
    )
    op.create_index("idx_user_roles_user_id", "user_roles", ["user_id"])

    # ==========================================================================
    # CONVERSATIONS AND MESSAGES
    # ==========================================================================
    op.create_table(
        "conversations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(), nullable=False, server_default="گفتگوی جدید"),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )
    op.create_index("idx_conversations_user_id", "conversations", ["user_id"])

    op.create_table(
        "messages",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("seq", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column(
            "conversation_id",
            UUID(as_uuid=True),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(), nullable=False),  # user, assistant
        sa.Column("content", sa.Text(), nullable=False),

        # Attachments
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("file_url", sa.Text(), nullable=True),

        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )
    op.create_index(
        "idx_messages_conversation_order", "messages", ["conversation_id", "created_at", "seq"]
    )

    # ==========================================================================
    # EDUCATIONAL MATERIALS
    # ==========================================================================
    op.create_table(
        "educational_materials",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=False, server_default="other"),  # book, article, exam, other
        sa.Column("file_path", sa.String(), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("tags", ARRAY(sa.String()), nullable=False, server_default="{}"),
        sa.Column("uploaded_by", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )
    op.create_index("idx_educational_materials_created_at", "educational_materials", ["created_at"])

    # ==========================================================================
    # DAILY LIMITS
    # ==========================================================================
    op.create_table(
        "user_daily_limits",
        sa.Column("user_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("messages_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reset_date", sa.Date(), nullable=False, server_default=sa.text("CURRENT_DATE")),
    )


def downgrade() -> None:
    op.drop_table("user_daily_limits")
    op.drop_index("idx_educational_materials_created_at", table_name="educational_materials")
    op.drop_table("educational_materials")
    op.drop_index("idx_messages_conversation_order", table_name="messages")
    op.drop_table("messages")
    op.drop_index("idx_conversations_user_id", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("idx_user_roles_user_id", table_name="user_roles")
    op.drop_table("user_roles")
    op.drop_table("profiles")
