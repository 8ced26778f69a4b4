"""
SQLAlchemy 2.0 Models for StudyChat.

Uses modern declarative syntax with Mapped[] type annotations.
User accounts live in the external auth service; tables here reference the
auth user id directly.
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    BigInteger,
    Date,
    ForeignKey,
    Identity,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studychat.db.base import Base


# =============================================================================
# ENUMS
# =============================================================================


class ChatRole(str, PyEnum):
    """Role in chat conversation."""

    USER = "user"
    ASSISTANT = "assistant"


class AppRole(str, PyEnum):
    """Application role granted to a user."""

    ADMIN = "admin"
    USER = "user"


class MaterialCategory(str, PyEnum):
    """Category of an educational material."""

    BOOK = "book"
    ARTICLE = "article"
    EXAM = "exam"
    OTHER = "other"


DEFAULT_CONVERSATION_TITLE = "گفتگوی جدید"


# =============================================================================
# MODELS
# =============================================================================


class Profile(Base):
    """Public profile of an auth user (same primary key as the auth user)."""

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )


class UserRole(Base):
    """Role assignment. A user without rows here is a regular user."""

    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role", name="unique_user_role"),
        Index("idx_user_roles_user_id", "user_id"),
    )

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    role: Mapped[str] = mapped_column(String(), nullable=False)  # 'admin' or 'user'


class Conversation(Base):
    """
    Chat conversation with the assistant.

    Title is taken from the first 50 characters of the first user message.
    """

    __tablename__ = "conversations"
    __table_args__ = (Index("idx_conversations_user_id", "user_id"),)

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    title: Mapped[str] = mapped_column(
        String(), nullable=False, default=DEFAULT_CONVERSATION_TITLE
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )

    # Relationships
    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan"
    )


class Message(Base):
    """
    Individual message in a conversation.

    Ordered by created_at, ties broken by the insertion sequence.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_conversation_order", "conversation_id", "created_at", "seq"),
    )

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    seq: Mapped[int] = mapped_column(BigInteger, Identity(), nullable=False)
    conversation_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(), nullable=False)  # 'user' or 'assistant'
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Attachments (public storage URLs)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="messages"
    )


class EducationalMaterial(Base):
    """Downloadable educational resource stored in the materials bucket."""

    __tablename__ = "educational_materials"
    __table_args__ = (Index("idx_educational_materials_created_at", "created_at"),)

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    title: Mapped[str] = mapped_column(String(), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(
        String(), nullable=False, default=MaterialCategory.OTHER.value
    )
    file_path: Mapped[str] = mapped_column(String(), nullable=False)  # key inside the bucket
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    tags: Mapped[list[str]] = mapped_column(
        ARRAY(String()), nullable=False, server_default="{}"
    )
    uploaded_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("NOW()"), nullable=False
    )


class UserDailyLimit(Base):
    """Per-user counter of AI messages sent today."""

    __tablename__ = "user_daily_limits"

    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    messages_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reset_date: Mapped[date] = mapped_column(Date, nullable=False)
