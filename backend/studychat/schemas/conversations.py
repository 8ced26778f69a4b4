"""Pydantic schemas for conversations and messages."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from studychat.schemas.base import BaseSchema, CreatedAtMixin, IDMixin, TimestampMixin


# Request schemas
class ConversationCreateRequest(BaseModel):
    """Request to create a new conversation."""

    title: str | None = None


class ConversationUpdateRequest(BaseModel):
    """Request to rename a conversation."""

    title: str = Field(..., min_length=1, max_length=255)


class MessageUpdateRequest(BaseModel):
    """Request to edit a message."""

    content: str = Field(..., min_length=1, max_length=10000)


# Response schemas
class MessageRead(BaseSchema, IDMixin, CreatedAtMixin):
    """Persisted chat message."""

    # Assistant text is stored verbatim, whitespace included
    model_config = ConfigDict(str_strip_whitespace=False)

    conversation_id: UUID
    role: str
    content: str
    image_url: str | None = None
    file_url: str | None = None


class ConversationRead(BaseSchema, IDMixin, TimestampMixin):
    """Conversation response."""

    user_id: UUID
    title: str


class ConversationWithMessages(ConversationRead):
    """Conversation with message history."""

    messages: list[MessageRead]


class ConversationListResponse(BaseModel):
    """List of conversations."""

    conversations: list[ConversationRead]
    total: int
