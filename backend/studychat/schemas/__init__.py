"""Pydantic schemas for API request/response validation."""

from studychat.schemas.chat import (
    ChatMessageRequest,
    ErrorResponse,
    RelayMessage,
    RelayRequest,
)
from studychat.schemas.conversations import (
    ConversationCreateRequest,
    ConversationListResponse,
    ConversationRead,
    ConversationUpdateRequest,
    ConversationWithMessages,
    MessageRead,
    MessageUpdateRequest,
)
from studychat.schemas.uploads import UploadURLRequest, UploadURLResponse
from studychat.schemas.usage import UsageResponse

__all__ = [
    # Relay
    "RelayMessage",
    "RelayRequest",
    "ChatMessageRequest",
    "ErrorResponse",
    # Conversations
    "ConversationCreateRequest",
    "ConversationUpdateRequest",
    "ConversationRead",
    "ConversationWithMessages",
    "ConversationListResponse",
    # Messages
    "MessageRead",
    "MessageUpdateRequest",
    # Uploads
    "UploadURLRequest",
    "UploadURLResponse",
    # Usage
    "UsageResponse",
]
