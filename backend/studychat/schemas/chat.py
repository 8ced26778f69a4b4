"""Pydantic schemas for the chat relay endpoint."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RelayMessage(BaseModel):
    """One message of the conversation sent to the relay."""

    role: Literal["user", "assistant"]
    content: str = Field(default="", max_length=20000)
    image_url: str | None = None
    file_url: str | None = None


class RelayRequest(BaseModel):
    """Request body of ``POST /chat``."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[RelayMessage] = Field(..., min_length=1)
    user_id: UUID | None = Field(default=None, alias="userId")


class ChatMessageRequest(BaseModel):
    """Request to send a message in a server-managed turn."""

    message: str = Field(..., min_length=1, max_length=10000)
    image_url: str | None = None
    file_url: str | None = None


class ErrorResponse(BaseModel):
    """Error body returned by the relay."""

    error: str
