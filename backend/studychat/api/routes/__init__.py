"""API routes package."""

from studychat.api.routes import (
    conversations,
    messages,
    relay,
    uploads,
    usage,
)

__all__ = [
    "conversations",
    "messages",
    "relay",
    "uploads",
    "usage",
]
