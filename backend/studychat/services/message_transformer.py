"""Conversion of stored chat messages into the gateway's message shape."""

from collections.abc import Iterable, Mapping
from typing import Any, Protocol


class ChatMessageLike(Protocol):
    """Anything with a role, text content and optional attachments."""

    role: str
    content: str
    image_url: str | None
    file_url: str | None


def _field(message: Any, name: str) -> Any:
    if isinstance(message, Mapping):
        return message.get(name)
    return getattr(message, name, None)


def to_gateway_message(message: ChatMessageLike | Mapping[str, Any]) -> dict[str, Any]:
    """
    Convert one message.

    A message with an image becomes a two-part message (text + image_url);
    everything else stays a single text part. A file attachment is passed
    as a raw URL on its own line so the model can refer to it.
    """
    role = _field(message, "role")
    text = _field(message, "content") or ""
    image_url = _field(message, "image_url")
    file_url = _field(message, "file_url")

    if file_url:
        text = f"{text}\n{file_url}" if text else file_url

    if image_url:
        return {
            "role": role,
            "content": [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        }
    return {"role": role, "content": text}


def to_gateway_messages(
    history: Iterable[ChatMessageLike | Mapping[str, Any]],
    outgoing: ChatMessageLike | Mapping[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """Convert the ordered history (plus the new outgoing message, if given)."""
    messages = [to_gateway_message(message) for message in history]
    if outgoing is not None:
        messages.append(to_gateway_message(outgoing))
    return messages


def has_image(messages: Iterable[Mapping[str, Any]]) -> bool:
    """True if any gateway-shaped message carries an image part."""
    for message in messages:
        content = message.get("content")
        if isinstance(content, list) and any(
            isinstance(part, Mapping) and part.get("type") == "image_url" for part in content
        ):
            return True
    return False
