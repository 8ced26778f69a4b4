"""
Live transcript state and the reconciler that merges streamed deltas into it.

A transcript holds the persisted messages of the displayed conversation and
at most one pending assistant message. The pending slot is a single optional
field, so two in-flight replies for one conversation cannot coexist.
"""

import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol
from uuid import UUID, uuid4

from studychat.db.models import ChatRole
from studychat.errors import GENERIC_AI_ERROR, ChatRelayError, PersistenceFailure
from studychat.schemas.conversations import MessageRead
from studychat.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class Notifier(Protocol):
    """User-facing toast/alert channel."""

    def notify(self, title: str, description: str, *, level: str = "info") -> None: ...


class LoggingNotifier:
    """Notifier for headless use: writes notifications to the log."""

    _LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}

    def notify(self, title: str, description: str, *, level: str = "info") -> None:
        logger.log(self._LEVELS.get(level, logging.INFO), "%s: %s", title, description)


# =============================================================================
# TRANSCRIPT
# =============================================================================


@dataclass
class PendingAssistantMessage:
    """In-progress reply, never persisted as such."""

    temp_id: UUID
    accumulated_text: str = ""


@dataclass(frozen=True)
class TranscriptEntry:
    """One visible row of the transcript."""

    id: UUID
    role: str
    content: str
    image_url: str | None = None
    file_url: str | None = None
    pending: bool = False


class Transcript:
    """Ordered messages of the displayed conversation plus the pending reply."""

    def __init__(self, conversation_id: UUID | None = None):
        self.conversation_id = conversation_id
        self.messages: list[MessageRead] = []
        self.pending: PendingAssistantMessage | None = None

    def reset(self, conversation_id: UUID | None) -> None:
        """Switch to another conversation, dropping all state of the old one."""
        self.conversation_id = conversation_id
        self.messages = []
        self.pending = None

    def load(self, messages: list[MessageRead]) -> None:
        """Replace persisted messages after a re-fetch; a pending reply survives."""
        self.messages = list(messages)

    def append(self, message: MessageRead) -> None:
        if not any(existing.id == message.id for existing in self.messages):
            self.messages.append(message)

    def begin_pending(self, temp_id: UUID) -> PendingAssistantMessage:
        if self.pending is not None:
            raise RuntimeError("an assistant reply is already streaming in this conversation")
        self.pending = PendingAssistantMessage(temp_id=temp_id)
        return self.pending

    def update_pending(self, temp_id: UUID, text: str) -> None:
        if self.pending is not None and self.pending.temp_id == temp_id:
            self.pending.accumulated_text = text

    def commit_pending(self, temp_id: UUID, message: MessageRead) -> None:
        """Replace the pending reply in place by its persisted row."""
        if self.pending is not None and self.pending.temp_id == temp_id:
            self.pending = None
            self.append(message)

    def discard_pending(self, temp_id: UUID) -> None:
        if self.pending is not None and self.pending.temp_id == temp_id:
            self.pending = None

    def entries(self) -> list[TranscriptEntry]:
        """Rows as displayed: persisted messages, then the pending reply."""
        rows = [
            TranscriptEntry(
                id=m.id,
                role=m.role,
                content=m.content,
                image_url=m.image_url,
                file_url=m.file_url,
            )
            for m in self.messages
        ]
        if self.pending is not None:
            rows.append(
                TranscriptEntry(
                    id=self.pending.temp_id,
                    role=ChatRole.ASSISTANT.value,
                    content=self.pending.accumulated_text,
                    pending=True,
                )
            )
        return rows


# =============================================================================
# RECONCILER
# =============================================================================


class TranscriptReconciler:
    """
    Owns the pending assistant message for one relay call.

    Lifecycle: ``apply_delta`` for each delta in arrival order, then exactly
    one of ``finish`` (stream ended) or ``fail`` (stream broke). ``finish``
    persists at most once no matter how often it is called.
    """

    def __init__(
        self,
        store: ConversationStore,
        transcript: Transcript,
        conversation_id: UUID,
        notifier: Notifier,
    ):
        self.store = store
        self.transcript = transcript
        self.conversation_id = conversation_id
        self.notifier = notifier
        self.temp_id: UUID | None = None
        self.text = ""
        self.abandoned = False
        self.error: Exception | None = None
        self._finished = False
        self._result: MessageRead | None = None

    @property
    def is_current(self) -> bool:
        """True while the transcript still shows this reconciler's conversation."""
        return self.transcript.conversation_id == self.conversation_id

    def apply_delta(self, delta: str) -> bool:
        """
        Merge one delta into the pending message.

        Returns False once the reconciler no longer accepts deltas (finished,
        failed, or the user switched conversations).
        """
        if self._finished or self.abandoned:
            return False
        if not self.is_current:
            self.abandon()
            return False

        if self.temp_id is None:
            self.temp_id = uuid4()
            self.transcript.begin_pending(self.temp_id)
        self.text += delta
        self.transcript.update_pending(self.temp_id, self.text)
        return True

    def abandon(self) -> None:
        """Stop tracking a stream whose conversation is no longer displayed."""
        if not self.abandoned:
            logger.info(
                "Abandoning assistant reply for conversation %s (no longer displayed)",
                self.conversation_id,
            )
        self.abandoned = True
        if self.temp_id is not None:
            self.transcript.discard_pending(self.temp_id)

    async def finish(self) -> MessageRead | None:
        """
        Persist the completed reply once.

        Returns the persisted message, or None when there was nothing to
        save, the stream was abandoned, or saving failed.
        """
        if self._finished:
            return self._result
        self._finished = True

        if self.abandoned:
            return None
        if not self.text:
            if self.temp_id is not None:
                self.transcript.discard_pending(self.temp_id)
            return None

        try:
            message = await self.store.create_message(
                self.conversation_id, ChatRole.ASSISTANT.value, self.text
            )
        except Exception as e:
            logger.exception("Failed to persist assistant reply for %s", self.conversation_id)
            failure = PersistenceFailure(str(e))
            self.error = failure
            self.notifier.notify("خطا در ذخیره پاسخ", failure.user_message, level="warning")
            # The user already read the reply; keep it on screen as a local row
            if self.temp_id is not None:
                self.transcript.commit_pending(
                    self.temp_id,
                    MessageRead(
                        id=self.temp_id,
                        conversation_id=self.conversation_id,
                        role=ChatRole.ASSISTANT.value,
                        content=self.text,
                        created_at=datetime.now(timezone.utc),
                    ),
                )
            return None

        if self.temp_id is not None:
            self.transcript.commit_pending(self.temp_id, message)
        self._result = message
        return message

    def fail(self, error: Exception) -> None:
        """Drop the pending reply and tell the user what went wrong."""
        self._finished = True
        self.error = error
        if self.temp_id is not None:
            self.transcript.discard_pending(self.temp_id)
        if self.abandoned:
            return
        message = error.user_message if isinstance(error, ChatRelayError) else GENERIC_AI_ERROR
        self.notifier.notify("خطا در دریافت پاسخ", message, level="error")

    async def consume(self, deltas: AsyncIterable[str]) -> MessageRead | None:
        """Apply a whole delta stream, then finish; failures are reported, not raised."""
        try:
            async for delta in deltas:
                if not self.apply_delta(delta):
                    break
        except Exception as e:
            logger.warning("Assistant stream for %s failed: %s", self.conversation_id, e)
            self.fail(e)
            return None
        return await self.finish()
