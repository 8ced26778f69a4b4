"""
Consuming side of the relay: one user's chat screen, headless.

``ChatSession`` persists user turns, calls the relay endpoint through
``RelayClient``, decodes the stream and lets a ``TranscriptReconciler``
keep the transcript in sync. Collaborators (store, change feed, notifier)
are injected; there is no module-level state.
"""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from uuid import UUID

import httpx

from studychat.db.models import ChatRole
from studychat.errors import ChatRelayError, GatewayError, classify_status
from studychat.schemas.conversations import ConversationRead, MessageRead
from studychat.services.change_feed import ChangeEvent, ChangeFeed, Unsubscribe
from studychat.services.conversation_store import ConversationStore
from studychat.services.stream_decoder import DEFAULT_MAX_BUFFER_CHARS, StreamDecoder, iter_deltas
from studychat.services.transcript import Notifier, Transcript, TranscriptReconciler

logger = logging.getLogger(__name__)

TITLE_LENGTH = 50


class RelayClient:
    """HTTP client of the ``POST /chat`` relay endpoint."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        endpoint: str = "/chat",
        access_token: str | None = None,
    ):
        self.http = http
        self.endpoint = endpoint
        self.access_token = access_token

    @staticmethod
    def build_payload(messages: Sequence[MessageRead], user_id: UUID | None) -> dict:
        payload: dict = {
            "messages": [
                {
                    "role": m.role,
                    "content": m.content,
                    "image_url": m.image_url,
                    "file_url": m.file_url,
                }
                for m in messages
            ]
        }
        if user_id is not None:
            payload["userId"] = str(user_id)
        return payload

    @staticmethod
    def error_from_response(status_code: int, body: str) -> ChatRelayError:
        """Classify a failed relay answer, keeping the relay's localized message."""
        error = classify_status(status_code, body)
        try:
            message = json.loads(body).get("error")
        except (ValueError, AttributeError):
            message = None
        if isinstance(message, str) and message:
            error.user_message = message
        return error

    @asynccontextmanager
    async def stream(
        self, messages: Sequence[MessageRead], user_id: UUID | None = None
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Open a relay call and yield its raw byte iterator.

        Raises:
            RateLimited, QuotaExhausted, GatewayError: relay refused the call
        """
        headers = {"Accept": "text/event-stream"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        try:
            async with self.http.stream(
                "POST",
                self.endpoint,
                json=self.build_payload(messages, user_id),
                headers=headers,
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise self.error_from_response(response.status_code, body)
                yield response.aiter_bytes()
        except httpx.HTTPError as e:
            raise GatewayError(f"relay request failed: {e}") from e


class ChatSession:
    """One user's view of their conversations."""

    def __init__(
        self,
        store: ConversationStore,
        relay: RelayClient,
        notifier: Notifier,
        user_id: UUID,
        *,
        change_feed: ChangeFeed | None = None,
        max_buffer_chars: int = DEFAULT_MAX_BUFFER_CHARS,
    ):
        self.store = store
        self.relay = relay
        self.notifier = notifier
        self.user_id = user_id
        self.change_feed = change_feed
        self.max_buffer_chars = max_buffer_chars
        self.transcript = Transcript()
        self._unsubscribe: Unsubscribe | None = None
        self._reconciler: TranscriptReconciler | None = None

    @property
    def conversation_id(self) -> UUID | None:
        return self.transcript.conversation_id

    @property
    def is_streaming(self) -> bool:
        return self._reconciler is not None

    # -------------------------------------------------------------------------
    # Conversation selection and realtime refresh
    # -------------------------------------------------------------------------

    async def select_conversation(self, conversation_id: UUID) -> None:
        """Show a conversation and follow its changes."""
        self._stop_following()
        self.transcript.reset(conversation_id)
        await self.reload()
        if self.change_feed is not None:
            self._unsubscribe = self.change_feed.subscribe(conversation_id, self._on_change)

    async def _on_change(self, event: ChangeEvent) -> None:
        if event.conversation_id == self.conversation_id:
            await self.reload()

    def _stop_following(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def reload(self) -> None:
        """Re-fetch the displayed conversation's messages."""
        conversation_id = self.conversation_id
        if conversation_id is None:
            return
        try:
            messages = await self.store.list_messages(conversation_id)
        except Exception as e:
            logger.exception("Failed to load messages for %s", conversation_id)
            self.notifier.notify("خطا در بارگذاری پیام‌ها", str(e), level="error")
            return
        # The user may have switched away while we were waiting
        if self.conversation_id == conversation_id:
            self.transcript.load(messages)

    async def new_conversation(self) -> ConversationRead | None:
        """Start a new conversation, bumping the previous one's updated_at."""
        try:
            if self.conversation_id is not None:
                await self.store.touch_conversation(self.conversation_id)
            conversation = await self.store.create_conversation(self.user_id)
        except Exception as e:
            logger.exception("Failed to create conversation for %s", self.user_id)
            self.notifier.notify("خطا در ایجاد گفتگو", str(e), level="error")
            return None

        await self.select_conversation(conversation.id)
        self.notifier.notify("گفتگوی جدید", "گفتگوی جدید ایجاد شد")
        return conversation

    # -------------------------------------------------------------------------
    # Turns
    # -------------------------------------------------------------------------

    def _reject_if_streaming(self) -> bool:
        if self.is_streaming:
            self.notifier.notify(
                "لطفاً صبر کنید", "پاسخ قبلی هنوز در حال دریافت است", level="warning"
            )
            return True
        return False

    async def send_message(
        self,
        content: str,
        image_url: str | None = None,
        file_url: str | None = None,
    ) -> MessageRead | None:
        """
        Send a user message and stream the assistant reply.

        Returns the persisted assistant message, or None if nothing was saved.
        """
        if self._reject_if_streaming():
            return None
        if not content.strip() and not image_url and not file_url:
            return None

        if self.conversation_id is None:
            if await self.new_conversation() is None:
                return None
        conversation_id = self.conversation_id
        needs_title = not self.transcript.messages and bool(content.strip())

        try:
            user_message = await self.store.create_message(
                conversation_id,
                ChatRole.USER.value,
                content,
                image_url=image_url,
                file_url=file_url,
            )
            if needs_title:
                await self.store.update_conversation_title(conversation_id, content[:TITLE_LENGTH])
        except Exception as e:
            logger.exception("Failed to save user message in %s", conversation_id)
            self.notifier.notify("خطا در ارسال پیام", str(e), level="error")
            return None

        self.transcript.append(user_message)
        return await self._relay(conversation_id, list(self.transcript.messages))

    async def edit_message(self, message_id: UUID, content: str) -> MessageRead | None:
        """
        Edit a message; editing a user message regenerates the reply.

        The assistant message that followed the edited one is deleted before
        the new relay call starts and is not restored if that call fails.
        """
        if self._reject_if_streaming():
            return None
        conversation_id = self.conversation_id
        if conversation_id is None:
            return None

        try:
            history = await self.store.list_messages(conversation_id)
            index = next((i for i, m in enumerate(history) if m.id == message_id), None)
            if index is None:
                return None
            edited = await self.store.update_message(message_id, content)
            if edited is None:
                return None

            if edited.role != ChatRole.USER.value:
                self.notifier.notify("ویرایش شد", "پیام با موفقیت ویرایش شد")
                await self.reload()
                return None

            following = history[index + 1] if index + 1 < len(history) else None
            if following is not None and following.role == ChatRole.ASSISTANT.value:
                await self.store.delete_message(following.id)
        except Exception as e:
            logger.exception("Failed to edit message %s", message_id)
            self.notifier.notify("خطا در ویرایش", str(e), level="error")
            return None

        self.notifier.notify("ویرایش شد", "پیام با موفقیت ویرایش شد")
        await self.reload()
        return await self._relay(conversation_id, [*history[:index], edited])

    async def delete_message(self, message_id: UUID) -> bool:
        try:
            await self.store.delete_message(message_id)
        except Exception as e:
            logger.exception("Failed to delete message %s", message_id)
            self.notifier.notify("خطا در حذف", str(e), level="error")
            return False
        self.notifier.notify("حذف شد", "پیام با موفقیت حذف شد")
        await self.reload()
        return True

    async def _relay(
        self, conversation_id: UUID, history: list[MessageRead]
    ) -> MessageRead | None:
        reconciler = TranscriptReconciler(
            self.store, self.transcript, conversation_id, self.notifier
        )
        self._reconciler = reconciler
        try:
            async with self.relay.stream(history, self.user_id) as byte_stream:
                decoder = StreamDecoder(self.max_buffer_chars)
                return await reconciler.consume(iter_deltas(byte_stream, decoder))
        except ChatRelayError as e:
            logger.warning("Relay call for %s failed: %s", conversation_id, e)
            reconciler.fail(e)
            return None
        finally:
            self._reconciler = None

    async def close(self) -> None:
        self._stop_following()
