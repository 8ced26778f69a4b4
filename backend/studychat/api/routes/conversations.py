"""API routes for conversations, server-managed streaming turns and change events."""

import asyncio
import json
import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from sse_starlette.sse import EventSourceResponse

from studychat.api.deps import (
    ChangeFeedDep,
    ContextBuilderDep,
    ConversationStoreDep,
    CurrentUserId,
    GatewayRelayDep,
    UsageLimiterDep,
)
from studychat.config import get_settings, sanitize_error
from studychat.db.models import ChatRole
from studychat.errors import GENERIC_AI_ERROR, ChatRelayError
from studychat.schemas.chat import ChatMessageRequest
from studychat.schemas.conversations import (
    ConversationCreateRequest,
    ConversationListResponse,
    ConversationRead,
    ConversationUpdateRequest,
    ConversationWithMessages,
)
from studychat.services.change_feed import ChangeEvent
from studychat.services.chat_session import TITLE_LENGTH
from studychat.services.conversation_store import ConversationStore
from studychat.services.message_transformer import to_gateway_messages
from studychat.services.stream_decoder import StreamDecoder, iter_deltas
from studychat.services.transcript import LoggingNotifier, Transcript, TranscriptReconciler

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/conversations", tags=["conversations"])


async def get_conversation_or_404(
    store: ConversationStore, conversation_id: UUID, user_id: UUID
) -> ConversationRead:
    """Fetch a conversation owned by the user; 404 for both missing and foreign."""
    conversation = await store.get_conversation(conversation_id, user_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


# =============================================================================
# CONVERSATION MANAGEMENT
# =============================================================================


@router.post("", response_model=ConversationRead, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    request: ConversationCreateRequest,
    store: ConversationStoreDep,
    user_id: CurrentUserId,
):
    """Create a new, empty conversation."""
    return await store.create_conversation(user_id, request.title)


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    store: ConversationStoreDep,
    user_id: CurrentUserId,
    skip: int = 0,
    limit: int = 50,
):
    """List user's conversations, most recently updated first."""
    conversations, total = await store.list_conversations(user_id, skip=skip, limit=limit)
    return ConversationListResponse(conversations=conversations, total=total)


@router.get("/{conversation_id}", response_model=ConversationWithMessages)
async def get_conversation(
    conversation_id: UUID,
    store: ConversationStoreDep,
    user_id: CurrentUserId,
):
    """Get conversation with full message history, oldest first."""
    conversation = await get_conversation_or_404(store, conversation_id, user_id)
    messages = await store.list_messages(conversation_id)
    return ConversationWithMessages(**conversation.model_dump(), messages=messages)


@router.patch("/{conversation_id}", response_model=ConversationRead)
async def rename_conversation(
    conversation_id: UUID,
    request: ConversationUpdateRequest,
    store: ConversationStoreDep,
    user_id: CurrentUserId,
):
    """Rename a conversation."""
    await get_conversation_or_404(store, conversation_id, user_id)
    await store.update_conversation_title(conversation_id, request.title)
    return await get_conversation_or_404(store, conversation_id, user_id)


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: UUID,
    store: ConversationStoreDep,
    user_id: CurrentUserId,
):
    """Delete conversation and all its messages."""
    await get_conversation_or_404(store, conversation_id, user_id)
    await store.delete_conversation(conversation_id)
    return None


# =============================================================================
# SERVER-MANAGED STREAMING TURN
# =============================================================================


@router.post("/{conversation_id}/messages/stream")
async def stream_chat_message(
    conversation_id: UUID,
    request: ChatMessageRequest,
    store: ConversationStoreDep,
    context_builder: ContextBuilderDep,
    relay: GatewayRelayDep,
    limiter: UsageLimiterDep,
    user_id: CurrentUserId,
):
    """
    Send a chat message and stream the response using Server-Sent Events (SSE).

    The server persists both turns, so clients only render. Events:
    - 'message': Text deltas from the assistant
    - 'done': Streaming complete, data is the persisted message id (empty if nothing was saved)
    - 'error': Stream broke mid-way, data is a user-facing message

    Gateway refusals before the stream starts are answered like ``POST /chat``.
    """
    await get_conversation_or_404(store, conversation_id, user_id)
    await limiter.ensure_allowance(user_id)

    history = await store.list_messages(conversation_id)
    user_message = await store.create_message(
        conversation_id,
        ChatRole.USER.value,
        request.message,
        image_url=request.image_url,
        file_url=request.file_url,
    )
    if not history:
        await store.update_conversation_title(conversation_id, request.message[:TITLE_LENGTH])

    system_prompt = await context_builder.build(user_id)
    upstream = await relay.open_stream(system_prompt, to_gateway_messages(history, user_message))
    try:
        await limiter.consume(user_id)
    except Exception:
        await upstream.aclose()
        raise

    transcript = Transcript(conversation_id)
    transcript.load([*history, user_message])
    reconciler = TranscriptReconciler(store, transcript, conversation_id, LoggingNotifier())

    async def event_generator():
        """Generate SSE events for streaming response."""
        try:
            decoder = StreamDecoder(settings.stream_buffer_max_chars)
            async for delta in iter_deltas(upstream.aiter_bytes(), decoder):
                reconciler.apply_delta(delta)
                yield {"event": "message", "data": delta}

            message = await reconciler.finish()
            yield {"event": "done", "data": str(message.id) if message else ""}

        except Exception as e:
            logger.exception("Error during chat streaming")
            reconciler.fail(e)
            if isinstance(e, ChatRelayError):
                safe_msg = e.user_message
            else:
                safe_msg = sanitize_error(e, generic_message=GENERIC_AI_ERROR)
            yield {"event": "error", "data": safe_msg}
        finally:
            await upstream.aclose()

    return EventSourceResponse(event_generator())


# =============================================================================
# REALTIME CHANGES
# =============================================================================


@router.get("/{conversation_id}/events")
async def conversation_events(
    conversation_id: UUID,
    store: ConversationStoreDep,
    feed: ChangeFeedDep,
    user_id: CurrentUserId,
):
    """
    Stream change notifications for a conversation's messages.

    Each 'change' event tells the client to re-fetch the message list.
    """
    await get_conversation_or_404(store, conversation_id, user_id)

    queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
    unsubscribe = feed.subscribe(conversation_id, queue.put_nowait)

    async def event_generator():
        try:
            while True:
                event = await queue.get()
                yield {
                    "event": "change",
                    "data": json.dumps(
                        {
                            "kind": event.kind,
                            "message_id": str(event.message_id) if event.message_id else None,
                        }
                    ),
                }
        finally:
            unsubscribe()

    return EventSourceResponse(event_generator())
