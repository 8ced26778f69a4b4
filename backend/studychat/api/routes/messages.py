"""API routes for editing and deleting single messages."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from studychat.api.deps import ConversationStoreDep, CurrentUserId
from studychat.schemas.conversations import MessageRead, MessageUpdateRequest
from studychat.services.conversation_store import ConversationStore

router = APIRouter(prefix="/messages", tags=["messages"])


async def get_user_message_or_404(
    store: ConversationStore, message_id: UUID, user_id: UUID
) -> MessageRead:
    """Fetch a message whose conversation belongs to the user."""
    message = await store.get_message(message_id)
    if message is None or await store.get_conversation(message.conversation_id, user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message


@router.patch("/{message_id}", response_model=MessageRead)
async def update_message(
    message_id: UUID,
    request: MessageUpdateRequest,
    store: ConversationStoreDep,
    user_id: CurrentUserId,
):
    """Replace a message's text. Last write wins."""
    await get_user_message_or_404(store, message_id, user_id)
    message = await store.update_message(message_id, request.content)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: UUID,
    store: ConversationStoreDep,
    user_id: CurrentUserId,
):
    await get_user_message_or_404(store, message_id, user_id)
    await store.delete_message(message_id)
    return None
