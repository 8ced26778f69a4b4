"""
Store adapters for conversations, messages, materials and profiles.

The protocols are the contracts the chat core consumes; the ``Sql*``
classes implement them on the relational store. Every write is a
best-effort single commit, conflicting edits resolve last-write-wins.
"""

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studychat.db.models import (
    DEFAULT_CONVERSATION_TITLE,
    AppRole,
    Conversation,
    EducationalMaterial,
    Message,
    Profile,
    UserRole,
)
from studychat.schemas.conversations import ConversationRead, MessageRead
from studychat.services.change_feed import ChangeEvent, InMemoryChangeFeed
from studychat.services.storage import StorageService

logger = logging.getLogger(__name__)


# =============================================================================
# CONTRACTS
# =============================================================================


class ConversationStore(Protocol):
    """Reads and writes conversations and their messages."""

    async def list_conversations(
        self, user_id: UUID, skip: int = 0, limit: int = 50
    ) -> tuple[list[ConversationRead], int]: ...

    async def get_conversation(
        self, conversation_id: UUID, user_id: UUID | None = None
    ) -> ConversationRead | None: ...

    async def create_conversation(
        self, user_id: UUID, title: str | None = None
    ) -> ConversationRead: ...

    async def touch_conversation(self, conversation_id: UUID) -> None: ...

    async def update_conversation_title(self, conversation_id: UUID, title: str) -> None: ...

    async def delete_conversation(self, conversation_id: UUID) -> None: ...

    async def list_messages(self, conversation_id: UUID) -> list[MessageRead]: ...

    async def get_message(self, message_id: UUID) -> MessageRead | None: ...

    async def create_message(
        self,
        conversation_id: UUID,
        role: str,
        content: str,
        *,
        image_url: str | None = None,
        file_url: str | None = None,
    ) -> MessageRead: ...

    async def update_message(self, message_id: UUID, content: str) -> MessageRead | None: ...

    async def delete_message(self, message_id: UUID) -> None: ...


@dataclass(frozen=True)
class MaterialRecord:
    """Stored material as seen by the context builder."""

    title: str
    description: str | None
    category: str
    file_path: str


class MaterialsCatalog(Protocol):
    async def list_materials(self, limit: int) -> list[MaterialRecord]: ...

    def resolve_public_url(self, file_path: str) -> str: ...


@dataclass(frozen=True)
class ProfileRecord:
    full_name: str | None


class ProfileDirectory(Protocol):
    async def get_profile(self, user_id: UUID) -> ProfileRecord | None: ...

    async def get_role(self, user_id: UUID) -> str | None: ...


# =============================================================================
# SQL IMPLEMENTATIONS
# =============================================================================


class SqlConversationStore:
    """ConversationStore on the relational database."""

    def __init__(self, db: AsyncSession, feed: InMemoryChangeFeed | None = None):
        self.db = db
        self.feed = feed

    async def _publish(self, conversation_id: UUID, kind: str, message_id: UUID | None) -> None:
        if self.feed is not None:
            await self.feed.publish(ChangeEvent(conversation_id, kind, message_id))

    async def list_conversations(
        self, user_id: UUID, skip: int = 0, limit: int = 50
    ) -> tuple[list[ConversationRead], int]:
        count_stmt = select(func.count()).select_from(Conversation).where(
            Conversation.user_id == user_id
        )
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(Conversation)
            .where(Conversation.user_id == user_id)
            .order_by(Conversation.updated_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [ConversationRead.model_validate(c) for c in result.scalars()], total

    async def get_conversation(
        self, conversation_id: UUID, user_id: UUID | None = None
    ) -> ConversationRead | None:
        stmt = select(Conversation).where(Conversation.id == conversation_id)
        if user_id is not None:
            stmt = stmt.where(Conversation.user_id == user_id)
        conversation = (await self.db.execute(stmt)).scalar_one_or_none()
        return ConversationRead.model_validate(conversation) if conversation else None

    async def create_conversation(
        self, user_id: UUID, title: str | None = None
    ) -> ConversationRead:
        conversation = Conversation(user_id=user_id, title=title or DEFAULT_CONVERSATION_TITLE)
        self.db.add(conversation)
        await self.db.commit()
        await self.db.refresh(conversation)
        return ConversationRead.model_validate(conversation)

    async def touch_conversation(self, conversation_id: UUID) -> None:
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(updated_at=func.now())
        )
        await self.db.commit()

    async def update_conversation_title(self, conversation_id: UUID, title: str) -> None:
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(title=title, updated_at=func.now())
        )
        await self.db.commit()

    async def delete_conversation(self, conversation_id: UUID) -> None:
        await self.db.execute(delete(Conversation).where(Conversation.id == conversation_id))
        await self.db.commit()

    async def list_messages(self, conversation_id: UUID) -> list[MessageRead]:
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.seq.asc())
        )
        result = await self.db.execute(stmt)
        return [MessageRead.model_validate(m) for m in result.scalars()]

    async def get_message(self, message_id: UUID) -> MessageRead | None:
        message = await self.db.get(Message, message_id)
        return MessageRead.model_validate(message) if message else None

    async def create_message(
        self,
        conversation_id: UUID,
        role: str,
        content: str,
        *,
        image_url: str | None = None,
        file_url: str | None = None,
    ) -> MessageRead:
        message = Message(
            conversation_id=conversation_id,
            role=role,
            content=content,
            image_url=image_url,
            file_url=file_url,
        )
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message)
        await self._publish(conversation_id, "insert", message.id)
        return MessageRead.model_validate(message)

    async def update_message(self, message_id: UUID, content: str) -> MessageRead | None:
        message = await self.db.get(Message, message_id)
        if message is None:
            return None
        message.content = content
        await self.db.commit()
        await self.db.refresh(message)
        await self._publish(message.conversation_id, "update", message.id)
        return MessageRead.model_validate(message)

    async def delete_message(self, message_id: UUID) -> None:
        message = await self.db.get(Message, message_id)
        if message is None:
            logger.debug("Message %s already gone, nothing to delete", message_id)
            return
        conversation_id = message.conversation_id
        await self.db.delete(message)
        await self.db.commit()
        await self._publish(conversation_id, "delete", message_id)


class SqlMaterialsCatalog:
    """MaterialsCatalog over the materials table and its public bucket."""

    def __init__(self, db: AsyncSession, storage: StorageService, bucket: str):
        self.db = db
        self.storage = storage
        self.bucket = bucket

    async def list_materials(self, limit: int) -> list[MaterialRecord]:
        stmt = (
            select(EducationalMaterial)
            .order_by(EducationalMaterial.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [
            MaterialRecord(
                title=m.title,
                description=m.description,
                category=m.category,
                file_path=m.file_path,
            )
            for m in result.scalars()
        ]

    def resolve_public_url(self, file_path: str) -> str:
        return self.storage.public_url(self.bucket, file_path)


class SqlProfileDirectory:
    """ProfileDirectory over the profiles and user_roles tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_profile(self, user_id: UUID) -> ProfileRecord | None:
        profile = await self.db.get(Profile, user_id)
        return ProfileRecord(full_name=profile.full_name) if profile else None

    async def get_role(self, user_id: UUID) -> str | None:
        result = await self.db.execute(select(UserRole.role).where(UserRole.user_id == user_id))
        roles = set(result.scalars())
        if AppRole.ADMIN.value in roles:
            return AppRole.ADMIN.value
        return next(iter(roles), None)
