"""Pytest configuration and fixtures."""

import os

# Settings are read once at import, so the test environment must be set first
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["AI_GATEWAY_API_KEY"] = "test-gateway-key"
os.environ["AI_GATEWAY_URL"] = "https://gateway.test/v1/chat/completions"
os.environ["ENVIRONMENT"] = "development"

import gzip
import json
from collections.abc import AsyncGenerator, AsyncIterator, Iterable, Iterator
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt

from studychat.api import deps
from studychat.db.models import DEFAULT_CONVERSATION_TITLE, AppRole
from studychat.errors import DailyLimitReached
from studychat.main import app
from studychat.schemas.conversations import ConversationRead, MessageRead
from studychat.services.change_feed import ChangeEvent, InMemoryChangeFeed
from studychat.services.context_builder import ContextBuilder
from studychat.services.conversation_store import MaterialRecord, ProfileRecord
from studychat.services.gateway_relay import GatewayConfig, GatewayRelay
from studychat.services.usage_limits import UsageStatus

GATEWAY_URL = os.environ["AI_GATEWAY_URL"]
FIXED_NOW = datetime(2026, 10, 19, 14, 30, tzinfo=timezone.utc)


# =============================================================================
# SSE HELPERS
# =============================================================================


def sse_event(content: str) -> bytes:
    """One gateway event carrying a text delta."""
    payload = json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False)
    return f"data: {payload}\n\n".encode()


def sse_done() -> bytes:
    return b"data: [DONE]\n\n"


def split_bytes(data: bytes, size: int) -> list[bytes]:
    """Cut a byte string into fixed-size chunks, ignoring character boundaries."""
    return [data[i : i + size] for i in range(0, len(data), size)]


async def iter_chunks(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in exactly the given chunks."""

    def __init__(self, chunks: Iterable[bytes]):
        self.chunks = list(chunks)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk


def parse_sse(body: str) -> list[tuple[str, str]]:
    """Parse an SSE response body into (event, data) pairs, skipping comments."""
    events = []
    for block in body.replace("\r\n", "\n").split("\n\n"):
        event, data = "message", []
        has_data = False
        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field == "event":
                event = value
            elif field == "data":
                data.append(value)
                has_data = True
        if has_data:
            events.append((event, "\n".join(data)))
    return events


# =============================================================================
# IN-MEMORY COLLABORATORS
# =============================================================================


class InMemoryConversationStore:
    """ConversationStore keeping everything in dicts, with call bookkeeping."""

    def __init__(self, feed: InMemoryChangeFeed | None = None):
        self.feed = feed
        self.conversations: dict[UUID, ConversationRead] = {}
        self.messages: dict[UUID, MessageRead] = {}
        self.created: list[MessageRead] = []
        self.deleted: list[UUID] = []
        self.touched: list[UUID] = []
        self.fail_create_roles: set[str] = set()
        self.fail_list = False
        self._clock = FIXED_NOW

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def _publish(self, conversation_id: UUID, kind: str, message_id: UUID | None) -> None:
        if self.feed is not None:
            await self.feed.publish(ChangeEvent(conversation_id, kind, message_id))

    async def list_conversations(self, user_id, skip=0, limit=50):
        owned = sorted(
            (c for c in self.conversations.values() if c.user_id == user_id),
            key=lambda c: c.updated_at,
            reverse=True,
        )
        return owned[skip : skip + limit], len(owned)

    async def get_conversation(self, conversation_id, user_id=None):
        conversation = self.conversations.get(conversation_id)
        if conversation is None or (user_id is not None and conversation.user_id != user_id):
            return None
        return conversation

    async def create_conversation(self, user_id, title=None):
        now = self._tick()
        conversation = ConversationRead(
            id=uuid4(),
            user_id=user_id,
            title=title or DEFAULT_CONVERSATION_TITLE,
            created_at=now,
            updated_at=now,
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def touch_conversation(self, conversation_id):
        self.touched.append(conversation_id)
        conversation = self.conversations[conversation_id]
        self.conversations[conversation_id] = conversation.model_copy(
            update={"updated_at": self._tick()}
        )

    async def update_conversation_title(self, conversation_id, title):
        conversation = self.conversations[conversation_id]
        self.conversations[conversation_id] = conversation.model_copy(
            update={"title": title, "updated_at": self._tick()}
        )

    async def delete_conversation(self, conversation_id):
        self.conversations.pop(conversation_id, None)
        for message_id in [m.id for m in self.messages.values() if m.conversation_id == conversation_id]:
            del self.messages[message_id]

    async def list_messages(self, conversation_id):
        if self.fail_list:
            raise RuntimeError("store unavailable")
        return sorted(
            (m for m in self.messages.values() if m.conversation_id == conversation_id),
            key=lambda m: m.created_at,
        )

    async def get_message(self, message_id):
        return self.messages.get(message_id)

    async def create_message(self, conversation_id, role, content, *, image_url=None, file_url=None):
        if role in self.fail_create_roles:
            raise RuntimeError("insert failed")
        message = MessageRead(
            id=uuid4(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            image_url=image_url,
            file_url=file_url,
            created_at=self._tick(),
        )
        self.messages[message.id] = message
        self.created.append(message)
        await self._publish(conversation_id, "insert", message.id)
        return message

    async def update_message(self, message_id, content):
        message = self.messages.get(message_id)
        if message is None:
            return None
        updated = message.model_copy(update={"content": content})
        self.messages[message_id] = updated
        await self._publish(updated.conversation_id, "update", message_id)
        return updated

    async def delete_message(self, message_id):
        message = self.messages.pop(message_id, None)
        self.deleted.append(message_id)
        if message is not None:
            await self._publish(message.conversation_id, "delete", message_id)

    def add_message(self, conversation_id, role, content, **attachments) -> MessageRead:
        """Seed a message: no failure switches, no bookkeeping, no events."""
        message = MessageRead(
            id=uuid4(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=self._tick(),
            **attachments,
        )
        self.messages[message.id] = message
        return message

    def add_conversation(self, user_id, title=DEFAULT_CONVERSATION_TITLE) -> ConversationRead:
        now = self._tick()
        conversation = ConversationRead(
            id=uuid4(), user_id=user_id, title=title, created_at=now, updated_at=now
        )
        self.conversations[conversation.id] = conversation
        return conversation


class FakeProfiles:
    def __init__(self, profiles: dict[UUID, ProfileRecord] | None = None, roles: dict[UUID, str] | None = None):
        self.profiles = profiles or {}
        self.roles = roles or {}

    async def get_profile(self, user_id):
        return self.profiles.get(user_id)

    async def get_role(self, user_id):
        return self.roles.get(user_id)


class FakeCatalog:
    def __init__(self, materials: list[MaterialRecord] | None = None, base_url: str = "https://files.test/educational-files"):
        self.materials = materials or []
        self.base_url = base_url
        self.requested_limits: list[int] = []

    async def list_materials(self, limit):
        self.requested_limits.append(limit)
        return self.materials[:limit]

    def resolve_public_url(self, file_path):
        return f"{self.base_url}/{file_path}"


class FakeUsageLimiter:
    """Counts messages without a database."""

    def __init__(self, daily_limit: int = 10, admins: set[UUID] | None = None):
        self.daily_limit = daily_limit
        self.admins = admins or set()
        self.used: dict[UUID, int] = {}

    async def status(self, user_id):
        if user_id in self.admins:
            return UsageStatus(remaining=self.daily_limit, limit=self.daily_limit, is_admin=True)
        return UsageStatus(
            remaining=max(0, self.daily_limit - self.used.get(user_id, 0)),
            limit=self.daily_limit,
            is_admin=False,
        )

    async def ensure_allowance(self, user_id):
        usage = await self.status(user_id)
        if not usage.is_admin and usage.remaining == 0:
            raise DailyLimitReached()
        return usage

    async def consume(self, user_id):
        if user_id not in self.admins:
            if self.used.get(user_id, 0) >= self.daily_limit:
                raise DailyLimitReached()
            self.used[user_id] = self.used.get(user_id, 0) + 1
        return await self.status(user_id)


class RecordingNotifier:
    def __init__(self):
        self.notifications: list[tuple[str, str, str]] = []

    def notify(self, title, description, *, level="info"):
        self.notifications.append((title, description, level))

    @property
    def levels(self) -> list[str]:
        return [level for _, _, level in self.notifications]


class GatewayStub:
    """MockTransport handler answering the gateway URL with canned responses."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.chunks: list[bytes] = [sse_event("Hello"), sse_done()]
        self.error_body = b""
        self.content_encoding: str | None = None

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, content=self.error_body)
        if self.content_encoding == "gzip":
            return httpx.Response(
                200,
                headers={"Content-Type": "text/event-stream", "Content-Encoding": "gzip"},
                content=gzip.compress(b"".join(self.chunks)),
            )
        return httpx.Response(
            200,
            headers={"Content-Type": "text/event-stream"},
            stream=ChunkedStream(self.chunks),
        )


def make_gateway_config(**overrides) -> GatewayConfig:
    values = dict(
        url=GATEWAY_URL,
        api_key="test-gateway-key",
        text_model="google/gemini-2.5-flash",
        vision_model="google/gemini-2.5-pro",
        text_temperature=0.7,
        vision_temperature=0.2,
        max_tokens=2000,
    )
    values.update(overrides)
    return GatewayConfig(**values)


def make_token(user_id: UUID, *, secret: str = "test-secret", audience: str = "authenticated") -> str:
    return jwt.encode({"sub": str(user_id), "aud": audience}, secret, algorithm="HS256")


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a process-wide exit event bound to the first loop."""
    try:
        from sse_starlette.sse import AppStatus
    except ImportError:
        yield
        return
    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None
    yield
    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def auth_headers(user_id) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def change_feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture
def store(change_feed) -> InMemoryConversationStore:
    return InMemoryConversationStore(change_feed)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def profiles(user_id) -> FakeProfiles:
    return FakeProfiles({user_id: ProfileRecord(full_name="سارا احمدی")}, {user_id: AppRole.USER.value})


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog(
        [MaterialRecord(title="آمار مقدماتی", description=None, category="book", file_path="stats.pdf")]
    )


@pytest.fixture
def limiter() -> FakeUsageLimiter:
    return FakeUsageLimiter()


@pytest.fixture
def gateway() -> GatewayStub:
    return GatewayStub()


@pytest.fixture
async def gateway_relay(gateway) -> AsyncGenerator[GatewayRelay, None]:
    relay = GatewayRelay(
        make_gateway_config(),
        client=httpx.AsyncClient(transport=httpx.MockTransport(gateway)),
    )
    yield relay
    await relay.aclose()


@pytest.fixture
def context_builder(profiles, catalog) -> ContextBuilder:
    return ContextBuilder(profiles, catalog, timezone="Asia/Tehran", persona="دستیار آزمایشی")


@pytest.fixture
def override_dependencies(
    store, change_feed, context_builder, limiter, gateway_relay
) -> Iterator[None]:
    """Route the app's collaborators to the in-memory fakes."""
    app.dependency_overrides[deps.get_conversation_store] = lambda: store
    app.dependency_overrides[deps.get_change_feed] = lambda: change_feed
    app.dependency_overrides[deps.get_context_builder] = lambda: context_builder
    app.dependency_overrides[deps.get_usage_limiter] = lambda: limiter
    app.dependency_overrides[deps.get_gateway_relay] = lambda: gateway_relay
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def client(override_dependencies) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
