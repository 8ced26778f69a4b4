"""Tests for the client-side chat session and relay client."""

import asyncio
import json

import httpx
import pytest
from httpx import ASGITransport

from studychat.errors import GatewayError, RateLimited
from studychat.main import app
from studychat.services.chat_session import ChatSession, RelayClient

from conftest import ChunkedStream, make_token, sse_done, sse_event


class RelayStub:
    """MockTransport handler standing in for the ``POST /chat`` endpoint."""

    def __init__(self):
        self.payloads: list[dict] = []
        self.status_code = 200
        self.error: str | None = None
        self.chunks = [sse_event("Hel"), sse_event("lo"), sse_done()]
        self.stream_factory = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        if self.status_code != 200:
            body = json.dumps({"error": self.error}).encode() if self.error else b""
            return httpx.Response(self.status_code, content=body)
        stream = self.stream_factory() if self.stream_factory else ChunkedStream(self.chunks)
        return httpx.Response(200, headers={"Content-Type": "text/event-stream"}, stream=stream)


class GatedStream(httpx.AsyncByteStream):
    """Sends one event, then waits for the test to open the gate."""

    def __init__(self, gate: asyncio.Event):
        self.gate = gate

    async def __aiter__(self):
        yield sse_event("first ")
        await self.gate.wait()
        yield sse_event("second")
        yield sse_done()


@pytest.fixture
def relay_stub() -> RelayStub:
    return RelayStub()


@pytest.fixture
async def relay_client(relay_stub):
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(relay_stub), base_url="http://relay.test"
    ) as http:
        yield RelayClient(http)


@pytest.fixture
async def session(store, relay_client, notifier, user_id, change_feed):
    chat = ChatSession(store, relay_client, notifier, user_id, change_feed=change_feed)
    yield chat
    await chat.close()


# =============================================================================
# RELAY CLIENT
# =============================================================================


async def test_relay_client_payload(relay_client, relay_stub, store, user_id):
    conversation = store.add_conversation(user_id)
    message = store.add_message(conversation.id, "user", "عکس", image_url="https://x/a.png")

    async with relay_client.stream([message], user_id) as byte_stream:
        body = b"".join([chunk async for chunk in byte_stream])

    assert body.endswith(b"data: [DONE]\n\n")
    assert relay_stub.payloads == [
        {
            "messages": [
                {"role": "user", "content": "عکس", "image_url": "https://x/a.png", "file_url": None}
            ],
            "userId": str(user_id),
        }
    ]


async def test_relay_client_maps_429_without_reading_stream(relay_client, relay_stub):
    relay_stub.status_code = 429
    relay_stub.error = "لطفاً صبر کنید"

    with pytest.raises(RateLimited) as exc_info:
        async with relay_client.stream([]) as byte_stream:
            pytest.fail(f"stream should not open: {byte_stream}")

    assert exc_info.value.user_message == "لطفاً صبر کنید"


async def test_relay_client_maps_500_with_default_message(relay_client, relay_stub):
    relay_stub.status_code = 500

    with pytest.raises(GatewayError) as exc_info:
        async with relay_client.stream([]):
            pass

    assert exc_info.value.user_message == GatewayError.user_message


# =============================================================================
# SENDING
# =============================================================================


async def test_first_message_creates_conversation_and_streams_reply(session, store, relay_stub, notifier):
    reply = await session.send_message("سوالی درباره آمار دارم که کمی طولانی است و باید کوتاه شود")

    assert reply.content == "Hello"
    conversation = store.conversations[session.conversation_id]
    assert conversation.title == "سوالی درباره آمار دارم که کمی طولانی است و باید کوتاه شود"[:50]
    assert [(m.role, m.content) for m in store.created] == [
        ("user", "سوالی درباره آمار دارم که کمی طولانی است و باید کوتاه شود"),
        ("assistant", "Hello"),
    ]
    assert [e.content for e in session.transcript.entries()] == [m.content for m in store.created]
    assert relay_stub.payloads[0]["messages"][-1]["content"].startswith("سوالی")
    assert notifier.notifications[0][0] == "گفتگوی جدید"
    assert not session.is_streaming


async def test_second_message_sends_full_history_and_keeps_title(session, store, relay_stub):
    await session.send_message("اول")
    await session.send_message("دوم")

    assert [m["content"] for m in relay_stub.payloads[1]["messages"]] == ["اول", "Hello", "دوم"]
    assert store.conversations[session.conversation_id].title == "اول"


async def test_attachments_are_forwarded(session, relay_stub):
    await session.send_message("", image_url="https://x/a.png")

    sent = relay_stub.payloads[0]["messages"][-1]
    assert sent["image_url"] == "https://x/a.png"


async def test_empty_input_is_ignored(session, store, relay_stub):
    assert await session.send_message("   ") is None
    assert store.created == []
    assert relay_stub.payloads == []


async def test_rate_limited_relay_persists_nothing(session, store, relay_stub, notifier):
    relay_stub.status_code = 429
    relay_stub.error = "محدودیت"

    assert await session.send_message("سلام") is None

    assert [m.role for m in store.created] == ["user"]
    assert session.transcript.pending is None
    assert notifier.notifications[-1] == ("خطا در دریافت پاسخ", "محدودیت", "error")


async def test_send_while_streaming_is_rejected(session, relay_stub, notifier, store):
    gate = asyncio.Event()
    relay_stub.stream_factory = lambda: GatedStream(gate)

    first = asyncio.create_task(session.send_message("اول"))
    while not session.is_streaming or session.transcript.pending is None:
        await asyncio.sleep(0)

    assert await session.send_message("دوم") is None
    assert notifier.levels[-1] == "warning"

    gate.set()
    reply = await first
    assert reply.content == "first second"
    assert [m.content for m in store.created] == ["اول", "first second"]


# =============================================================================
# EDITING AND DELETING
# =============================================================================


async def test_edit_regenerates_and_deletes_following_reply(session, store, relay_stub, user_id):
    conversation = store.add_conversation(user_id)
    question = store.add_message(conversation.id, "user", "سوال قدیمی")
    answer = store.add_message(conversation.id, "assistant", "پاسخ قدیمی")
    await session.select_conversation(conversation.id)

    reply = await session.edit_message(question.id, "سوال جدید")

    assert store.deleted == [answer.id]
    assert relay_stub.payloads[0]["messages"] == [
        {"role": "user", "content": "سوال جدید", "image_url": None, "file_url": None}
    ]
    assert reply.content == "Hello"
    assert [m.content for m in session.transcript.messages] == ["سوال جدید", "Hello"]


async def test_failed_regeneration_does_not_restore_reply(session, store, relay_stub, user_id, notifier):
    conversation = store.add_conversation(user_id)
    question = store.add_message(conversation.id, "user", "سوال")
    answer = store.add_message(conversation.id, "assistant", "پاسخ")
    await session.select_conversation(conversation.id)
    relay_stub.status_code = 500

    assert await session.edit_message(question.id, "سوال ویرایش شده") is None

    assert store.deleted == [answer.id]
    assert store.created == []
    assert answer.id not in store.messages
    assert notifier.levels[-1] == "error"


async def test_editing_assistant_message_does_not_call_relay(session, store, relay_stub, user_id):
    conversation = store.add_conversation(user_id)
    store.add_message(conversation.id, "user", "سوال")
    answer = store.add_message(conversation.id, "assistant", "پاسخ")
    await session.select_conversation(conversation.id)

    assert await session.edit_message(answer.id, "پاسخ اصلاح شده") is None

    assert relay_stub.payloads == []
    assert store.deleted == []
    assert session.transcript.messages[-1].content == "پاسخ اصلاح شده"


async def test_delete_message(session, store, user_id):
    conversation = store.add_conversation(user_id)
    message = store.add_message(conversation.id, "user", "حذف شود")
    await session.select_conversation(conversation.id)

    assert await session.delete_message(message.id)

    assert session.transcript.messages == []


# =============================================================================
# CONVERSATIONS AND REALTIME REFRESH
# =============================================================================


async def test_new_conversation_touches_previous(session, store, user_id):
    previous = store.add_conversation(user_id)
    await session.select_conversation(previous.id)

    created = await session.new_conversation()

    assert store.touched == [previous.id]
    assert session.conversation_id == created.id


async def test_changes_from_elsewhere_trigger_reload(session, store, user_id):
    conversation = store.add_conversation(user_id)
    await session.select_conversation(conversation.id)

    await store.create_message(conversation.id, "assistant", "از دستگاه دیگر")

    assert [m.content for m in session.transcript.messages] == ["از دستگاه دیگر"]


async def test_switching_conversation_unsubscribes_previous(session, store, user_id, change_feed):
    first = store.add_conversation(user_id)
    second = store.add_conversation(user_id)

    await session.select_conversation(first.id)
    await session.select_conversation(second.id)

    assert change_feed.subscriber_count(first.id) == 0
    assert change_feed.subscriber_count(second.id) == 1

    await session.close()
    assert change_feed.subscriber_count(second.id) == 0


async def test_reload_failure_is_notified(session, store, user_id, notifier):
    conversation = store.add_conversation(user_id)
    store.fail_list = True

    await session.select_conversation(conversation.id)

    assert notifier.notifications[-1][0] == "خطا در بارگذاری پیام‌ها"
    assert session.transcript.messages == []


# =============================================================================
# END TO END THROUGH THE APP
# =============================================================================


async def test_session_against_relay_endpoint(store, notifier, user_id, gateway, override_dependencies):
    gateway.chunks = [sse_event("سل"), sse_event("ام"), sse_done()]

    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        relay = RelayClient(http, access_token=make_token(user_id))
        chat = ChatSession(store, relay, notifier, user_id)

        reply = await chat.send_message("سلام")

    assert reply.content == "سلام"
    system = gateway.payloads[0]["messages"][0]
    assert system["role"] == "system"
    assert gateway.payloads[0]["messages"][1:] == [{"role": "user", "content": "سلام"}]
