"""Chat relay core and its external integrations."""

from studychat.services.change_feed import ChangeEvent, InMemoryChangeFeed
from studychat.services.chat_session import ChatSession, RelayClient
from studychat.services.context_builder import ContextBuilder
from studychat.services.conversation_store import (
    SqlConversationStore,
    SqlMaterialsCatalog,
    SqlProfileDirectory,
)
from studychat.services.gateway_relay import GatewayConfig, GatewayRelay
from studychat.services.message_transformer import to_gateway_messages
from studychat.services.storage import StorageService
from studychat.services.stream_decoder import StreamDecoder, iter_deltas
from studychat.services.transcript import LoggingNotifier, Transcript, TranscriptReconciler
from studychat.services.usage_limits import SqlUsageLimiter

__all__ = [
    "ChangeEvent",
    "ChatSession",
    "ContextBuilder",
    "GatewayConfig",
    "GatewayRelay",
    "InMemoryChangeFeed",
    "LoggingNotifier",
    "RelayClient",
    "SqlConversationStore",
    "SqlMaterialsCatalog",
    "SqlProfileDirectory",
    "SqlUsageLimiter",
    "StorageService",
    "StreamDecoder",
    "Transcript",
    "TranscriptReconciler",
    "iter_deltas",
    "to_gateway_messages",
]
