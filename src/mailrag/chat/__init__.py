"""Conversation engine, CRUD store and the NDJSON stream protocol."""

from mailrag.chat.conversations import ConversationStore
from mailrag.chat.engine import ChatSettings, ConversationEngine, PreparedTurn
from mailrag.chat.stream import NDJSON_MEDIA_TYPE, decode_lines, encode_event, encode_events

__all__ = [
    "ChatSettings",
    "ConversationEngine",
    "ConversationStore",
    "NDJSON_MEDIA_TYPE",
    "PreparedTurn",
    "decode_lines",
    "encode_event",
    "encode_events",
]
