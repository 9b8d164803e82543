"""Tests for NDJSON stream framing."""

from __future__ import annotations

import json

from mailrag.chat.stream import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    MetadataEvent,
    TitleEvent,
    decode_lines,
    encode_event,
    encode_events,
)


def test_each_event_is_one_line():
    line = encode_event(ChunkEvent("multi\nline"))
    assert line.endswith("\n")
    assert line.count("\n") == 1
    assert json.loads(line) == {"type": "chunk", "content": "multi\nline"}


def test_metadata_shape():
    event = MetadataEvent(citations=[{"id": "m1"}], match_count=1, conversation_id="c1")
    assert event.to_dict() == {
        "type": "metadata",
        "citations": [{"id": "m1"}],
        "matchCount": 1,
        "conversationId": "c1",
    }
    assert "conversationId" not in MetadataEvent().to_dict()


def test_terminal_events():
    assert DoneEvent().to_dict() == {"type": "done"}
    assert ErrorEvent("boom").to_dict() == {"type": "error", "message": "boom"}
    assert TitleEvent("Budget").to_dict() == {"type": "title", "title": "Budget"}


def test_encode_decode_lines():
    body = "".join(encode_events([MetadataEvent(), ChunkEvent("é"), DoneEvent()]))
    events = decode_lines(body.encode("utf-8").splitlines())
    assert [e["type"] for e in events] == ["metadata", "chunk", "done"]
    assert events[1]["content"] == "é"
