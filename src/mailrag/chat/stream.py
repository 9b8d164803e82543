"""Newline-delimited JSON event framing for streamed answers.

One complete JSON object per line. ``metadata`` is always first; the stream
ends with exactly one ``done`` or, after a failure mid-stream, one ``error``.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

NDJSON_MEDIA_TYPE = "application/x-ndjson"


@dataclass
class MetadataEvent:
    citations: list[dict[str, Any]] = field(default_factory=list)
    match_count: int = 0
    conversation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "metadata",
            "citations": self.citations,
            "matchCount": self.match_count,
        }
        if self.conversation_id:
            data["conversationId"] = self.conversation_id
        return data


@dataclass
class ChunkEvent:
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "chunk", "content": self.content}


@dataclass
class TitleEvent:
    title: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "title", "title": self.title}


@dataclass
class DoneEvent:
    def to_dict(self) -> dict[str, Any]:
        return {"type": "done"}


@dataclass
class ErrorEvent:
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "error", "message": self.message}


StreamEvent = MetadataEvent | ChunkEvent | TitleEvent | DoneEvent | ErrorEvent


def encode_event(event: StreamEvent) -> str:
    return json.dumps(event.to_dict(), ensure_ascii=False) + "\n"


def encode_events(events: Iterable[StreamEvent]) -> Iterator[str]:
    """Frame each event as it arrives; nothing is buffered."""
    for event in events:
        yield encode_event(event)


def decode_lines(lines: Iterable[str | bytes]) -> list[dict[str, Any]]:
    """Parse an NDJSON body back into dicts, skipping blank lines."""
    decoded: list[dict[str, Any]] = []
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        line = line.strip()
        if line:
            decoded.append(json.loads(line))
    return decoded
