"""Mail-side domain models: raw messages, derived chunks, index vectors, matches."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DOC_TYPE_EMAIL = "email"
DOC_TYPE_ATTACHMENT = "attachment"

DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"


@dataclass(frozen=True)
class AttachmentPayload:
    """Decoded bytes of one RAG-relevant attachment."""

    filename: str
    mime_type: str
    data: bytes = b""


@dataclass(frozen=True)
class RawMessage:
    """One mail item as delivered by a source adapter.

    ``sender`` holds the raw ``From`` header. ``in_reply_to`` (or, absent that,
    ``message_id``) is the thread key.
    """

    message_id: str
    subject: str = ""
    sender: str = ""
    date: str = ""
    body: str | None = ""
    in_reply_to: str = ""
    source: str = "gmail"
    attachments: tuple[AttachmentPayload, ...] = ()

    @property
    def thread_id(self) -> str:
        return self.in_reply_to or self.message_id


@dataclass(frozen=True)
class IntentFlags:
    has_action: bool = False
    has_decision: bool = False
    has_confirmation: bool = False


@dataclass(frozen=True)
class EmailChunk:
    """A bounded slice of one message body, ready to embed."""

    source_message_id: str
    thread_id: str
    chunk_index: int
    total_chunks: int
    text: str
    snippet: str
    subject: str
    sender: str
    date: str
    flags: IntentFlags = field(default_factory=IntentFlags)

    @property
    def vector_id(self) -> str:
        if self.total_chunks == 1:
            return self.source_message_id
        return f"{self.source_message_id}_chunk_{self.chunk_index}"


@dataclass
class IndexedVector:
    """One embedding plus the metadata needed to render a citation."""

    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    """A vector-index hit. ``score`` is higher-is-better."""

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)
