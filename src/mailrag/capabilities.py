"""Provider capability interfaces and the injectable bundle that carries them.

Pipelines and the chat engine receive these explicitly; nothing in mailrag
constructs a provider client at import time.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from mailrag.models import IndexedVector, RawMessage, VectorMatch

ChatMessage = dict[str, str]


class Embedder(Protocol):
    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""
        ...


class ChatModel(Protocol):
    def chat_stream(self, messages: list[ChatMessage]) -> Iterator[str]:
        """Yield answer tokens in generation order."""
        ...

    def chat_once(
        self,
        messages: list[ChatMessage],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        ...


class VectorIndex(Protocol):
    def upsert(self, namespace: str, vectors: Sequence[IndexedVector]) -> None:
        """Insert or overwrite vectors by id within *namespace*."""
        ...

    def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        ...


@dataclass
class MailSummary:
    id: str
    thread_id: str = ""


@dataclass
class MailPage:
    summaries: list[MailSummary]
    next_page_token: str | None = None
    result_size_estimate: int = 0


@dataclass
class MessagePreview:
    id: str
    thread_id: str = ""
    snippet: str = ""
    subject: str = ""
    sender: str = ""
    date: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "snippet": self.snippet,
            "subject": self.subject,
            "from": self.sender,
            "date": self.date,
        }


class MailApi(Protocol):
    """Paginated mail-listing capability (e.g. the Gmail REST API)."""

    def list_page(
        self,
        *,
        max_results: int,
        page_token: str | None = None,
        query: str | None = None,
        label_ids: list[str] | None = None,
    ) -> MailPage:
        ...

    def get_message(self, message_id: str) -> RawMessage:
        ...

    def get_preview(self, message_id: str) -> MessagePreview:
        ...

    def get_attachment_bytes(self, message_id: str, attachment_id: str) -> bytes:
        ...


class TextExtractor(Protocol):
    def extract(self, data: bytes, mime_type: str, filename: str = "") -> str:
        """Return plain text for an attachment buffer.

        Raises:
            UnsupportedMimeType: when no extractor exists for *mime_type*.
        """
        ...


@dataclass
class Capabilities:
    """Explicitly constructed provider bundle handed to pipeline and engine."""

    embedder: Embedder
    chat_model: ChatModel
    vector_index: VectorIndex
    mail_api: MailApi | None = None
    text_extractor: TextExtractor | None = None
