"""Ingestion pipeline: raw messages → normalised chunks → embeddings → index.

Per message: normalise the body, tag intent, chunk, and build one embedding
string per chunk. RAG-relevant attachments are extracted, chunked with the
document chunker and indexed alongside as ``docType="attachment"``. All
embedding strings of a batch go to the embedder in a single call before
anything is upserted, so an embedding failure leaves the index untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from mailrag.capabilities import Embedder, TextExtractor, VectorIndex
from mailrag.errors import MailragError, UpstreamFatal
from mailrag.ingest.attachments import is_rag_mime_type
from mailrag.ingest.chunker import TextChunker
from mailrag.ingest.embedding_text import build_embedding_text
from mailrag.ingest.intent import tag_intent
from mailrag.ingest.normalizer import normalize_body
from mailrag.models import (
    DIRECTION_INBOUND,
    DIRECTION_OUTBOUND,
    DOC_TYPE_ATTACHMENT,
    DOC_TYPE_EMAIL,
    EmailChunk,
    IndexedVector,
    RawMessage,
)

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 100
_UNCHUNKED_SNIPPET_CHARS = 1_000
_CHUNK_SNIPPET_CHARS = 500


@dataclass
class IngestResult:
    synced_count: int
    namespace: str
    attachment_chunks_synced: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "syncedCount": self.synced_count,
            "attachmentChunksSynced": self.attachment_chunks_synced,
            "namespace": self.namespace,
        }


@dataclass
class _PendingVector:
    id: str
    text: str
    metadata: dict[str, Any]


def infer_direction(sender: str, mailbox_email: str) -> str:
    """Outbound iff the mailbox address occurs in the From header (case-insensitive).

    A substring heuristic: display-name-only headers and shared aliases are
    classified as inbound.
    """
    mailbox = (mailbox_email or "").strip().lower()
    if mailbox and mailbox in (sender or "").lower():
        return DIRECTION_OUTBOUND
    return DIRECTION_INBOUND


def chunk_message(message: RawMessage, chunker: TextChunker) -> list[EmailChunk]:
    """Derive the EmailChunks for one message. A message without body yields []."""
    body = normalize_body(message.body)
    if not body:
        return []
    flags = tag_intent(body)
    pieces = chunker.split(body)
    total = len(pieces)
    chunks: list[EmailChunk] = []
    for piece in pieces:
        snippet = (
            body[:_UNCHUNKED_SNIPPET_CHARS]
            if total == 1
            else piece.text[:_CHUNK_SNIPPET_CHARS]
        )
        chunks.append(
            EmailChunk(
                source_message_id=message.message_id,
                thread_id=message.thread_id,
                chunk_index=piece.index,
                total_chunks=total,
                text=piece.text,
                snippet=snippet,
                subject=message.subject,
                sender=message.sender,
                date=message.date,
                flags=flags,
            )
        )
    return chunks


class IngestionPipeline:
    """Orchestrates normalise → chunk → tag → embed → upsert for a batch.

    Args:
        embedder: Embedding capability; called once per ``ingest()`` batch.
        vector_index: Target index.
        namespace: Default namespace when ``ingest()`` is not given one.
        email_chunker: Chunker for message bodies (8000 chars by default).
        document_chunker: Chunker for attachment text (800/150 by default).
        text_extractor: Optional attachment extractor; without one,
            attachments are ignored.
        upsert_batch_size: Vectors per upsert call.
    """

    def __init__(
        self,
        embedder: Embedder,
        vector_index: VectorIndex,
        *,
        namespace: str = "emails",
        email_chunker: TextChunker | None = None,
        document_chunker: TextChunker | None = None,
        text_extractor: TextExtractor | None = None,
        upsert_batch_size: int = UPSERT_BATCH_SIZE,
    ) -> None:
        self._embedder = embedder
        self._index = vector_index
        self.namespace = namespace
        self._email_chunker = email_chunker or TextChunker(max_chars=8_000, overlap=0)
        self._document_chunker = document_chunker or TextChunker(max_chars=800, overlap=150)
        self._extractor = text_extractor
        self._upsert_batch_size = max(1, upsert_batch_size)

    def ingest(
        self,
        messages: Iterable[RawMessage],
        mailbox_email: str = "",
        namespace: str | None = None,
    ) -> IngestResult:
        """Embed and upsert *messages*. Re-running with the same input is idempotent.

        Raises:
            UpstreamRetryable / UpstreamFatal: embedding failed; nothing was upserted.
        """
        target = namespace or self.namespace
        email_units: list[_PendingVector] = []
        attachment_units: list[_PendingVector] = []

        for message in messages:
            direction = infer_direction(message.sender, mailbox_email)
            for chunk in chunk_message(message, self._email_chunker):
                email_units.append(self._email_unit(message, chunk, direction))
            attachment_units.extend(self._attachment_units(message, direction))

        units = email_units + attachment_units
        if not units:
            return IngestResult(synced_count=0, namespace=target)

        embeddings = self._embedder.embed([u.text for u in units])
        if len(embeddings) != len(units):
            raise UpstreamFatal(
                f"Embedder returned {len(embeddings)} vectors for {len(units)} texts."
            )

        vectors = [
            IndexedVector(id=unit.id, values=list(values), metadata=unit.metadata)
            for unit, values in zip(units, embeddings)
        ]
        for start in range(0, len(vectors), self._upsert_batch_size):
            self._index.upsert(target, vectors[start : start + self._upsert_batch_size])

        logger.info(
            "Ingested %d email vectors and %d attachment chunks into %r",
            len(email_units),
            len(attachment_units),
            target,
        )
        return IngestResult(
            synced_count=len(email_units),
            namespace=target,
            attachment_chunks_synced=len(attachment_units),
        )

    # ------------------------------------------------------------------
    # Unit builders
    # ------------------------------------------------------------------

    @staticmethod
    def _email_unit(message: RawMessage, chunk: EmailChunk, direction: str) -> _PendingVector:
        return _PendingVector(
            id=chunk.vector_id,
            text=build_embedding_text(chunk.subject, chunk.sender, chunk.text),
            metadata={
                "docType": DOC_TYPE_EMAIL,
                "messageId": chunk.source_message_id,
                "threadId": chunk.thread_id,
                "source": message.source,
                "date": chunk.date,
                "subject": chunk.subject,
                "from": chunk.sender,
                "snippet": chunk.snippet,
                "chunkIndex": chunk.chunk_index,
                "totalChunks": chunk.total_chunks,
                "direction": direction,
                "hasAction": chunk.flags.has_action,
                "hasDecision": chunk.flags.has_decision,
                "hasConfirmation": chunk.flags.has_confirmation,
            },
        )

    def _attachment_units(self, message: RawMessage, direction: str) -> list[_PendingVector]:
        if self._extractor is None or not message.attachments:
            return []
        units: list[_PendingVector] = []
        for n, attachment in enumerate(message.attachments):
            if not is_rag_mime_type(attachment.mime_type) or not attachment.data:
                continue
            try:
                text = self._extractor.extract(
                    attachment.data, attachment.mime_type, attachment.filename
                )
            except (MailragError, ValueError, OSError) as exc:
                logger.warning(
                    "Skipping attachment %r of message %s: %s",
                    attachment.filename,
                    message.message_id,
                    exc,
                )
                continue
            pieces = self._document_chunker.split(text)
            subject = f"{message.subject} (attachment: {attachment.filename})"
            for piece in pieces:
                units.append(
                    _PendingVector(
                        id=f"{message.message_id}_att_{n}_chunk_{piece.index}",
                        text=build_embedding_text(subject, message.sender, piece.text),
                        metadata={
                            "docType": DOC_TYPE_ATTACHMENT,
                            "messageId": message.message_id,
                            "threadId": message.thread_id,
                            "source": message.source,
                            "date": message.date,
                            "subject": message.subject,
                            "from": message.sender,
                            "filename": attachment.filename,
                            "mimeType": attachment.mime_type,
                            "snippet": piece.text[:_CHUNK_SNIPPET_CHARS],
                            "chunkIndex": piece.index,
                            "totalChunks": len(pieces),
                            "direction": direction,
                        },
                    )
                )
        return units
