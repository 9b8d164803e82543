"""Tests for the ingestion pipeline."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from fakes import FakeEmbedder, InMemoryVectorIndex, make_message
from mailrag.errors import UnsupportedMimeType, UpstreamFatal
from mailrag.ingest.attachments import MIME_DOCX
from mailrag.ingest.chunker import TextChunker
from mailrag.ingest.embedding_text import build_embedding_text
from mailrag.ingest.pipeline import IngestionPipeline, chunk_message, infer_direction
from mailrag.models import AttachmentPayload


@pytest.fixture
def pipeline(embedder, vector_index):
    return IngestionPipeline(embedder, vector_index)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def test_embedding_text_layout():
    text = build_embedding_text("Budget", "alice@example.com", "Numbers attached.")
    assert text == "Subject: Budget\n\nFrom: alice@example.com\n\nMessage:\nNumbers attached."


@pytest.mark.parametrize(
    "sender,mailbox,expected",
    [
        ("Alice <alice@example.com>", "me@example.com", "inbound"),
        ("Me <ME@Example.com>", "me@example.com", "outbound"),
        ("me@example.com", "", "inbound"),
        ("", "me@example.com", "inbound"),
    ],
)
def test_infer_direction(sender, mailbox, expected):
    assert infer_direction(sender, mailbox) == expected


def test_chunk_message_single_chunk_snippet():
    body = "word " * 400
    chunks = chunk_message(make_message(body=body), TextChunker(8_000))
    assert len(chunks) == 1
    assert chunks[0].vector_id == "m1"
    assert len(chunks[0].snippet) == 1_000


def test_chunk_message_empty_body():
    assert chunk_message(make_message(body=None), TextChunker(8_000)) == []
    assert chunk_message(make_message(body=" \n\t "), TextChunker(8_000)) == []


# ------------------------------------------------------------------
# ingest()
# ------------------------------------------------------------------


def test_long_message_split_into_two_vectors(pipeline, vector_index):
    result = pipeline.ingest([make_message("m1", "A" * 9_000)], mailbox_email="me@example.com")

    assert result.synced_count == 2
    stored = vector_index.namespaces["emails"]
    assert set(stored) == {"m1_chunk_0", "m1_chunk_1"}
    for v in stored.values():
        assert v.metadata["direction"] == "inbound"
        assert v.metadata["totalChunks"] == 2
        assert len(v.metadata["snippet"]) <= 500
    assert stored["m1_chunk_1"].metadata["chunkIndex"] == 1


def test_metadata_fields(pipeline, vector_index):
    msg = make_message(
        "m2", "We decided to go ahead. Please confirm.", in_reply_to="root-1", source="mbox"
    )
    pipeline.ingest([msg])
    meta = vector_index.namespaces["emails"]["m2"].metadata
    assert meta["docType"] == "email"
    assert meta["messageId"] == "m2"
    assert meta["threadId"] == "root-1"
    assert meta["source"] == "mbox"
    assert meta["subject"] == "Budget"
    assert meta["hasAction"] is True
    assert meta["hasDecision"] is True
    assert meta["hasConfirmation"] is False


def test_single_embed_call_per_batch(pipeline, embedder):
    pipeline.ingest([make_message("a", "one"), make_message("b", "two"), make_message("c", "")])
    assert len(embedder.calls) == 1
    assert len(embedder.calls[0]) == 2
    assert embedder.calls[0][0].startswith("Subject: Budget\n\nFrom: Alice")


def test_empty_batch_makes_no_calls(pipeline, embedder, vector_index):
    result = pipeline.ingest([])
    assert result.synced_count == 0
    assert result.namespace == "emails"
    assert embedder.calls == []
    assert vector_index.upsert_calls == 0


def test_reingest_is_idempotent(pipeline, vector_index):
    msgs = [make_message("a", "first"), make_message("b", "second")]
    pipeline.ingest(msgs)
    first = dict(vector_index.namespaces["emails"])
    pipeline.ingest(msgs)
    assert vector_index.count("emails") == 2
    assert vector_index.namespaces["emails"]["a"].values == first["a"].values


def test_upserts_are_batched(embedder, vector_index):
    pipe = IngestionPipeline(embedder, vector_index, upsert_batch_size=2)
    pipe.ingest([make_message(f"m{i}", f"body {i}") for i in range(5)])
    assert vector_index.upsert_calls == 3
    assert vector_index.count("emails") == 5


def test_namespace_override(pipeline, vector_index):
    result = pipeline.ingest([make_message()], namespace="other")
    assert result.namespace == "other"
    assert vector_index.count("other") == 1
    assert vector_index.count("emails") == 0


def test_embedder_failure_leaves_index_untouched(vector_index):
    embedder = MagicMock()
    embedder.embed.side_effect = UpstreamFatal("bad key")
    pipe = IngestionPipeline(embedder, vector_index)
    with pytest.raises(UpstreamFatal):
        pipe.ingest([make_message()])
    assert vector_index.upsert_calls == 0


def test_embedder_length_mismatch(vector_index):
    embedder = MagicMock()
    embedder.embed.return_value = []
    pipe = IngestionPipeline(embedder, vector_index)
    with pytest.raises(UpstreamFatal, match="0 vectors for 1 texts"):
        pipe.ingest([make_message()])


def test_to_dict():
    from mailrag.ingest.pipeline import IngestResult

    assert IngestResult(3, "emails", 2).to_dict() == {
        "syncedCount": 3,
        "attachmentChunksSynced": 2,
        "namespace": "emails",
    }


# ------------------------------------------------------------------
# Attachments
# ------------------------------------------------------------------


def _with_attachments(*attachments):
    return make_message("m9", "See attached.", attachments=tuple(attachments))


def test_attachment_chunks_indexed():
    extractor = MagicMock()
    extractor.extract.return_value = "Quarterly revenue grew. " * 60
    index = InMemoryVectorIndex()
    pipe = IngestionPipeline(FakeEmbedder(), index, text_extractor=extractor)

    result = pipe.ingest(
        [_with_attachments(AttachmentPayload("q1.pdf", "application/pdf", b"%PDF"))]
    )

    stored = index.namespaces["emails"]
    att_ids = sorted(i for i in stored if "_att_" in i)
    assert result.synced_count == 1
    assert result.attachment_chunks_synced == len(att_ids) > 1
    assert att_ids[0] == "m9_att_0_chunk_0"
    meta = stored[att_ids[0]].metadata
    assert meta["docType"] == "attachment"
    assert meta["filename"] == "q1.pdf"
    assert meta["mimeType"] == "application/pdf"


def test_attachment_embedding_subject_mentions_filename():
    extractor = MagicMock()
    extractor.extract.return_value = "short text"
    embedder = FakeEmbedder()
    pipe = IngestionPipeline(embedder, InMemoryVectorIndex(), text_extractor=extractor)
    pipe.ingest([_with_attachments(AttachmentPayload("notes.txt", "text/plain", b"x"))])
    assert embedder.calls[0][1].startswith("Subject: Budget (attachment: notes.txt)")


def test_failed_attachment_skipped():
    extractor = MagicMock()
    extractor.extract.side_effect = [UnsupportedMimeType("nope"), "fine"]
    index = InMemoryVectorIndex()
    pipe = IngestionPipeline(FakeEmbedder(), index, text_extractor=extractor)
    result = pipe.ingest(
        [
            _with_attachments(
                AttachmentPayload("a.docx", MIME_DOCX, b"x"),
                AttachmentPayload("b.txt", "text/plain", b"x"),
            )
        ]
    )
    assert result.attachment_chunks_synced == 1
    assert "m9_att_1_chunk_0" in index.namespaces["emails"]


def test_non_rag_attachment_ignored():
    extractor = MagicMock()
    pipe = IngestionPipeline(FakeEmbedder(), InMemoryVectorIndex(), text_extractor=extractor)
    pipe.ingest([_with_attachments(AttachmentPayload("pic.png", "image/png", b"x"))])
    extractor.extract.assert_not_called()


def test_legacy_word_attachment_not_extracted():
    extractor = MagicMock()
    pipe = IngestionPipeline(FakeEmbedder(), InMemoryVectorIndex(), text_extractor=extractor)
    pipe.ingest([_with_attachments(AttachmentPayload("old.doc", "application/msword", b"x"))])
    extractor.extract.assert_not_called()
