"""mailrag ingest pipeline: normaliser, chunker, intent tagger, attachments."""

from mailrag.ingest.attachments import DefaultTextExtractor
from mailrag.ingest.chunker import TextChunk, TextChunker
from mailrag.ingest.embedding_text import build_embedding_text
from mailrag.ingest.intent import tag_intent
from mailrag.ingest.normalizer import normalize_body
from mailrag.ingest.pipeline import IngestionPipeline, IngestResult, infer_direction

__all__ = [
    "DefaultTextExtractor",
    "IngestResult",
    "IngestionPipeline",
    "TextChunk",
    "TextChunker",
    "build_embedding_text",
    "infer_direction",
    "normalize_body",
    "tag_intent",
]
