"""Attachment text extraction for RAG-relevant MIME types."""

from __future__ import annotations

import io
import zipfile

import docx
import pypdf
from docx.opc.exceptions import PackageNotFoundError

from mailrag.errors import UnsupportedMimeType
from mailrag.ingest.normalizer import normalize_body

MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_DOC = "application/msword"
MIME_TEXT = "text/plain"
MIME_CSV = "text/csv"
MIME_HTML = "text/html"

# Legacy binary .doc (MIME_DOC) has no reader, so it is not fetched at all.
RAG_MIME_TYPES: frozenset[str] = frozenset(
    [MIME_PDF, MIME_DOCX, MIME_TEXT, MIME_CSV, MIME_HTML]
)


def is_rag_mime_type(mime_type: str) -> bool:
    return _base_type(mime_type) in RAG_MIME_TYPES


def _base_type(mime_type: str) -> str:
    return (mime_type or "").split(";")[0].strip().lower()


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


class DefaultTextExtractor:
    """TextExtractor for PDF (pypdf), Word .docx (python-docx) and text-like attachments."""

    def extract(self, data: bytes, mime_type: str, filename: str = "") -> str:
        base = _base_type(mime_type)
        if base == MIME_PDF:
            return self._extract_pdf(data)
        if base == MIME_DOCX:
            return self._extract_docx(data)
        if base in (MIME_TEXT, MIME_CSV):
            return _decode_text(data).strip()
        if base == MIME_HTML:
            return normalize_body(_decode_text(data))
        raise UnsupportedMimeType(
            f"No text extractor for '{mime_type}'" + (f" ({filename})" if filename else "")
        )

    @staticmethod
    def _extract_pdf(data: bytes) -> str:
        """Concatenate page text; pages without text (scans) are skipped."""
        parts: list[str] = []
        try:
            reader = pypdf.PdfReader(io.BytesIO(data))
            for page in reader.pages:
                page_text = (page.extract_text() or "").strip()
                if page_text:
                    parts.append(page_text)
        except pypdf.errors.PyPdfError as exc:
            raise ValueError(f"Unreadable PDF: {exc}") from exc
        return "\n\n".join(parts)

    @staticmethod
    def _extract_docx(data: bytes) -> str:
        """Paragraph text, then table cell text, one per line."""
        try:
            document = docx.Document(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError) as exc:
            raise ValueError(f"Unreadable Word document: {exc}") from exc
        parts = [p.text for p in document.paragraphs if p.text.strip()]
        for table in document.tables:
            for row in table.rows:
                parts.extend(cell.text for cell in row.cells if cell.text.strip())
        return "\n".join(parts)
