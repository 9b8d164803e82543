"""Boundary-aware text chunker.

One algorithm, two parameterisations: whole-email units (8000 chars, no
overlap) and attachment / document chunks (800 chars, 150 overlap).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]*\s")


@dataclass(frozen=True)
class TextChunk:
    """A trimmed slice of the input. ``start``/``end`` index the window it came from."""

    index: int
    text: str
    start: int
    end: int


class TextChunker:
    """Split text into chunks of at most *max_chars* characters.

    A window longer than the limit is cut at the last paragraph break, else
    sentence end, else space found beyond half the window; with none of
    those it is hard-cut at the limit. Each step advances by at least one
    character.
    """

    def __init__(self, max_chars: int = 8_000, overlap: int = 0) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        if not 0 <= overlap < max_chars:
            raise ValueError("overlap must be in [0, max_chars)")
        self.max_chars = max_chars
        self.overlap = overlap

    def split(self, text: str | None) -> list[TextChunk]:
        if not text or not text.strip():
            return []
        if len(text) <= self.max_chars:
            return [TextChunk(index=0, text=text.strip(), start=0, end=len(text))]

        chunks: list[TextChunk] = []
        start = 0
        length = len(text)
        while start < length:
            end = self._cut(text, start)
            piece = text[start:end].strip()
            if piece:
                chunks.append(TextChunk(index=len(chunks), text=piece, start=start, end=end))
            if end >= length:
                break
            start = max(end - self.overlap, start + 1)
        return chunks

    def _cut(self, text: str, start: int) -> int:
        """Return the exclusive end offset of the window beginning at *start*."""
        limit = start + self.max_chars
        if limit >= len(text):
            return len(text)
        window = text[start:limit]
        half = self.max_chars // 2

        para = window.rfind("\n\n")
        if para > half:
            return start + para

        sentence_end = -1
        for match in _SENTENCE_END_RE.finditer(window):
            sentence_end = match.end()
        if sentence_end > half:
            return start + sentence_end

        space = window.rfind(" ")
        if space > half:
            return start + space + 1

        return limit

