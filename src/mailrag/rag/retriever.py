"""Dense retriever over the mail vector index.

Only the current question is embedded; prior conversation turns reach the
model as history, never as retrieval input.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from mailrag.capabilities import Embedder, VectorIndex
from mailrag.models import DOC_TYPE_ATTACHMENT, DOC_TYPE_EMAIL, VectorMatch

DEFAULT_TOP_K = 6
MAX_TOP_K = 20
DEFAULT_FILTER: dict[str, Any] = {"docType": {"$in": [DOC_TYPE_EMAIL, DOC_TYPE_ATTACHMENT]}}

ORDER_CHRONOLOGICAL = "chronological"

_CHRONOLOGY_RE = re.compile(
    r"\b(timeline|chronolog\w*|in order|latest|most recent|earliest|history of|when did)\b",
    re.IGNORECASE,
)


def clamp_top_k(top_k: Any, default: int = DEFAULT_TOP_K) -> int:
    """Coerce *top_k* to an int in 1–20; unparseable or 0 → *default*."""
    try:
        value = int(top_k)
    except (TypeError, ValueError):
        value = 0
    return min(max(value or default, 1), MAX_TOP_K)


def parse_date(value: Any) -> datetime | None:
    """Parse ISO 8601 or RFC 2822 dates. Returns an aware datetime or None."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    parsed: datetime | None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_chronologically(matches: list[VectorMatch]) -> list[VectorMatch]:
    """Oldest first by ``date`` metadata; missing / unparseable dates sort last."""
    dated: list[tuple[datetime, int, VectorMatch]] = []
    undated: list[VectorMatch] = []
    for position, match in enumerate(matches):
        parsed = parse_date(match.metadata.get("date"))
        if parsed is None:
            undated.append(match)
        else:
            dated.append((parsed, position, match))
    dated.sort(key=lambda item: (item[0], item[1]))
    return [m for _, _, m in dated] + undated


def wants_chronological_order(question: str) -> bool:
    """Heuristic: does the question ask about sequence or recency?"""
    return bool(_CHRONOLOGY_RE.search(question or ""))


class Retriever:
    """Embed a question and query the vector index.

    Args:
        embedder: Embedding capability (one call per non-blank question).
        vector_index: Index to query.
        namespace: Default namespace.
        default_top_k: Used when ``retrieve()`` gets no top_k.
    """

    def __init__(
        self,
        embedder: Embedder,
        vector_index: VectorIndex,
        namespace: str = "emails",
        default_top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._embedder = embedder
        self._index = vector_index
        self.namespace = namespace
        self.default_top_k = clamp_top_k(default_top_k)

    def retrieve(
        self,
        question: str,
        top_k: Any = None,
        namespace: str | None = None,
        filter: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[VectorMatch]:
        """Return matches best-first, or oldest-first with ``order_by="chronological"``.

        A blank question returns [] without calling the embedder. A caller
        filter replaces the default ``docType in {email, attachment}`` filter.
        """
        clean = (question or "").strip()
        if not clean:
            return []
        vectors = self._embedder.embed([clean])
        if not vectors or not vectors[0]:
            return []
        matches = self._index.query(
            namespace or self.namespace,
            vectors[0],
            clamp_top_k(top_k, self.default_top_k),
            DEFAULT_FILTER if filter is None else filter,
        )
        if order_by == ORDER_CHRONOLOGICAL:
            return sort_chronologically(matches)
        return matches
