"""Render retrieval matches as prompt context and as citations."""

from __future__ import annotations

from typing import Any

from mailrag.models import DIRECTION_OUTBOUND, DOC_TYPE_ATTACHMENT, DOC_TYPE_EMAIL, VectorMatch

NO_CONTEXT = "No relevant email or document context found."


def _email_block(meta: dict[str, Any], n: int) -> str:
    sender = meta.get("from") or "Unknown sender"
    if meta.get("direction") == DIRECTION_OUTBOUND:
        sender = f"{sender} (sent by you)"
    snippet = meta.get("snippet") or ""
    return "\n".join(
        [
            f"Email {n}:",
            f"Subject: {meta.get('subject') or 'Unknown subject'}",
            f"From: {sender}",
            f"Date: {meta.get('date') or 'Unknown date'}",
            f"Snippet: {snippet}" if snippet else "Snippet: (no snippet available)",
        ]
    )


def _attachment_block(meta: dict[str, Any], n: int) -> str:
    lines = [f"Document {n} (attachment: {meta.get('filename') or 'Unknown file'}):"]
    if meta.get("subject"):
        lines.append(f"From email subject: {meta['subject']}")
    if meta.get("from"):
        lines.append(f"From: {meta['from']}")
    snippet = meta.get("snippet") or ""
    lines.append(f"Content excerpt: {snippet}" if snippet else "Content: (no excerpt)")
    return "\n".join(lines)


def build_context(matches: list[VectorMatch]) -> str:
    """Numbered context blocks joined by blank lines; NO_CONTEXT when empty."""
    if not matches:
        return NO_CONTEXT
    blocks = []
    for n, match in enumerate(matches, start=1):
        meta = match.metadata or {}
        if meta.get("docType") == DOC_TYPE_ATTACHMENT:
            blocks.append(_attachment_block(meta, n))
        else:
            blocks.append(_email_block(meta, n))
    return "\n\n".join(blocks)


def build_citations(matches: list[VectorMatch]) -> list[dict[str, Any]]:
    citations = []
    for match in matches:
        meta = match.metadata or {}
        citations.append(
            {
                "id": match.id,
                "score": match.score,
                "docType": meta.get("docType") or DOC_TYPE_EMAIL,
                "subject": meta.get("subject") or "",
                "from": meta.get("from") or "",
                "date": meta.get("date") or "",
                "threadId": meta.get("threadId") or "",
                "snippet": meta.get("snippet") or "",
                "filename": meta.get("filename") or "",
            }
        )
    return citations
