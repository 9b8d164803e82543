"""Canonical text handed to the embedder for each unit."""

from __future__ import annotations


def build_embedding_text(subject: str, sender: str, body: str) -> str:
    """Only subject, sender and body are embedded; date and flags are metadata."""
    return f"Subject: {subject}\n\nFrom: {sender}\n\nMessage:\n{body}".strip()
