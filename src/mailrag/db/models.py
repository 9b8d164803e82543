"""Conversation-side domain models for the mailrag database layer."""

from __future__ import annotations

from dataclasses import dataclass

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


@dataclass
class Conversation:
    id: str
    user_id: str
    title: str
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class ChatTurn:
    id: str
    conversation_id: str
    user_id: str
    role: str
    message: str
    sequence: int
    created_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
            "role": self.role,
            "message": self.message,
            "sequence": self.sequence,
            "created_at": self.created_at,
        }


@dataclass
class MemorySummary:
    summary: str = ""
    updated_at: str | None = None
