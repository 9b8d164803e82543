"""Conversation CRUD with ownership checks, shared by the HTTP API and CLI."""

from __future__ import annotations

from mailrag.db.models import ChatTurn, Conversation
from mailrag.db.repository import ConversationRepository
from mailrag.errors import NotFoundError, ValidationError

DEFAULT_TITLE = "New chat"


class ConversationStore:
    def __init__(self, repository: ConversationRepository) -> None:
        self._repo = repository

    def create(self, user_id: str, title: str | None = None) -> Conversation:
        return self._repo.create_conversation(user_id, (title or "").strip() or DEFAULT_TITLE)

    def list(self, user_id: str) -> list[Conversation]:
        return self._repo.list_conversations(user_id)

    def get(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = self._repo.get_conversation(conversation_id, user_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    def rename(self, conversation_id: str, user_id: str, title: str | None) -> Conversation:
        clean = (title or "").strip()
        if not clean:
            raise ValidationError("Title is required")
        if not self._repo.update_title(conversation_id, user_id, clean):
            raise NotFoundError("Conversation not found")
        return self.get(conversation_id, user_id)

    def delete(self, conversation_id: str, user_id: str) -> None:
        if not self._repo.delete_conversation(conversation_id, user_id):
            raise NotFoundError("Conversation not found")

    def chats(self, conversation_id: str, user_id: str) -> list[ChatTurn]:
        self.get(conversation_id, user_id)
        return self._repo.list_turns(conversation_id, user_id)
