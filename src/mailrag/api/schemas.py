"""Request and response payloads for the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ConversationCreate(BaseModel):
    title: str | None = None


class ConversationRename(BaseModel):
    title: str | None = None


class ConversationOut(BaseModel):
    id: str
    user_id: str
    title: str
    created_at: str | None = None
    updated_at: str | None = None


class ChatTurnOut(BaseModel):
    id: str
    conversation_id: str
    user_id: str
    role: str
    message: str
    sequence: int
    created_at: str | None = None


class MessageRequest(BaseModel):
    """``message`` or, for older clients, ``question``."""

    model_config = ConfigDict(populate_by_name=True)

    message: str | None = None
    question: str | None = None
    top_k: Any = Field(default=None, alias="topK")

    @property
    def text(self) -> str:
        return (self.message or "").strip() or (self.question or "").strip()


class ChatRequest(MessageRequest):
    conversation_id: str | None = Field(default=None, alias="conversationId")


class SyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    all: Any = False
    max_results: Any = Field(default=None, alias="maxResults")
    max_total: Any = Field(default=None, alias="maxTotal")
    label_filter: Any = Field(default=None, alias="labelFilter")
    query: str | None = None
    page_token: str | None = Field(default=None, alias="pageToken")


class SyncResponse(BaseModel):
    syncedCount: int
    attachmentChunksSynced: int = 0
    namespace: str


class MessageListResponse(BaseModel):
    messages: list[dict[str, str]] = Field(default_factory=list)
    nextPageToken: str | None = None
    resultSizeEstimate: int = 0
    fetchedCount: int = 0
