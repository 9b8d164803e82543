"""SQLite persistence: conversations, chat turns, memory and the vector index."""

from mailrag.db.connection import Database
from mailrag.db.migrations import initialize
from mailrag.db.repository import ConversationRepository
from mailrag.db.vectors import SqliteVectorIndex, matches_filter

__all__ = [
    "ConversationRepository",
    "Database",
    "SqliteVectorIndex",
    "initialize",
    "matches_filter",
]
