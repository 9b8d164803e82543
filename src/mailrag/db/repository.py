"""Repository for conversations, chat turns and rolling memory.

Every read and write is scoped to the owning user id; a conversation that
belongs to someone else is indistinguishable from a missing one.
"""

from __future__ import annotations

import sqlite3
import threading
import uuid

from mailrag.db.models import ROLE_ASSISTANT, ROLE_USER, ChatTurn, Conversation, MemorySummary

_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"


class ConversationRepository:
    """Data access layer for conversations, chats and memory sessions.

    Wraps an open sqlite3.Connection. Access is serialized with an internal
    lock so the repository can be shared with background title / memory
    threads (open the connection with ``check_same_thread=False``).
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see mailrag.db.migrations.initialize).
        """
        self._conn = conn
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, user_id: str, title: str = "New chat") -> Conversation:
        """Insert a conversation and its empty memory session in one transaction."""
        conversation_id = str(uuid.uuid4())
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO conversations (id, user_id, title) VALUES (?, ?, ?)",
                    (conversation_id, user_id, title),
                )
                self._conn.execute(
                    "INSERT INTO memory_sessions (conversation_id, user_id) VALUES (?, ?)",
                    (conversation_id, user_id),
                )
                row = self._conn.execute(
                    """
                    SELECT id, user_id, title, created_at, updated_at
                    FROM conversations WHERE id = ?
                    """,
                    (conversation_id,),
                ).fetchone()
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise
        return _row_to_conversation(row)

    def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT id, user_id, title, created_at, updated_at
                FROM conversations WHERE id = ? AND user_id = ?
                """,
                (conversation_id, user_id),
            ).fetchone()
        return _row_to_conversation(row) if row else None

    def list_conversations(self, user_id: str) -> list[Conversation]:
        """Return the user's conversations, most recently updated first."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, user_id, title, created_at, updated_at
                FROM conversations WHERE user_id = ?
                ORDER BY updated_at DESC
                """,
                (user_id,),
            ).fetchall()
        return [_row_to_conversation(r) for r in rows]

    def update_title(self, conversation_id: str, user_id: str, title: str) -> bool:
        """Rename a conversation. Returns False if it does not exist for *user_id*."""
        with self._lock:
            cur = self._conn.execute(
                f"""
                UPDATE conversations SET title = ?, updated_at = {_NOW}
                WHERE id = ? AND user_id = ?
                """,
                (title, conversation_id, user_id),
            )
            self._conn.commit()
        return cur.rowcount > 0

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation with its chats and memory session."""
        with self._lock:
            try:
                self._conn.execute(
                    "DELETE FROM chats WHERE conversation_id = ? AND user_id = ?",
                    (conversation_id, user_id),
                )
                self._conn.execute(
                    "DELETE FROM memory_sessions WHERE conversation_id = ? AND user_id = ?",
                    (conversation_id, user_id),
                )
                cur = self._conn.execute(
                    "DELETE FROM conversations WHERE id = ? AND user_id = ?",
                    (conversation_id, user_id),
                )
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Chat turns
    # ------------------------------------------------------------------

    def append_turn(
        self, conversation_id: str, user_id: str, role: str, message: str
    ) -> tuple[ChatTurn, bool]:
        """Persist a turn at ``max(sequence) + 1``.

        The read and the insert run in one ``BEGIN IMMEDIATE`` transaction, so
        concurrent writers to the same conversation can never share a
        sequence number.

        Returns:
            ``(turn, is_first_turn)`` where *is_first_turn* is True when this
            is the conversation's first user turn.
        """
        if role not in (ROLE_USER, ROLE_ASSISTANT):
            raise ValueError(f"Unknown chat role: {role!r}")
        turn_id = str(uuid.uuid4())
        with self._lock:
            if self._conn.in_transaction:
                self._conn.commit()
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute(
                    "SELECT COALESCE(MAX(sequence), 0) FROM chats WHERE conversation_id = ?",
                    (conversation_id,),
                ).fetchone()
                sequence = int(row[0]) + 1
                is_first_turn = False
                if role == ROLE_USER:
                    prior_user = self._conn.execute(
                        "SELECT COUNT(*) FROM chats WHERE conversation_id = ? AND role = ?",
                        (conversation_id, ROLE_USER),
                    ).fetchone()[0]
                    is_first_turn = prior_user == 0
                self._conn.execute(
                    """
                    INSERT INTO chats (id, conversation_id, user_id, role, message, sequence)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (turn_id, conversation_id, user_id, role, message, sequence),
                )
                self._conn.execute(
                    f"UPDATE conversations SET updated_at = {_NOW} WHERE id = ?",
                    (conversation_id,),
                )
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise
            created = self._conn.execute(
                "SELECT created_at FROM chats WHERE id = ?", (turn_id,)
            ).fetchone()
        turn = ChatTurn(
            id=turn_id,
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            message=message,
            sequence=sequence,
            created_at=created["created_at"] if created else None,
        )
        return turn, is_first_turn

    def list_turns(self, conversation_id: str, user_id: str) -> list[ChatTurn]:
        """Return all turns ordered by sequence."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, conversation_id, user_id, role, message, sequence, created_at
                FROM chats WHERE conversation_id = ? AND user_id = ?
                ORDER BY sequence ASC
                """,
                (conversation_id, user_id),
            ).fetchall()
        return [_row_to_turn(r) for r in rows]

    def recent_turns(self, conversation_id: str, user_id: str, limit: int) -> list[ChatTurn]:
        """Return the last *limit* turns, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, conversation_id, user_id, role, message, sequence, created_at
                FROM chats WHERE conversation_id = ? AND user_id = ?
                ORDER BY sequence DESC LIMIT ?
                """,
                (conversation_id, user_id, limit),
            ).fetchall()
        return [_row_to_turn(r) for r in reversed(rows)]

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def get_memory(self, conversation_id: str, user_id: str) -> MemorySummary:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT summary, updated_at FROM memory_sessions
                WHERE conversation_id = ? AND user_id = ?
                """,
                (conversation_id, user_id),
            ).fetchone()
        if row is None:
            return MemorySummary()
        return MemorySummary(summary=row["summary"] or "", updated_at=row["updated_at"])

    def save_memory(
        self, conversation_id: str, user_id: str, summary: str, max_chars: int = 2_000
    ) -> MemorySummary | None:
        """Overwrite the rolling summary.

        An empty *summary* keeps the previous text but still refreshes
        ``updated_at``. Returns None when the session no longer exists
        (conversation deleted while summarizing).
        """
        cleaned = (summary or "").strip()[:max_chars]
        with self._lock:
            if cleaned:
                cur = self._conn.execute(
                    f"""
                    UPDATE memory_sessions SET summary = ?, updated_at = {_NOW}
                    WHERE conversation_id = ? AND user_id = ?
                    """,
                    (cleaned, conversation_id, user_id),
                )
            else:
                cur = self._conn.execute(
                    f"""
                    UPDATE memory_sessions SET updated_at = {_NOW}
                    WHERE conversation_id = ? AND user_id = ?
                    """,
                    (conversation_id, user_id),
                )
            self._conn.commit()
        if cur.rowcount == 0:
            return None
        return self.get_memory(conversation_id, user_id)


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_turn(row: sqlite3.Row) -> ChatTurn:
    return ChatTurn(
        id=row["id"],
        conversation_id=row["conversation_id"],
        user_id=row["user_id"],
        role=row["role"],
        message=row["message"],
        sequence=row["sequence"],
        created_at=row["created_at"],
    )
