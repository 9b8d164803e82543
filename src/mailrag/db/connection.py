"""Opening the mailrag SQLite store (conversations + sqlite-vec index)."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

from mailrag.db.migrations import initialize

BUSY_TIMEOUT_MS = 5_000


class Database:
    """One SQLite file shared by the conversation store and the vector index.

    The repository and the vector index each get their own connection from
    ``open_shared()``; WAL mode lets the listener thread write vectors while
    the API reads conversations.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)

    def connect(self, *, check_same_thread: bool = True) -> sqlite3.Connection:
        """Open a raw connection with sqlite-vec loaded. No schema is applied."""
        if self.db_path.parent != Path("."):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=check_same_thread)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        for pragma in (
            "foreign_keys = ON",
            "journal_mode = WAL",
            f"busy_timeout = {BUSY_TIMEOUT_MS}",
        ):
            conn.execute(f"PRAGMA {pragma}")
        return conn

    def open_shared(self) -> sqlite3.Connection:
        """A migrated connection usable from background threads.

        Callers serialize access to it (the repository and the vector index
        each hold a lock).
        """
        conn = self.connect(check_same_thread=False)
        initialize(conn)
        return conn
