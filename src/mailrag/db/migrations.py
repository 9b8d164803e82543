"""Forward-only migration runner for the mailrag schema.

Vec tables (vec_embeddings_<dims>) are NOT migration-managed; the vector index
creates them on first use for each embedding dimension.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    title       TEXT NOT NULL,
    created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_conversations_user ON conversations(user_id, updated_at);

CREATE TABLE IF NOT EXISTS chats (
    id              TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    user_id         TEXT NOT NULL,
    role            TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    message         TEXT NOT NULL,
    sequence        INTEGER NOT NULL,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    UNIQUE (conversation_id, sequence)
);

CREATE TABLE IF NOT EXISTS memory_sessions (
    conversation_id TEXT PRIMARY KEY REFERENCES conversations(id) ON DELETE CASCADE,
    user_id         TEXT NOT NULL,
    summary         TEXT NOT NULL DEFAULT '',
    updated_at      TEXT
);

CREATE TABLE IF NOT EXISTS vectors (
    row_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    namespace   TEXT NOT NULL,
    vector_id   TEXT NOT NULL,
    dimensions  INTEGER NOT NULL,
    metadata    TEXT NOT NULL DEFAULT '{}',
    updated_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    UNIQUE (namespace, vector_id)
);
"""

# Versions only ever grow; never edit a shipped entry, append a new one.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]

CURRENT_VERSION = MIGRATIONS[-1][0]


def schema_version(conn: sqlite3.Connection) -> int:
    """Highest applied migration, 0 for a fresh file."""
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()
    (version,) = conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_version").fetchone()
    return version


def run_migrations(conn: sqlite3.Connection) -> list[int]:
    """Apply pending migrations oldest first and return the versions applied.

    Each script runs through executescript(), which commits any open
    transaction first; the version row is committed right after it.
    """
    current = schema_version(conn)
    applied: list[int] = []
    for version, sql in MIGRATIONS:
        if version <= current:
            continue
        conn.executescript(sql)
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        conn.commit()
        applied.append(version)
    return applied


def initialize(conn: sqlite3.Connection) -> None:
    """Bring *conn*'s schema up to CURRENT_VERSION."""
    run_migrations(conn)
