"""Tests for opening the SQLite store."""

from __future__ import annotations

import threading

from mailrag.db.connection import BUSY_TIMEOUT_MS, Database
from mailrag.db.migrations import CURRENT_VERSION


def test_connect_creates_file_and_parent(tmp_path):
    db_path = tmp_path / "nested" / ".mailrag.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_sqlite_vec_loaded(tmp_path):
    conn = Database(tmp_path / ".mailrag.db").connect()
    version = conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()
    assert version.startswith("v")


def test_pragmas(tmp_path):
    conn = Database(tmp_path / ".mailrag.db").connect()
    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
    assert conn.execute("PRAGMA busy_timeout").fetchone()[0] == BUSY_TIMEOUT_MS
    conn.close()


def test_connect_applies_no_schema(tmp_path):
    conn = Database(tmp_path / ".mailrag.db").connect()
    tables = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    conn.close()
    assert tables == []


def test_open_shared_is_migrated(tmp_path):
    conn = Database(tmp_path / ".mailrag.db").open_shared()
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    conn.close()
    assert version == CURRENT_VERSION


def test_open_shared_usable_from_other_thread(tmp_path):
    conn = Database(tmp_path / ".mailrag.db").open_shared()
    seen = []
    worker = threading.Thread(target=lambda: seen.append(conn.execute("SELECT 1").fetchone()[0]))
    worker.start()
    worker.join()
    conn.close()
    assert seen == [1]


def test_two_shared_connections_see_each_others_writes(tmp_path):
    db = Database(tmp_path / ".mailrag.db")
    first, second = db.open_shared(), db.open_shared()
    first.execute(
        "INSERT INTO conversations (id, user_id, title) VALUES ('c1', 'u1', 'New chat')"
    )
    first.commit()
    row = second.execute("SELECT title FROM conversations WHERE id = 'c1'").fetchone()
    first.close()
    second.close()
    assert row["title"] == "New chat"
