"""sqlite-vec backed vector index with namespaces and metadata filters.

Vector payloads live in per-dimension vec0 virtual tables
(``vec_embeddings_<dims>``); ids, namespaces and metadata live in the
``vectors`` table and share its rowid.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Sequence
from typing import Any

from mailrag.models import IndexedVector, VectorMatch

logger = logging.getLogger(__name__)

_MAX_OVERFETCH = 4096


def vec_table_name(dimensions: int) -> str:
    """Return the vec table name for an embedding width."""
    return f"vec_embeddings_{int(dimensions)}"


def ensure_vec_table(conn: sqlite3.Connection, dimensions: int, *, commit: bool = True) -> str:
    """Create vec_embeddings_{dimensions} if it doesn't already exist.

    With ``commit=False`` the creation joins the caller's transaction.

    Returns:
        The table name.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(dimensions)
    existing = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()

    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0(embedding float[{dimensions}])"
        )
        if commit:
            conn.commit()

    return table


# ------------------------------------------------------------------
# Metadata filters
# ------------------------------------------------------------------


def matches_filter(metadata: dict[str, Any], flt: dict[str, Any] | None) -> bool:
    """Evaluate a Mongo-style metadata filter.

    Supports ``$and`` / ``$or`` at the top level and the field operators
    ``$eq``, ``$ne``, ``$in``, ``$nin``, ``$gt``, ``$gte``, ``$lt``, ``$lte``.
    A bare value means ``$eq``.
    """
    if not flt:
        return True
    for key, cond in flt.items():
        if key == "$and":
            if not all(matches_filter(metadata, sub) for sub in cond):
                return False
        elif key == "$or":
            if not any(matches_filter(metadata, sub) for sub in cond):
                return False
        elif not _match_field(metadata.get(key), cond):
            return False
    return True


def _match_field(value: Any, cond: Any) -> bool:
    if not isinstance(cond, dict):
        return value == cond
    for op, expected in cond.items():
        if op == "$eq":
            ok = value == expected
        elif op == "$ne":
            ok = value != expected
        elif op == "$in":
            ok = value in expected
        elif op == "$nin":
            ok = value not in expected
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            if value is None:
                return False
            try:
                ok = {
                    "$gt": value > expected,
                    "$gte": value >= expected,
                    "$lt": value < expected,
                    "$lte": value <= expected,
                }[op]
            except TypeError:
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
        if not ok:
            return False
    return True


# ------------------------------------------------------------------
# Index
# ------------------------------------------------------------------


class SqliteVectorIndex:
    """VectorIndex implementation over the mailrag SQLite database.

    Upserts are idempotent by ``(namespace, id)``: re-sending an id replaces
    its vector and metadata. Scores are ``1 / (1 + distance)``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    def upsert(self, namespace: str, vectors: Sequence[IndexedVector]) -> None:
        if not vectors:
            return
        with self._lock:
            try:
                for vector in vectors:
                    self._upsert_one(namespace, vector)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        logger.debug("Upserted %d vectors into namespace %r", len(vectors), namespace)

    def _upsert_one(self, namespace: str, vector: IndexedVector) -> None:
        dims = len(vector.values)
        table = ensure_vec_table(self._conn, dims, commit=False)
        metadata = json.dumps(vector.metadata, ensure_ascii=False)
        existing = self._conn.execute(
            "SELECT row_id, dimensions FROM vectors WHERE namespace = ? AND vector_id = ?",
            (namespace, vector.id),
        ).fetchone()
        if existing is not None:
            row_id = existing["row_id"]
            old_table = vec_table_name(existing["dimensions"])
            self._conn.execute(f"DELETE FROM {old_table} WHERE rowid = ?", (row_id,))
            self._conn.execute(
                """
                UPDATE vectors
                SET dimensions = ?, metadata = ?,
                    updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
                WHERE row_id = ?
                """,
                (dims, metadata, row_id),
            )
        else:
            cur = self._conn.execute(
                "INSERT INTO vectors (namespace, vector_id, dimensions, metadata) VALUES (?, ?, ?, ?)",
                (namespace, vector.id, dims, metadata),
            )
            row_id = cur.lastrowid
        self._conn.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
            (row_id, json.dumps(vector.values)),
        )

    def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Nearest neighbours in *namespace* that satisfy *filter*, best first.

        The vec0 KNN search is not namespace-aware, so candidates are
        over-fetched and narrowed here until *top_k* survive or the table is
        exhausted.
        """
        if top_k < 1:
            return []
        dims = len(vector)
        table = vec_table_name(dims)
        with self._lock:
            exists = self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
            ).fetchone()
            if exists is None:
                return []
            total = self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            limit = min(max(top_k * 4, top_k), _MAX_OVERFETCH)
            while True:
                matches = self._search(namespace, table, vector, min(limit, total), filter)
                if len(matches) >= top_k or limit >= total or limit >= _MAX_OVERFETCH:
                    return matches[:top_k]
                limit = min(limit * 4, _MAX_OVERFETCH)

    def _search(
        self,
        namespace: str,
        table: str,
        vector: Sequence[float],
        limit: int,
        flt: dict[str, Any] | None,
    ) -> list[VectorMatch]:
        if limit < 1:
            return []
        rows = self._conn.execute(
            f"""
            SELECT v.vector_id, v.metadata, k.distance
            FROM (
                SELECT rowid, distance FROM {table}
                WHERE embedding MATCH ? AND k = ?
            ) AS k
            JOIN vectors AS v ON v.row_id = k.rowid
            WHERE v.namespace = ?
            ORDER BY k.distance
            """,
            (json.dumps(list(vector)), limit, namespace),
        ).fetchall()
        results: list[VectorMatch] = []
        for row in rows:
            metadata = json.loads(row["metadata"] or "{}")
            if not matches_filter(metadata, flt):
                continue
            results.append(
                VectorMatch(
                    id=row["vector_id"],
                    score=1.0 / (1.0 + float(row["distance"])),
                    metadata=metadata,
                )
            )
        return results

    def count(self, namespace: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM vectors WHERE namespace = ?", (namespace,)
            ).fetchone()
        return int(row[0])

    def delete_namespace(self, namespace: str) -> int:
        """Remove every vector in *namespace*. Returns the number removed."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT row_id, dimensions FROM vectors WHERE namespace = ?", (namespace,)
            ).fetchall()
            try:
                for row in rows:
                    self._conn.execute(
                        f"DELETE FROM {vec_table_name(row['dimensions'])} WHERE rowid = ?",
                        (row["row_id"],),
                    )
                self._conn.execute("DELETE FROM vectors WHERE namespace = ?", (namespace,))
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise
        return len(rows)
