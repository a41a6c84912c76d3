"""Durable long-term memory store with vector and lexical search.

Architectural role:
    Owns the single local SQLite database that holds every `MemoryEntry` for the
    lifetime of the process and beyond. `recall.core.memory_service` is the only
    writer; adapters never touch this module directly.

Persisted layout (private to this module):
    - `memories`: `id, query, response, embedding (float32 bytes), timestamp
      (epoch seconds), category, importance (raw value), tags (JSON list),
      metadata_json`.
    - `memories_fts`: FTS5 external-content index over `query` + `response` with
      the `porter unicode61` tokenizer. Insert/delete triggers keep it in the same
      transaction as the row change, so an insert and its lexical index update
      either both commit or both roll back.

Search model:
    - `vector_search` scans the `search_window` most recently inserted rows (not
      the full corpus), computes cosine similarity through a FAISS inner-product
      index over L2-normalized vectors, and keeps rows at or above `threshold`.
    - `lexical_search` runs an FTS5 OR-query of the query terms, ordered by the
      bm25 `rank`, converted to a pseudo-similarity `1 / (1 + |rank|)`.

Concurrency:
    Writes (`insert`, `batch_insert`, `prune`, `optimize`) are serialized through
    one writer connection under a lock. Reads use per-thread connections so they
    run alongside each other and only ever see committed rows (WAL journal).
    A `":memory:"` database cannot be shared across connections, so there reads
    go through the writer connection under the same lock.

Failure modes:
    Every `sqlite3.Error` and every undecodable row surfaces as `StoreError` with
    the original exception chained. There is no silent fallback.
"""

import json
import logging
import os
import re
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

import faiss
import numpy as np

from recall.errors import StoreError
from recall.memory.types import (
    MemoryCategory,
    MemoryEntry,
    MemoryImportance,
    MemoryMetadata,
    MemoryResult,
    ensure_utc,
)


logger = logging.getLogger(__name__)


DEFAULT_SEARCH_WINDOW = 1000
SIMILARITY_EPSILON = 1e-6
MAX_LEXICAL_TERMS = 32
BUSY_TIMEOUT_SECONDS = 30.0

_COLUMNS = "id, query, response, embedding, timestamp, category, importance, tags, metadata_json"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS memories (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        query TEXT NOT NULL,
        response TEXT NOT NULL,
        embedding BLOB NOT NULL,
        timestamp REAL NOT NULL,
        category TEXT NOT NULL,
        importance REAL NOT NULL,
        tags TEXT,
        metadata_json TEXT
    )
    """,
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
        query, response,
        content='memories',
        content_rowid='seq',
        tokenize='porter unicode61'
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS memories_fts_insert AFTER INSERT ON memories BEGIN
        INSERT INTO memories_fts(rowid, query, response)
        VALUES (new.seq, new.query, new.response);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS memories_fts_delete AFTER DELETE ON memories BEGIN
        INSERT INTO memories_fts(memories_fts, rowid, query, response)
        VALUES ('delete', old.seq, old.query, old.response);
    END
    """,
    "CREATE INDEX IF NOT EXISTS idx_memories_timestamp ON memories(timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_memories_category ON memories(category)",
    "CREATE INDEX IF NOT EXISTS idx_memories_importance ON memories(importance DESC)",
)


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalize each row of a 2D float32 matrix; zero rows stay zero."""
    matrix = np.ascontiguousarray(matrix, dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    out = np.zeros_like(matrix)
    np.divide(matrix, norms, out=out, where=norms > 0)
    return out


def cosine_similarity(a, b) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when the lengths differ or either vector has zero magnitude.
    The result is clipped to `[-1, 1]` to absorb float32 rounding.
    """
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)

    if a.shape != b.shape:
        return 0.0

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


def build_fts_query(text: str) -> str:
    """Turn free text into an FTS5 OR-query of quoted terms.

    Quoting keeps user punctuation and FTS5 operators (`AND`, `NEAR`, `*`) from
    being interpreted as query syntax. Returns `""` when no word characters remain.
    """
    terms = []
    for term in re.findall(r"\w+", (text or "").lower()):
        if term not in terms:
            terms.append(term)
        if len(terms) >= MAX_LEXICAL_TERMS:
            break

    return " OR ".join(f'"{term}"' for term in terms)


class VectorStore:
    """SQLite + FTS5 + FAISS store for `MemoryEntry` rows.

    Args:
        database_path: SQLite file path, or `":memory:"`.
        embedding_dimension: Required embedding length D for every row.
        search_window: Number of most recent rows scanned by `vector_search`.

    Raises:
        StoreError: When the database cannot be opened or the schema created.
    """

    def __init__(self, database_path: str, embedding_dimension: int,
                 search_window: int = DEFAULT_SEARCH_WINDOW):
        self.database_path = database_path
        self.embedding_dimension = embedding_dimension
        self.search_window = search_window

        self._in_memory = database_path == ":memory:"
        self._write_lock = threading.Lock()
        self._local = threading.local()
        self._readers = []
        self._readers_lock = threading.Lock()
        self._closed = False

        try:
            if not self._in_memory:
                directory = os.path.dirname(os.path.abspath(database_path))
                os.makedirs(directory, exist_ok=True)

            self._writer = self._connect()
            self._writer.execute("PRAGMA journal_mode=WAL")
            self._writer.execute("PRAGMA synchronous=NORMAL")

            for statement in _SCHEMA:
                self._writer.execute(statement)
        except (sqlite3.Error, OSError) as exc:
            raise StoreError("open", str(exc)) from exc

    # =========================================================
    # CONNECTIONS & TRANSACTIONS
    # =========================================================

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(
            self.database_path,
            timeout=BUSY_TIMEOUT_SECONDS,
            isolation_level=None,
            check_same_thread=False,
        )

    def _ensure_open(self, operation: str) -> None:
        if self._closed:
            raise StoreError(operation, "store is closed")

    def _reader_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
            with self._readers_lock:
                self._readers.append(conn)
        return conn

    @contextmanager
    def _transaction(self, operation: str):
        """Run the body in one `BEGIN IMMEDIATE ... COMMIT` on the writer connection."""
        with self._write_lock:
            self._ensure_open(operation)
            conn = self._writer
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                self._rollback(conn)
                raise StoreError(operation, str(exc)) from exc
            except BaseException:
                self._rollback(conn)
                raise

    @contextmanager
    def _reading(self, operation: str):
        if self._in_memory:
            with self._write_lock:
                self._ensure_open(operation)
                try:
                    yield self._writer
                except sqlite3.Error as exc:
                    raise StoreError(operation, str(exc)) from exc
        else:
            self._ensure_open(operation)
            try:
                yield self._reader_connection()
            except sqlite3.Error as exc:
                raise StoreError(operation, str(exc)) from exc

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("Rollback failed")

    # =========================================================
    # ROW CODEC
    # =========================================================

    def _validate(self, entry: MemoryEntry, operation: str) -> None:
        size = entry.embedding.size
        if size != self.embedding_dimension:
            raise StoreError(
                operation,
                f"entry {entry.id} has a {size}-d embedding, expected {self.embedding_dimension}",
            )

    @staticmethod
    def _row_params(entry: MemoryEntry) -> tuple:
        meta = entry.metadata
        return (
            entry.id,
            entry.query,
            entry.response,
            entry.embedding.astype(np.float32).tobytes(),
            entry.timestamp.timestamp(),
            meta.category.value,
            meta.importance.value,
            json.dumps(list(meta.tags), ensure_ascii=False),
            json.dumps(meta.to_dict(), ensure_ascii=False),
        )

    def _row_to_entry(self, row, operation: str) -> MemoryEntry:
        entry_id, query, response, blob, timestamp, category, importance, tags, _meta = row[:9]
        try:
            embedding = np.frombuffer(blob, dtype=np.float32)
            if embedding.size != self.embedding_dimension:
                raise ValueError(f"{embedding.size}-d embedding")

            metadata = MemoryMetadata(
                category=MemoryCategory(category),
                importance=MemoryImportance.parse(importance),
                tags=tuple(json.loads(tags)) if tags else (),
            )

            return MemoryEntry(
                id=entry_id,
                query=query,
                response=response,
                embedding=embedding,
                metadata=metadata,
                timestamp=datetime.fromtimestamp(timestamp, tz=timezone.utc),
            )
        except (TypeError, ValueError) as exc:
            raise StoreError(operation, f"corrupt row {entry_id!r}: {exc}") from exc

    # =========================================================
    # WRITES
    # =========================================================

    def insert(self, entry: MemoryEntry) -> None:
        """Persist one entry and its lexical index rows atomically.

        Raises:
            StoreError: On a dimension mismatch, duplicate id, or SQLite failure.
        """
        self._validate(entry, "insert")

        with self._transaction("insert") as conn:
            conn.execute(
                f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._row_params(entry),
            )

    def batch_insert(self, entries) -> None:
        """Persist all entries in a single transaction (all-or-nothing)."""
        entries = list(entries)
        for entry in entries:
            self._validate(entry, "batch_insert")

        if not entries:
            return

        with self._transaction("batch_insert") as conn:
            for entry in entries:
                conn.execute(
                    f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    self._row_params(entry),
                )

    def prune(self, older_than: datetime, min_importance, category=None) -> int:
        """Delete entries older than `older_than` with importance below `min_importance`.

        Args:
            older_than: Strict timestamp cutoff.
            min_importance: Strict importance floor; entries at or above survive.
            category: Optional category restriction.

        Returns:
            Number of deleted entries.
        """
        sql = "DELETE FROM memories WHERE timestamp < ? AND importance < ?"
        params = [
            ensure_utc(older_than).timestamp(),
            MemoryImportance.parse(min_importance).value,
        ]

        if category is not None:
            sql += " AND category = ?"
            params.append(MemoryCategory(category).value)

        with self._transaction("prune") as conn:
            removed = conn.execute(sql, params).rowcount

        logger.info(
            "Pruned %d memories (older_than=%s, min_importance=%s, category=%s)",
            removed, older_than, min_importance, category,
        )
        return removed

    def optimize(self) -> None:
        """Merge FTS segments, then `VACUUM` and `ANALYZE`. Performance only."""
        with self._write_lock:
            self._ensure_open("optimize")
            try:
                self._writer.execute("INSERT INTO memories_fts(memories_fts) VALUES ('optimize')")
                self._writer.execute("VACUUM")
                self._writer.execute("ANALYZE")
            except sqlite3.Error as exc:
                raise StoreError("optimize", str(exc)) from exc

    # =========================================================
    # READS
    # =========================================================

    def vector_search(self, query_vector, limit: int, threshold: float):
        """Cosine-similarity search over the most recent `search_window` rows.

        Returns:
            Up to `limit` `MemoryResult`s with similarity >= `threshold`, sorted by
            similarity descending. `relevance_score` is left at 0; ranking is done
            by the memory service.
        """
        query = np.asarray(query_vector, dtype=np.float32).reshape(1, -1)
        if query.shape[1] != self.embedding_dimension:
            raise StoreError(
                "vector_search",
                f"query vector is {query.shape[1]}-d, expected {self.embedding_dimension}",
            )

        if limit <= 0:
            return []

        with self._reading("vector_search") as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM memories ORDER BY seq DESC LIMIT ?",
                (self.search_window,),
            ).fetchall()

        entries = [self._row_to_entry(row, "vector_search") for row in rows]
        if not entries:
            return []

        matrix = normalize_rows(np.vstack([entry.embedding for entry in entries]))
        index = faiss.IndexFlatIP(self.embedding_dimension)
        index.add(matrix)
        scores, positions = index.search(normalize_rows(query), len(entries))

        results = []
        for score, position in zip(scores[0], positions[0]):
            if position < 0:
                continue

            similarity = float(np.clip(score, -1.0, 1.0))
            if similarity + SIMILARITY_EPSILON < threshold:
                continue

            results.append(MemoryResult(entry=entries[position], similarity=similarity))

        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]

    def lexical_search(self, query: str, limit: int):
        """Stemmed keyword search over `query` + `response` text.

        Returns:
            Up to `limit` `MemoryResult`s ordered by FTS5 rank, similarity
            `1 / (1 + |rank|)`. Queries without word characters return `[]`.
        """
        match = build_fts_query(query)
        if not match or limit <= 0:
            return []

        columns = ", ".join(f"m.{c.strip()}" for c in _COLUMNS.split(","))
        sql = (
            f"SELECT {columns}, memories_fts.rank "
            "FROM memories_fts JOIN memories m ON m.seq = memories_fts.rowid "
            "WHERE memories_fts MATCH ? "
            "ORDER BY memories_fts.rank LIMIT ?"
        )

        with self._reading("lexical_search") as conn:
            rows = conn.execute(sql, (match, limit)).fetchall()

        results = []
        for row in rows:
            rank = float(row[9])
            results.append(
                MemoryResult(
                    entry=self._row_to_entry(row, "lexical_search"),
                    similarity=1.0 / (1.0 + abs(rank)),
                )
            )
        return results

    def get(self, entry_id: str):
        """Return the entry with `entry_id`, or `None`."""
        with self._reading("get") as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (entry_id,)
            ).fetchone()

        if row is None:
            return None
        return self._row_to_entry(row, "get")

    def count(self) -> int:
        with self._reading("count") as conn:
            return int(conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0])

    # =========================================================
    # LIFECYCLE
    # =========================================================

    def close(self) -> None:
        """Close the writer and every reader connection. Idempotent."""
        with self._write_lock:
            if self._closed:
                return
            self._closed = True

            with self._readers_lock:
                readers, self._readers = self._readers, []

            for conn in readers + [self._writer]:
                try:
                    conn.close()
                except sqlite3.Error:
                    logger.exception("Failed to close store connection")
