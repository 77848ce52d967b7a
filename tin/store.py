"""SQLite-backed content store: files, chunks, embeddings and the FTS5 index."""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from .chunks import Chunk
from .search import SOURCE_KEYWORD, SOURCE_VECTOR, SearchResult, sort_key

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
SNIPPET_MAX_CHARS = 360
SNIPPET_LINES_BEFORE = 2
SNIPPET_LINES_AFTER = 2

_TERM_STRIP_RE = re.compile(r"[^\w']+")
_WORD_CHAR_RE = re.compile(r"\w")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS indexed_file (
    path TEXT PRIMARY KEY,
    content_hash TEXT NOT NULL,
    mtime_ms INTEGER NOT NULL,
    size_bytes INTEGER NOT NULL,
    indexed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS indexed_chunk (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL REFERENCES indexed_file(path) ON DELETE CASCADE,
    chunk_index INTEGER NOT NULL,
    start_line INTEGER NOT NULL,
    end_line INTEGER NOT NULL,
    content TEXT NOT NULL,
    UNIQUE(path, chunk_index)
);

CREATE TABLE IF NOT EXISTS chunk_embedding (
    chunk_id INTEGER NOT NULL REFERENCES indexed_chunk(id) ON DELETE CASCADE,
    model TEXT NOT NULL,
    dimension INTEGER NOT NULL,
    vector_blob BLOB NOT NULL,
    embedded_at TEXT NOT NULL,
    PRIMARY KEY (chunk_id, model)
);

CREATE INDEX IF NOT EXISTS idx_indexed_chunk_path
    ON indexed_chunk(path);

CREATE INDEX IF NOT EXISTS idx_chunk_embedding_model
    ON chunk_embedding(model);

CREATE VIRTUAL TABLE IF NOT EXISTS chunk_fts USING fts5(
    path,
    content,
    content='indexed_chunk',
    content_rowid='id',
    tokenize='porter unicode61'
);

CREATE TRIGGER IF NOT EXISTS indexed_chunk_ai AFTER INSERT ON indexed_chunk BEGIN
    INSERT INTO chunk_fts(rowid, path, content)
    VALUES (new.id, new.path, new.content);
END;

CREATE TRIGGER IF NOT EXISTS indexed_chunk_ad AFTER DELETE ON indexed_chunk BEGIN
    INSERT INTO chunk_fts(chunk_fts, rowid, path, content)
    VALUES ('delete', old.id, old.path, old.content);
END;

CREATE TRIGGER IF NOT EXISTS indexed_chunk_au AFTER UPDATE ON indexed_chunk BEGIN
    INSERT INTO chunk_fts(chunk_fts, rowid, path, content)
    VALUES ('delete', old.id, old.path, old.content);
    INSERT INTO chunk_fts(rowid, path, content)
    VALUES (new.id, new.path, new.content);
END;
"""


@dataclass(slots=True)
class StoredFile:
    path: str
    content_hash: str
    mtime_ms: int
    size_bytes: int
    indexed_at: str = ""


@dataclass(frozen=True, slots=True)
class PendingChunk:
    """A stored chunk that still lacks a vector for some model."""

    chunk_id: int
    path: str
    content: str


@dataclass(frozen=True, slots=True)
class StoreCounts:
    indexed_files: int
    indexed_chunks: int
    embedded_chunks: int
    last_indexed_at: str | None

    @property
    def needs_embedding(self) -> int:
        return max(0, self.indexed_chunks - self.embedded_chunks)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute("PRAGMA temp_store = MEMORY;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type IN ('table', 'view') AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def _schema_needs_reset(conn: sqlite3.Connection) -> bool:
    version = int(conn.execute("PRAGMA user_version;").fetchone()[0])
    if version == SCHEMA_VERSION:
        return False
    return any(
        _table_exists(conn, table)
        for table in ("indexed_file", "indexed_chunk", "chunk_embedding", "chunk_fts")
    )


def _reset_schema(conn: sqlite3.Connection) -> None:
    logger.info("Index schema version changed; rebuilding index storage")
    conn.execute("PRAGMA foreign_keys = OFF;")
    conn.executescript(
        """
        DROP TRIGGER IF EXISTS indexed_chunk_ai;
        DROP TRIGGER IF EXISTS indexed_chunk_ad;
        DROP TRIGGER IF EXISTS indexed_chunk_au;
        DROP TABLE IF EXISTS chunk_fts;
        DROP TABLE IF EXISTS chunk_embedding;
        DROP TABLE IF EXISTS indexed_chunk;
        DROP TABLE IF EXISTS indexed_file;
        """
    )
    conn.execute("PRAGMA foreign_keys = ON;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    if _schema_needs_reset(conn):
        _reset_schema(conn)
    conn.executescript(_SCHEMA)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")


@contextmanager
def open_store(db_path: Path | str) -> Iterator[sqlite3.Connection]:
    """Open the index database, creating or upgrading the schema as needed."""

    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(path)
    try:
        _ensure_schema(conn)
        yield conn
    finally:
        conn.close()


def list_indexed_files(conn: sqlite3.Connection) -> dict[str, StoredFile]:
    rows = conn.execute(
        "SELECT path, content_hash, mtime_ms, size_bytes, indexed_at FROM indexed_file"
    ).fetchall()
    return {
        row["path"]: StoredFile(
            path=row["path"],
            content_hash=row["content_hash"],
            mtime_ms=int(row["mtime_ms"]),
            size_bytes=int(row["size_bytes"]),
            indexed_at=row["indexed_at"],
        )
        for row in rows
    }


def _upsert_file(conn: sqlite3.Connection, record: StoredFile) -> None:
    conn.execute(
        """
        INSERT INTO indexed_file (path, content_hash, mtime_ms, size_bytes, indexed_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(path) DO UPDATE SET
            content_hash = excluded.content_hash,
            mtime_ms = excluded.mtime_ms,
            size_bytes = excluded.size_bytes,
            indexed_at = excluded.indexed_at
        """,
        (
            record.path,
            record.content_hash,
            record.mtime_ms,
            record.size_bytes,
            record.indexed_at or utc_now(),
        ),
    )


def replace_file_chunks(
    conn: sqlite3.Connection,
    record: StoredFile,
    chunks: Sequence[Chunk],
) -> None:
    """Write *record* and swap its whole chunk set in one transaction."""

    with conn:
        conn.execute("BEGIN IMMEDIATE;")
        _upsert_file(conn, record)
        conn.execute("DELETE FROM indexed_chunk WHERE path = ?", (record.path,))
        conn.executemany(
            """
            INSERT INTO indexed_chunk (path, chunk_index, start_line, end_line, content)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (record.path, chunk.index, chunk.start_line, chunk.end_line, chunk.text)
                for chunk in chunks
            ],
        )


def update_file_metadata(conn: sqlite3.Connection, record: StoredFile) -> None:
    with conn:
        conn.execute("BEGIN IMMEDIATE;")
        conn.execute(
            """
            UPDATE indexed_file
            SET content_hash = ?, mtime_ms = ?, size_bytes = ?, indexed_at = ?
            WHERE path = ?
            """,
            (
                record.content_hash,
                record.mtime_ms,
                record.size_bytes,
                record.indexed_at or utc_now(),
                record.path,
            ),
        )


def delete_missing_files(conn: sqlite3.Connection, observed: Iterable[str]) -> list[str]:
    """Delete every stored file whose path is not in *observed*."""

    keep = set(observed)
    stale = sorted(path for path in list_indexed_files(conn) if path not in keep)
    if not stale:
        return []
    with conn:
        conn.execute("BEGIN IMMEDIATE;")
        params = [(path,) for path in stale]
        # chunks first so the FTS delete trigger sees every row
        conn.executemany("DELETE FROM indexed_chunk WHERE path = ?", params)
        conn.executemany("DELETE FROM indexed_file WHERE path = ?", params)
    return stale


def list_chunks_missing_embeddings(
    conn: sqlite3.Connection,
    model: str,
    limit: int,
) -> list[PendingChunk]:
    rows = conn.execute(
        """
        SELECT c.id, c.path, c.content
        FROM indexed_chunk AS c
        LEFT JOIN chunk_embedding AS e
            ON e.chunk_id = c.id AND e.model = ?
        WHERE e.chunk_id IS NULL
        ORDER BY c.id ASC
        LIMIT ?
        """,
        (model, max(0, int(limit))),
    ).fetchall()
    return [
        PendingChunk(chunk_id=int(row["id"]), path=row["path"], content=row["content"])
        for row in rows
    ]


def upsert_embeddings(
    conn: sqlite3.Connection,
    model: str,
    entries: Sequence[tuple[int, np.ndarray]],
) -> int:
    """Insert or replace one vector per ``(chunk_id, vector)`` pair."""

    if not entries:
        return 0
    embedded_at = utc_now()
    rows = []
    for chunk_id, vector in entries:
        array = np.asarray(vector, dtype=np.float32).reshape(-1)
        rows.append((int(chunk_id), model, int(array.size), array.tobytes(), embedded_at))
    with conn:
        conn.execute("BEGIN IMMEDIATE;")
        conn.executemany(
            """
            INSERT INTO chunk_embedding (chunk_id, model, dimension, vector_blob, embedded_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(chunk_id, model) DO UPDATE SET
                dimension = excluded.dimension,
                vector_blob = excluded.vector_blob,
                embedded_at = excluded.embedded_at
            """,
            rows,
        )
    return len(rows)


def delete_embeddings_for_model(conn: sqlite3.Connection, model: str) -> int:
    with conn:
        conn.execute("BEGIN IMMEDIATE;")
        cursor = conn.execute("DELETE FROM chunk_embedding WHERE model = ?", (model,))
    return int(cursor.rowcount or 0)


def tokenize_query(query: str) -> list[str]:
    """Split on whitespace, lowercase and keep tokens longer than one character."""
    return [token for token in query.lower().split() if len(token) > 1]


def build_match_query(tokens: Sequence[str]) -> str:
    """Return a conjunctive FTS5 prefix query, or ``""`` when nothing survives."""
    terms: list[str] = []
    for token in tokens:
        term = _TERM_STRIP_RE.sub("", token)
        if _WORD_CHAR_RE.search(term):
            terms.append(f'"{term}"*')
    return " AND ".join(terms)


def make_snippet(content: str, line_offset: int) -> str:
    """Return a trimmed window of lines around *line_offset*, capped in length."""
    lines = content.split("\n")
    start = max(0, line_offset - SNIPPET_LINES_BEFORE)
    end = min(len(lines), line_offset + SNIPPET_LINES_AFTER + 1)
    snippet = "\n".join(lines[start:end]).strip()
    if len(snippet) > SNIPPET_MAX_CHARS:
        return snippet[: SNIPPET_MAX_CHARS - 3] + "..."
    return snippet


def _match_line_offset(content: str, tokens: Sequence[str]) -> int:
    for offset, line in enumerate(content.split("\n")):
        lowered = line.lower()
        if any(token in lowered for token in tokens):
            return offset
    return 0


def search_keyword(
    conn: sqlite3.Connection,
    query: str,
    *,
    limit: int,
    min_score: float = 0.0,
) -> list[SearchResult]:
    """Run a BM25-ranked prefix match over chunk text."""

    tokens = tokenize_query(query)
    match_query = build_match_query(tokens)
    if not match_query or limit <= 0:
        return []
    rows = conn.execute(
        """
        SELECT c.path, c.chunk_index, c.start_line, c.end_line, c.content,
               bm25(chunk_fts) AS bm25_score
        FROM chunk_fts
        JOIN indexed_chunk AS c ON c.id = chunk_fts.rowid
        WHERE chunk_fts MATCH ?
        ORDER BY bm25_score ASC
        LIMIT ?
        """,
        (match_query, int(limit)),
    ).fetchall()
    results: list[SearchResult] = []
    for row in rows:
        raw = abs(float(row["bm25_score"] or 0.0))
        score = raw / (1.0 + raw)
        if score < min_score:
            continue
        content = row["content"]
        offset = _match_line_offset(content, tokens)
        results.append(
            SearchResult(
                path=row["path"],
                line=int(row["start_line"]) + offset,
                start_line=int(row["start_line"]),
                end_line=int(row["end_line"]),
                score=score,
                snippet=make_snippet(content, offset),
                source=SOURCE_KEYWORD,
                chunk_index=int(row["chunk_index"]),
                keyword_score=score,
            )
        )
    logger.debug("Keyword query %r matched %d chunks", match_query, len(results))
    return results


def search_vector(
    conn: sqlite3.Connection,
    query_vector: Sequence[float] | np.ndarray,
    model: str,
    *,
    limit: int,
    min_score: float = 0.0,
    full_chunk: bool = False,
) -> list[SearchResult]:
    """Score every stored vector of *model* against *query_vector* by cosine."""

    query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
    if query.size == 0 or limit <= 0:
        return []
    rows = conn.execute(
        """
        SELECT c.path, c.chunk_index, c.start_line, c.end_line, c.content,
               e.dimension, e.vector_blob
        FROM chunk_embedding AS e
        JOIN indexed_chunk AS c ON c.id = e.chunk_id
        WHERE e.model = ?
        """,
        (model,),
    ).fetchall()
    candidates = []
    vectors = []
    skipped = 0
    for row in rows:
        if int(row["dimension"]) != query.size:
            skipped += 1
            continue
        vector = np.frombuffer(row["vector_blob"], dtype=np.float32)
        if vector.size != query.size:
            skipped += 1
            continue
        candidates.append(row)
        vectors.append(vector)
    if skipped:
        logger.debug("Skipped %d vectors with mismatched dimension for %s", skipped, model)
    if not candidates:
        return []
    similarities = cosine_similarity(query.reshape(1, -1), np.vstack(vectors))[0]
    results: list[SearchResult] = []
    for row, similarity in zip(candidates, similarities):
        score = (float(similarity) + 1.0) / 2.0
        if score < min_score:
            continue
        content = row["content"]
        results.append(
            SearchResult(
                path=row["path"],
                line=int(row["start_line"]),
                start_line=int(row["start_line"]),
                end_line=int(row["end_line"]),
                score=score,
                snippet=content if full_chunk else make_snippet(content, 0),
                source=SOURCE_VECTOR,
                chunk_index=int(row["chunk_index"]),
                vector_score=score,
            )
        )
    results.sort(key=sort_key)
    return results[:limit]


def load_store_counts(conn: sqlite3.Connection, model: str | None = None) -> StoreCounts:
    file_row = conn.execute(
        "SELECT COUNT(*) AS count, MAX(indexed_at) AS last FROM indexed_file"
    ).fetchone()
    chunk_row = conn.execute("SELECT COUNT(*) AS count FROM indexed_chunk").fetchone()
    if model:
        embedded_row = conn.execute(
            "SELECT COUNT(*) AS count FROM chunk_embedding WHERE model = ?",
            (model,),
        ).fetchone()
    else:
        embedded_row = conn.execute(
            "SELECT COUNT(DISTINCT chunk_id) AS count FROM chunk_embedding"
        ).fetchone()
    return StoreCounts(
        indexed_files=int(file_row["count"] or 0),
        indexed_chunks=int(chunk_row["count"] or 0),
        embedded_chunks=int(embedded_row["count"] or 0),
        last_indexed_at=file_row["last"],
    )
