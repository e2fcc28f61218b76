"""SQLite collection store with sqlite-vec similarity and FTS5 lexical indexes."""

import json
import logging
import re
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import sqlite_vec

from context_mcp.errors import StoreError, ValidationError
from context_mcp.indexer.filters import FIELD_COLUMNS, compile_filter
from context_mcp.indexer.models import Collection, Document

logger = logging.getLogger(__name__)

TABLE_PREFIX = "collection_"

REGISTRY_SQL = """
PRAGMA journal_mode = WAL;

-- Collection registry, one row per collection
CREATE TABLE IF NOT EXISTS collections (
    name         TEXT PRIMARY KEY,
    dimension    INTEGER NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    created_at   TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at   TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

COLLECTION_SQL = """
-- Documents table
CREATE TABLE IF NOT EXISTS {table} (
    doc_rowid       INTEGER PRIMARY KEY,
    id              TEXT NOT NULL UNIQUE,
    vector          BLOB NOT NULL,
    content         TEXT NOT NULL,
    relative_path   TEXT NOT NULL,
    start_line      INTEGER NOT NULL,
    end_line        INTEGER NOT NULL,
    file_extension  TEXT NOT NULL DEFAULT '',
    is_definition   INTEGER NOT NULL DEFAULT 0,
    metadata        TEXT NOT NULL DEFAULT '{{}}',
    created_at      TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS {table}_path_idx ON {table}(relative_path);
CREATE INDEX IF NOT EXISTS {table}_ext_idx ON {table}(file_extension);

-- Similarity index (cosine distance)
CREATE VIRTUAL TABLE IF NOT EXISTS {table}_vec USING vec0(
    embedding float[{dimension}] distance_metric=cosine
);

-- Lexical index over content
CREATE VIRTUAL TABLE IF NOT EXISTS {table}_fts USING fts5(
    content,
    content='{table}',
    content_rowid='doc_rowid',
    tokenize='porter unicode61'
);

-- Triggers to keep FTS5 synchronized
CREATE TRIGGER IF NOT EXISTS {table}_ai AFTER INSERT ON {table} BEGIN
    INSERT INTO {table}_fts(rowid, content) VALUES (NEW.doc_rowid, NEW.content);
END;

CREATE TRIGGER IF NOT EXISTS {table}_ad AFTER DELETE ON {table} BEGIN
    INSERT INTO {table}_fts({table}_fts, rowid, content)
    VALUES ('delete', OLD.doc_rowid, OLD.content);
END;

CREATE TRIGGER IF NOT EXISTS {table}_au AFTER UPDATE ON {table} BEGIN
    INSERT INTO {table}_fts({table}_fts, rowid, content)
    VALUES ('delete', OLD.doc_rowid, OLD.content);
    INSERT INTO {table}_fts(rowid, content) VALUES (NEW.doc_rowid, NEW.content);
END;
"""

# Fields selectable through query(): alias -> column
QUERY_FIELDS: dict[str, str] = {
    **FIELD_COLUMNS,
    "content": "content",
    "metadata": "metadata",
}

# SQLite's default limit on host parameters is 999 on older builds
_DELETE_BATCH = 500

_WORD = re.compile(r"\w+", re.UNICODE)


def table_name(collection_name: str) -> str:
    """Map a collection name to a storage-safe table name."""
    return TABLE_PREFIX + re.sub(r"[^a-z0-9_]", "_", collection_name.lower())


def build_match_query(text: str) -> str | None:
    """Turn free text into an FTS5 query of quoted terms joined by OR."""
    terms = _WORD.findall(text)
    if not terms:
        return None
    return " OR ".join(f'"{term}"' for term in dict.fromkeys(terms))


def serialize_vector(vector: list[float]) -> bytes:
    """Pack a vector as little-endian float32 for sqlite-vec."""
    return sqlite_vec.serialize_float32(list(vector))


class CollectionStore:
    """SQLite store holding one table set per collection.

    Every collection gets a documents table, a vec0 similarity index and an
    FTS5 lexical index. Connections are thread-local so background indexing
    and concurrent searches each get their own; writes are serialised.
    """

    def __init__(self, db_path: Path, max_collections: int | None = None):
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file
            max_collections: Optional ceiling on the number of collections
        """
        self.db_path = db_path
        self.max_collections = max_collections
        self._local = threading.local()
        self._write_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection with sqlite-vec loaded."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
            conn.row_factory = sqlite3.Row
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
            self._local.conn = conn
        return self._local.conn

    @contextmanager
    def _read_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for read operations."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            cursor.close()

    @contextmanager
    def _write_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for write operations with locking."""
        with self._write_lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(str(e)) from e
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def initialize(self) -> None:
        """Initialize the collection registry."""
        with self._write_cursor() as cursor:
            cursor.executescript(REGISTRY_SQL)

    def close(self) -> None:
        """Close the current thread's database connection."""
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None

    # Collection operations

    def create_collection(self, name: str, dimension: int, description: str = "") -> None:
        """Create a collection, or update its registry row if it exists.

        Existing documents and indexes are never dropped.
        """
        if dimension <= 0:
            raise ValidationError(f"Dimension must be positive, got {dimension}")

        existing = self.get_collection(name)
        if existing and existing.dimension != dimension:
            logger.warning(
                "Collection %s re-registered with dimension %d (was %d)",
                name,
                dimension,
                existing.dimension,
            )

        table = table_name(name)
        with self._write_cursor() as cursor:
            cursor.executescript(COLLECTION_SQL.format(table=table, dimension=int(dimension)))
            cursor.execute(
                """INSERT INTO collections (name, dimension, description)
                VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    dimension = excluded.dimension,
                    description = excluded.description,
                    updated_at = datetime('now')
                """,
                (name, dimension, description or ""),
            )
        logger.info("Collection %s ready (dimension %d)", name, dimension)

    def drop_collection(self, name: str) -> None:
        """Drop a collection and all of its indexes."""
        table = table_name(name)
        with self._write_cursor() as cursor:
            cursor.execute(f"DROP TABLE IF EXISTS {table}_fts")
            cursor.execute(f"DROP TABLE IF EXISTS {table}_vec")
            cursor.execute(f"DROP TABLE IF EXISTS {table}")
            cursor.execute("DELETE FROM collections WHERE name = ?", (name,))
        logger.info("Collection %s dropped", name)

    def has_collection(self, name: str) -> bool:
        """Check whether a collection is registered."""
        return self.get_collection(name) is not None

    def get_collection(self, name: str) -> Collection | None:
        """Get a collection's registry entry."""
        with self._read_cursor() as cursor:
            cursor.execute(
                "SELECT name, dimension, description FROM collections WHERE name = ?",
                (name,),
            )
            row = cursor.fetchone()
            if row:
                return Collection(
                    name=row["name"],
                    dimension=row["dimension"],
                    description=row["description"],
                )
            return None

    def list_collections(self) -> list[str]:
        """List collection names in alphabetical order."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT name FROM collections ORDER BY name")
            return [row["name"] for row in cursor.fetchall()]

    def check_collection_limit(self) -> bool:
        """Return True if another collection can be created."""
        if self.max_collections is None:
            return True
        return len(self.list_collections()) < self.max_collections

    def _require_collection(self, name: str) -> Collection:
        collection = self.get_collection(name)
        if collection is None:
            raise StoreError(f"Collection '{name}' does not exist")
        return collection

    # Document operations

    def insert(self, name: str, documents: list[Document]) -> None:
        """Upsert documents by id. Every column, including the vector, is replaced."""
        if not documents:
            return
        collection = self._require_collection(name)
        for doc in documents:
            if len(doc.vector) != collection.dimension:
                raise ValidationError(
                    f"Document {doc.id} has vector width {len(doc.vector)}, "
                    f"collection '{name}' expects {collection.dimension}"
                )

        table = table_name(name)
        with self._write_cursor() as cursor:
            for doc in documents:
                payload = serialize_vector(doc.vector)
                cursor.execute(
                    f"""INSERT INTO {table}
                    (id, vector, content, relative_path, start_line, end_line,
                     file_extension, is_definition, metadata)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        vector = excluded.vector,
                        content = excluded.content,
                        relative_path = excluded.relative_path,
                        start_line = excluded.start_line,
                        end_line = excluded.end_line,
                        file_extension = excluded.file_extension,
                        is_definition = excluded.is_definition,
                        metadata = excluded.metadata
                    """,
                    (
                        doc.id,
                        payload,
                        doc.content,
                        doc.relative_path,
                        doc.start_line,
                        doc.end_line,
                        doc.file_extension,
                        1 if doc.is_definition else 0,
                        json.dumps(doc.metadata or {}),
                    ),
                )
                cursor.execute(f"SELECT doc_rowid FROM {table} WHERE id = ?", (doc.id,))
                rowid = cursor.fetchone()["doc_rowid"]
                # vec0 has no upsert: replace the index row explicitly
                cursor.execute(f"DELETE FROM {table}_vec WHERE rowid = ?", (rowid,))
                cursor.execute(
                    f"INSERT INTO {table}_vec(rowid, embedding) VALUES (?, ?)",
                    (rowid, payload),
                )
        logger.debug("Inserted %d documents into %s", len(documents), name)

    def delete(self, name: str, ids: list[str]) -> None:
        """Delete documents by id. Unknown ids are ignored."""
        if not ids:
            return
        self._require_collection(name)
        table = table_name(name)
        with self._write_cursor() as cursor:
            for start in range(0, len(ids), _DELETE_BATCH):
                batch = ids[start : start + _DELETE_BATCH]
                placeholders = ", ".join("?" for _ in batch)
                cursor.execute(
                    f"SELECT doc_rowid FROM {table} WHERE id IN ({placeholders})",
                    batch,
                )
                rowids = [row["doc_rowid"] for row in cursor.fetchall()]
                if rowids:
                    cursor.executemany(
                        f"DELETE FROM {table}_vec WHERE rowid = ?",
                        [(rowid,) for rowid in rowids],
                    )
                cursor.execute(f"DELETE FROM {table} WHERE id IN ({placeholders})", batch)
        logger.debug("Deleted %d documents from %s", len(ids), name)

    def count(self, name: str) -> int:
        """Count documents in a collection."""
        self._require_collection(name)
        with self._read_cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS n FROM {table_name(name)}")
            return cursor.fetchone()["n"]

    def query(
        self,
        name: str,
        filter_expr: str | None,
        fields: list[str],
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Select fields of documents matching a filter expression.

        Args:
            name: Collection name
            filter_expr: Filter expression (see filters module), or None
            fields: Field names to return (camelCase aliases accepted)
            limit: Maximum number of rows (default: 100)

        Returns:
            List of dicts keyed by the requested field names.
        """
        unknown = [f for f in fields if f not in QUERY_FIELDS]
        if unknown or not fields:
            raise ValidationError(f"Unknown query fields: {unknown or fields}")

        self._require_collection(name)
        columns = [QUERY_FIELDS[f] for f in fields]
        where, params = compile_filter(filter_expr)
        sql = (
            f"SELECT {', '.join(columns)} FROM {table_name(name)} "
            f"WHERE {where} ORDER BY doc_rowid LIMIT ?"
        )

        with self._read_cursor() as cursor:
            cursor.execute(sql, [*params, limit or 100])
            results = []
            for row in cursor.fetchall():
                record = {}
                for field, column in zip(fields, columns):
                    record[field] = _decode_column(column, row[column])
                results.append(record)
            return results

    # Ranking primitives

    def vector_candidates(
        self,
        name: str,
        query_vector: list[float],
        limit: int,
        filter_expr: str | None = None,
    ) -> list[tuple[str, float]]:
        """Top documents by cosine similarity as (id, similarity) pairs.

        Unfiltered queries use the vec0 index; filtered queries compute the
        exact distance over the filtered rows so the limit applies after
        filtering.
        """
        collection = self._require_collection(name)
        if len(query_vector) != collection.dimension:
            raise ValidationError(
                f"Query vector width {len(query_vector)} does not match "
                f"collection '{name}' dimension {collection.dimension}"
            )

        table = table_name(name)
        payload = serialize_vector(query_vector)
        where, params = compile_filter(filter_expr)

        if filter_expr is None or where == "1=1":
            sql = f"""
                SELECT d.id AS id, v.distance AS distance
                FROM (
                    SELECT rowid, distance FROM {table}_vec
                    WHERE embedding MATCH ? AND k = ?
                ) v
                JOIN {table} d ON d.doc_rowid = v.rowid
                ORDER BY v.distance, d.doc_rowid
            """
            args: list = [payload, limit]
        else:
            sql = f"""
                SELECT id, vec_distance_cosine(vector, ?) AS distance
                FROM {table}
                WHERE {where}
                ORDER BY distance, doc_rowid
                LIMIT ?
            """
            args = [payload, *params, limit]

        with self._read_cursor() as cursor:
            cursor.execute(sql, args)
            return [(row["id"], 1.0 - float(row["distance"])) for row in cursor.fetchall()]

    def lexical_candidates(
        self,
        name: str,
        text: str,
        limit: int,
        filter_expr: str | None = None,
    ) -> list[tuple[str, float]]:
        """Top documents by FTS5 bm25 as (id, score) pairs.

        bm25() is negative-is-better and unbounded; the score returned is
        r / (1 + r) with r = -bm25, a value in [0, 1).
        """
        self._require_collection(name)
        match = build_match_query(text)
        if match is None:
            return []

        table = table_name(name)
        where, params = compile_filter(filter_expr)
        sql = f"""
            SELECT d.id AS id, bm25({table}_fts) AS rank
            FROM {table}_fts
            JOIN {table} d ON d.doc_rowid = {table}_fts.rowid
            WHERE {table}_fts MATCH ? AND {where}
            ORDER BY rank, d.doc_rowid
            LIMIT ?
        """

        with self._read_cursor() as cursor:
            cursor.execute(sql, [match, *params, limit])
            results = []
            for row in cursor.fetchall():
                relevance = max(0.0, -float(row["rank"]))
                results.append((row["id"], relevance / (1.0 + relevance)))
            return results

    def fetch_documents(self, name: str, ids: list[str]) -> dict[str, Document]:
        """Load documents by id, without their vectors."""
        if not ids:
            return {}
        table = table_name(name)
        placeholders = ", ".join("?" for _ in ids)
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT id, content, relative_path, start_line, end_line,
                       file_extension, is_definition, metadata
                FROM {table} WHERE id IN ({placeholders})""",
                ids,
            )
            return {row["id"]: _row_to_document(row) for row in cursor.fetchall()}


def _decode_column(column: str, value: Any) -> Any:
    if column == "metadata":
        return json.loads(value) if value else {}
    if column == "is_definition":
        return bool(value)
    return value


def _row_to_document(row: sqlite3.Row) -> Document:
    """Convert a database row to a Document. The vector is left empty."""
    return Document(
        id=row["id"],
        vector=[],
        content=row["content"],
        relative_path=row["relative_path"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        file_extension=row["file_extension"],
        is_definition=bool(row["is_definition"]),
        metadata=json.loads(row["metadata"]) if row["metadata"] else {},
    )
