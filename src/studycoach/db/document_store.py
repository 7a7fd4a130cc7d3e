"""SQLite-backed document store.

Documents are JSON objects addressed by slash-separated paths, in the
style of ``users/{uid}/studentProfiles/{pid}``: a collection path has an
odd number of segments, a document path an even number.

Operations:
- get(path): scoped lookup returning zero-or-one document
- query(collection, order_by, descending, limit): ordered collection read
- add(collection, data): append with a generated identifier
- upsert(path, data): merge write, unspecified fields are preserved
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

import structlog

from studycoach.core.errors import classify_persistence_error

logger = structlog.get_logger(__name__)

# Default database location
DEFAULT_DB_PATH = Path("db/studycoach.db")


def _split_path(path: str) -> list[str]:
    segments = [s for s in path.strip("/").split("/") if s]
    if not segments:
        raise ValueError("Empty document path")
    return segments


def split_document_path(path: str) -> tuple[str, str]:
    """Split a document path into (collection, doc_id).

    Raises:
        ValueError: If the path does not address a document
    """
    segments = _split_path(path)
    if len(segments) % 2 != 0:
        raise ValueError(f"Not a document path: {path}")
    return "/".join(segments[:-1]), segments[-1]


def normalize_collection_path(path: str) -> str:
    """Validate and normalize a collection path.

    Raises:
        ValueError: If the path does not address a collection
    """
    segments = _split_path(path)
    if len(segments) % 2 != 1:
        raise ValueError(f"Not a collection path: {path}")
    return "/".join(segments)


def generate_document_id() -> str:
    """Generate a new document identifier."""
    return uuid.uuid4().hex


class DocumentStore:
    """Document store over a single SQLite file.

    Every call opens its own connection, so one store can be shared across
    threads (``asyncio.to_thread`` writers included).
    """

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DEFAULT_DB_PATH
        self._schema_ready = False

    def init(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._connect("init", str(self.db_path)):
            pass

        logger.info("document_store.initialized", path=str(self.db_path))

    @contextmanager
    def _connect(self, operation: str, path: str) -> Generator[sqlite3.Connection, None, None]:
        """Open a connection, translating storage failures.

        Yields:
            SQLite connection with row factory set to sqlite3.Row
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
        except (sqlite3.Error, OSError) as e:
            raise classify_persistence_error(e, operation, path) from e

        conn.row_factory = sqlite3.Row

        try:
            if not self._schema_ready:
                _create_schema(conn)
                self._schema_ready = True
            yield conn
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            conn.rollback()
            raise classify_persistence_error(e, operation, path) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, path: str) -> dict[str, Any] | None:
        """Fetch one document by path.

        Returns:
            The document (with its ``id``) or None if it doesn't exist
        """
        collection, doc_id = split_document_path(path)

        with self._connect("get", path) as conn:
            row = conn.execute(
                "SELECT doc_id, data FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            ).fetchone()

        if row is None:
            return None
        return _row_to_document(row)

    def query(
        self,
        collection: str,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Read documents from a collection.

        Args:
            collection: Collection path
            order_by: Top-level document field to order by (insertion order if None)
            descending: Reverse the ordering
            limit: Maximum number of documents to return

        Returns:
            List of documents, each with its ``id``
        """
        collection = normalize_collection_path(collection)
        direction = "DESC" if descending else "ASC"

        sql = "SELECT doc_id, data FROM documents WHERE collection = ?"
        params: list[Any] = [collection]

        if order_by:
            sql += f" ORDER BY json_extract(data, ?) {direction}, seq {direction}"
            params.append(f"$.{order_by}")
        else:
            sql += f" ORDER BY seq {direction}"

        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._connect("query", collection) as conn:
            rows = conn.execute(sql, params).fetchall()

        return [_row_to_document(row) for row in rows]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def add(self, collection: str, data: dict[str, Any]) -> str:
        """Append a document with a generated identifier.

        Returns:
            The new document id
        """
        collection = normalize_collection_path(collection)
        doc_id = generate_document_id()
        now = datetime.now(timezone.utc).isoformat()
        payload = {k: v for k, v in data.items() if k != "id"}

        with self._connect("add", collection) as conn:
            conn.execute(
                """
                INSERT INTO documents (collection, doc_id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (collection, doc_id, json.dumps(payload, ensure_ascii=False), now, now),
            )

        logger.debug("document_added", collection=collection, doc_id=doc_id)
        return doc_id

    def upsert(self, path: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create or merge a document at a fixed path.

        Fields absent from ``data`` keep their stored values.

        Returns:
            The merged document
        """
        collection, doc_id = split_document_path(path)
        now = datetime.now(timezone.utc).isoformat()

        with self._connect("upsert", path) as conn:
            row = conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            ).fetchone()

            merged = json.loads(row["data"]) if row is not None else {}
            merged.update({k: v for k, v in data.items() if k != "id"})
            encoded = json.dumps(merged, ensure_ascii=False)

            if row is None:
                conn.execute(
                    """
                    INSERT INTO documents (collection, doc_id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (collection, doc_id, encoded, now, now),
                )
            else:
                conn.execute(
                    """
                    UPDATE documents SET data = ?, updated_at = ?
                    WHERE collection = ? AND doc_id = ?
                    """,
                    (encoded, now, collection, doc_id),
                )

        logger.debug("document_upserted", collection=collection, doc_id=doc_id)
        return {"id": doc_id, **merged}


def _row_to_document(row: sqlite3.Row) -> dict[str, Any]:
    data = json.loads(row["data"])
    return {"id": row["doc_id"], **data}


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema. Uses IF NOT EXISTS for idempotency."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS documents (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            collection TEXT NOT NULL,
            doc_id TEXT NOT NULL,
            data TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(collection, doc_id)
        );

        CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);
        """
    )
