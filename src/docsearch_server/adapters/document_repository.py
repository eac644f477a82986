"""Canonical document store: the source of truth the search index is derived from."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from contextlib import closing
import json
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Any, TypeVar

import anyio

from docsearch_server.domain.errors import InvalidIdentifier, StoreUnavailable
from docsearch_server.domain.model import CanonicalDocument, DocumentPatch, parse_document_id


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _normalize_id(document_id: str) -> str | None:
    """Return the normalized id, or None when it is malformed (treated as not found)."""
    try:
        return parse_document_id(document_id)
    except InvalidIdentifier:
        logger.debug("Rejected malformed document id %r", document_id)
        return None


class AbstractDocumentRepository(ABC):
    """Abstract repository for the CanonicalDocument aggregate.

    Lookups by an unknown or malformed id return ``None`` / ``False``.
    Implementations raise ``StoreUnavailable`` when the backing store fails.
    """

    @abstractmethod
    async def create(self, document: CanonicalDocument) -> CanonicalDocument:
        """Persist a new document and return it."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, document_id: str) -> CanonicalDocument | None:
        raise NotImplementedError

    @abstractmethod
    async def list(self, limit: int = 100, offset: int = 0) -> list[CanonicalDocument]:
        """List documents in creation order."""
        raise NotImplementedError

    @abstractmethod
    async def list_by_category(self, category: str, limit: int = 100) -> list[CanonicalDocument]:
        raise NotImplementedError

    @abstractmethod
    async def list_by_tags(self, tags: Sequence[str], limit: int = 100) -> list[CanonicalDocument]:
        """List documents carrying at least one of ``tags``."""
        raise NotImplementedError

    @abstractmethod
    async def list_all(self) -> list[CanonicalDocument]:
        """Return every document (used to rebuild the index)."""
        raise NotImplementedError

    @abstractmethod
    async def update(self, document_id: str, patch: DocumentPatch) -> CanonicalDocument | None:
        """Apply ``patch`` and return the merged document, or None when the id is unknown."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        """Delete a document.

        Returns:
            True if the document was deleted, False if not found
        """
        raise NotImplementedError

    @abstractmethod
    async def count(self) -> int:
        raise NotImplementedError

    async def close(self) -> None:  # noqa: B027 - optional hook
        """Release resources held by the repository."""


_CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS documents (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        category TEXT,
        tags TEXT NOT NULL DEFAULT '[]',
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_documents_category ON documents(category);
"""

_COLUMNS = "id, title, content, category, tags, metadata, created_at, updated_at"


def _row_to_document(row: sqlite3.Row) -> CanonicalDocument:
    return CanonicalDocument.from_dict(
        {
            "id": row["id"],
            "title": row["title"],
            "content": row["content"],
            "category": row["category"],
            "tags": json.loads(row["tags"]),
            "metadata": json.loads(row["metadata"]),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }
    )


def _document_params(document: CanonicalDocument) -> tuple[Any, ...]:
    data = document.to_dict()
    return (
        data["id"],
        data["title"],
        data["content"],
        data["category"],
        json.dumps(data["tags"]),
        json.dumps(data["metadata"]),
        data["created_at"],
        data["updated_at"],
    )


class SqliteDocumentRepository(AbstractDocumentRepository):
    """Repository backed by a SQLite file.

    Every operation opens a short-lived connection in a worker thread, so the
    event loop never blocks on disk I/O.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path).expanduser()
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        if not self._schema_ready:
            with self._schema_lock:
                conn.executescript(_CREATE_TABLE)
                self._schema_ready = True
        return conn

    async def _run(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        def runner() -> T:
            try:
                with closing(self._connect()) as conn, conn:
                    return operation(conn)
            except sqlite3.Error as exc:
                msg = f"Document store at {self.db_path} is unavailable: {exc}"
                raise StoreUnavailable(msg) from exc

        return await anyio.to_thread.run_sync(runner)

    async def create(self, document: CanonicalDocument) -> CanonicalDocument:
        await self._run(
            lambda conn: conn.execute(
                f"INSERT INTO documents ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                _document_params(document),
            )
        )
        return document

    async def get(self, document_id: str) -> CanonicalDocument | None:
        normalized = _normalize_id(document_id)
        if normalized is None:
            return None
        return await self._run(lambda conn: self._get(conn, normalized))

    @staticmethod
    def _get(conn: sqlite3.Connection, document_id: str) -> CanonicalDocument | None:
        row = conn.execute(f"SELECT {_COLUMNS} FROM documents WHERE id = ?", (document_id,)).fetchone()
        return _row_to_document(row) if row else None

    async def list(self, limit: int = 100, offset: int = 0) -> list[CanonicalDocument]:
        return await self._run(
            lambda conn: [
                _row_to_document(row)
                for row in conn.execute(
                    f"SELECT {_COLUMNS} FROM documents ORDER BY seq LIMIT ? OFFSET ?",
                    (max(limit, 0), max(offset, 0)),
                )
            ]
        )

    async def list_by_category(self, category: str, limit: int = 100) -> list[CanonicalDocument]:
        return await self._run(
            lambda conn: [
                _row_to_document(row)
                for row in conn.execute(
                    f"SELECT {_COLUMNS} FROM documents WHERE category = ? ORDER BY seq LIMIT ?",
                    (category, max(limit, 0)),
                )
            ]
        )

    async def list_by_tags(self, tags: Sequence[str], limit: int = 100) -> list[CanonicalDocument]:
        wanted = [tag for tag in dict.fromkeys(tags) if tag]
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        sql = (
            f"SELECT {_COLUMNS} FROM documents WHERE EXISTS ("
            f"SELECT 1 FROM json_each(documents.tags) WHERE json_each.value IN ({placeholders})"
            ") ORDER BY seq LIMIT ?"
        )
        return await self._run(
            lambda conn: [_row_to_document(row) for row in conn.execute(sql, (*wanted, max(limit, 0)))]
        )

    async def list_all(self) -> list[CanonicalDocument]:
        return await self._run(
            lambda conn: [
                _row_to_document(row) for row in conn.execute(f"SELECT {_COLUMNS} FROM documents ORDER BY seq")
            ]
        )

    async def update(self, document_id: str, patch: DocumentPatch) -> CanonicalDocument | None:
        normalized = _normalize_id(document_id)
        if normalized is None:
            return None

        def apply(conn: sqlite3.Connection) -> CanonicalDocument | None:
            current = self._get(conn, normalized)
            if current is None:
                return None
            merged = patch.apply(current)
            params = _document_params(merged)
            conn.execute(
                "UPDATE documents SET title = ?, content = ?, category = ?, tags = ?, metadata = ?, "
                "created_at = ?, updated_at = ? WHERE id = ?",
                (*params[1:], normalized),
            )
            return merged

        return await self._run(apply)

    async def delete(self, document_id: str) -> bool:
        normalized = _normalize_id(document_id)
        if normalized is None:
            return False
        return await self._run(
            lambda conn: conn.execute("DELETE FROM documents WHERE id = ?", (normalized,)).rowcount > 0
        )

    async def count(self) -> int:
        return await self._run(lambda conn: int(conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]))


class InMemoryDocumentRepository(AbstractDocumentRepository):
    """In-memory repository for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._documents: dict[str, CanonicalDocument] = {}

    async def create(self, document: CanonicalDocument) -> CanonicalDocument:
        if document.id in self._documents:
            msg = f"Document {document.id} already exists"
            raise StoreUnavailable(msg)
        self._documents[document.id] = document
        return document

    async def get(self, document_id: str) -> CanonicalDocument | None:
        normalized = _normalize_id(document_id)
        return self._documents.get(normalized) if normalized else None

    async def list(self, limit: int = 100, offset: int = 0) -> list[CanonicalDocument]:
        offset = max(offset, 0)
        return list(self._documents.values())[offset : offset + max(limit, 0)]

    async def list_by_category(self, category: str, limit: int = 100) -> list[CanonicalDocument]:
        return [doc for doc in self._documents.values() if doc.category == category][: max(limit, 0)]

    async def list_by_tags(self, tags: Sequence[str], limit: int = 100) -> list[CanonicalDocument]:
        wanted = {tag for tag in tags if tag}
        return [doc for doc in self._documents.values() if wanted.intersection(doc.tags)][: max(limit, 0)]

    async def list_all(self) -> list[CanonicalDocument]:
        return list(self._documents.values())

    async def update(self, document_id: str, patch: DocumentPatch) -> CanonicalDocument | None:
        normalized = _normalize_id(document_id)
        current = self._documents.get(normalized) if normalized else None
        if current is None:
            return None
        merged = patch.apply(current)
        self._documents[merged.id] = merged
        return merged

    async def delete(self, document_id: str) -> bool:
        normalized = _normalize_id(document_id)
        if normalized is None or normalized not in self._documents:
            return False
        del self._documents[normalized]
        return True

    async def count(self) -> int:
        return len(self._documents)
