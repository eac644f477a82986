"""SQLite-backed inverted index: one mutation handle, many point-in-time readers.

Layout of ``<index dir>/index.db``:
- ``documents``: one row per live record; ``docnum`` is the internal document
  number (monotonic, so it doubles as insertion order) and ``doc_key`` the
  exact-match mutation key.
- ``postings``: ``(field, term, docnum)`` with term frequency and the
  positions encoded as a binary ``array('I')``.
- ``field_lengths``: token count per analyzed field, for BM25 normalization.
- ``metadata``: schema JSON and the committed ``generation`` counter.

The database runs in WAL mode. ``IndexWriter`` is the only connection that
writes; every ``IndexSnapshot`` is a separate connection parked inside a read
transaction, so it keeps seeing the generation it was opened at no matter
how many commits follow.
"""

from __future__ import annotations

from array import array
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import json
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Any

from docsearch_server.domain.errors import IndexLockError, IndexSchemaMismatch
from docsearch_server.search.analyzers import Analyzer, KeywordAnalyzer, Token, get_analyzer
from docsearch_server.search.schema import POSITION_INCREMENT_GAP, KeywordField, Schema, SchemaField, TextField
from docsearch_server.search.sqlite_pragmas import apply_read_pragmas, apply_write_pragmas
from docsearch_server.search.stats import FieldLengthStats


logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.db"
LOCK_FILENAME = "write.lock"
POSTINGS_CACHE_SIZE = 4096

_SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT
    );

    CREATE TABLE IF NOT EXISTS documents (
        docnum INTEGER PRIMARY KEY AUTOINCREMENT,
        doc_key TEXT NOT NULL UNIQUE,
        stored TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS postings (
        field TEXT NOT NULL,
        term TEXT NOT NULL,
        docnum INTEGER NOT NULL,
        tf INTEGER NOT NULL,
        positions_blob BLOB,
        PRIMARY KEY (field, term, docnum)
    ) WITHOUT ROWID;

    CREATE TABLE IF NOT EXISTS field_lengths (
        docnum INTEGER NOT NULL,
        field TEXT NOT NULL,
        length INTEGER NOT NULL,
        PRIMARY KEY (field, docnum)
    ) WITHOUT ROWID;

    CREATE INDEX IF NOT EXISTS idx_postings_docnum ON postings(docnum);
    CREATE INDEX IF NOT EXISTS idx_field_lengths_docnum ON field_lengths(docnum);
"""


@dataclass(frozen=True)
class Posting:
    """Occurrences of one term in one field of one record."""

    docnum: int
    frequency: int
    positions: array

    def position_list(self) -> list[int]:
        return list(self.positions)


def _decode_positions(blob: bytes | None) -> array:
    positions = array("I")
    if blob:
        positions.frombytes(blob)
    return positions


def _encode_positions(positions: Iterable[int]) -> bytes:
    return array("I", positions).tobytes()


def _prefix_upper_bound(prefix: str) -> str:
    """Return the smallest string greater than every string starting with ``prefix``."""
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class IndexWriteLock:
    """Exclusive, process-crossing lock on an index directory.

    Held as an open ``BEGIN EXCLUSIVE`` transaction on ``write.lock``; the OS
    drops it if the process dies, so a crash never leaves the index wedged.
    """

    def __init__(self, directory: Path) -> None:
        self.path = directory / LOCK_FILENAME
        self._conn: sqlite3.Connection | None = None

    def acquire(self) -> None:
        conn = sqlite3.connect(self.path, timeout=0, isolation_level=None, check_same_thread=False)
        try:
            conn.execute("BEGIN EXCLUSIVE")
        except sqlite3.OperationalError as exc:
            conn.close()
            msg = f"Index at {self.path.parent} already has an open mutation handle in another process"
            raise IndexLockError(msg) from exc
        self._conn = conn

    def release(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.warning("Failed to release index write lock %s: %s", self.path, exc)
        finally:
            self._conn.close()
            self._conn = None

    @property
    def held(self) -> bool:
        return self._conn is not None


def _connect(db_path: Path) -> sqlite3.Connection:
    return sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)


def initialize_index(db_path: Path, schema: Schema) -> None:
    """Create tables on first use and verify the stored schema on reopen.

    Raises:
        IndexSchemaMismatch: the index on disk was built with a different schema.
    """
    conn = _connect(db_path)
    try:
        apply_write_pragmas(conn)
        conn.executescript(_SCHEMA_SQL)
        row = conn.execute("SELECT value FROM metadata WHERE key = 'schema'").fetchone()
        if row is None:
            conn.execute("BEGIN IMMEDIATE")
            conn.executemany(
                "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
                [("schema", json.dumps(schema.to_dict())), ("generation", "0")],
            )
            conn.execute("COMMIT")
            logger.info("Created search index at %s", db_path)
            return
        try:
            stored_schema = Schema.from_dict(json.loads(row[0]))
        except (json.JSONDecodeError, KeyError, ValueError) as exc:
            msg = f"Index at {db_path} has an unreadable schema"
            raise IndexSchemaMismatch(msg) from exc
        if not schema.is_compatible_with(stored_schema):
            msg = f"Index at {db_path} was built with schema '{stored_schema.name}' which differs from '{schema.name}'"
            raise IndexSchemaMismatch(msg)
    finally:
        conn.close()


class IndexWriter:
    """The single mutation handle of an index location.

    All methods assume the caller serializes access and brackets mutations
    between :meth:`begin` and :meth:`commit` / :meth:`rollback`.
    """

    def __init__(self, db_path: Path, schema: Schema) -> None:
        self.db_path = db_path
        self.schema = schema
        self._conn = _connect(db_path)
        apply_write_pragmas(self._conn)
        self._keyword_analyzer = KeywordAnalyzer()
        self._analyzers: dict[str, Analyzer] = {
            f.name: get_analyzer(f.analyzer_name) for f in schema.fields if isinstance(f, TextField)
        }

    # -- transaction control -------------------------------------------------

    def begin(self) -> None:
        self._conn.execute("BEGIN IMMEDIATE")

    def commit(self) -> int:
        """Bump the generation and commit; return the new generation."""
        self._conn.execute("UPDATE metadata SET value = CAST(value AS INTEGER) + 1 WHERE key = 'generation'")
        generation = self._read_generation()
        self._conn.execute("COMMIT")
        return generation

    def rollback(self) -> None:
        try:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.warning("Rollback failed on %s: %s", self.db_path, exc)

    def committed_generation(self) -> int:
        return self._read_generation()

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            logger.warning("Failed to close index writer for %s: %s", self.db_path, exc)

    def _read_generation(self) -> int:
        row = self._conn.execute("SELECT value FROM metadata WHERE key = 'generation'").fetchone()
        return int(row[0]) if row else 0

    # -- mutations ----------------------------------------------------------

    def add_document(self, document: Mapping[str, Any]) -> int:
        """Append a record; return its internal document number."""
        key = self._normalize_unique(document)
        if self._docnum_for(key) is not None:
            msg = f"Duplicate document for unique field '{self.schema.unique_field}': {key}"
            raise ValueError(msg)

        stored: dict[str, Any] = {}
        for schema_field in self.schema.fields:
            value = document.get(schema_field.name)
            if schema_field.stored and value is not None:
                stored[schema_field.name] = list(value) if schema_field.multi_valued else value

        cursor = self._conn.execute(
            "INSERT INTO documents (doc_key, stored) VALUES (?, ?)",
            (key, json.dumps(stored)),
        )
        docnum = int(cursor.lastrowid)

        postings_rows: list[tuple[str, str, int, int, bytes]] = []
        length_rows: list[tuple[int, str, int]] = []
        for schema_field in self.schema.fields:
            if not schema_field.indexed:
                continue
            tokens = self._analyze_field(schema_field, document.get(schema_field.name))
            if not tokens:
                continue
            length_rows.append((docnum, schema_field.name, len(tokens)))
            by_term: dict[str, list[int]] = {}
            for token in tokens:
                by_term.setdefault(token.text, []).append(token.position)
            for term, positions in by_term.items():
                postings_rows.append((schema_field.name, term, docnum, len(positions), _encode_positions(positions)))

        if postings_rows:
            self._conn.executemany(
                "INSERT INTO postings (field, term, docnum, tf, positions_blob) VALUES (?, ?, ?, ?, ?)",
                postings_rows,
            )
        if length_rows:
            self._conn.executemany("INSERT INTO field_lengths (docnum, field, length) VALUES (?, ?, ?)", length_rows)
        return docnum

    def update_document(self, key: str, document: Mapping[str, Any]) -> int:
        """Replace the record matching ``key`` (delete-then-add by key)."""
        new_key = self._normalize_unique(document)
        if new_key != key:
            msg = f"Cannot move record {key} to key {new_key}"
            raise ValueError(msg)
        self.delete_document(key)
        return self.add_document(document)

    def delete_document(self, key: str) -> bool:
        """Remove the record matching ``key``; return False when there was none."""
        docnum = self._docnum_for(key)
        if docnum is None:
            return False
        self._conn.execute("DELETE FROM postings WHERE docnum = ?", (docnum,))
        self._conn.execute("DELETE FROM field_lengths WHERE docnum = ?", (docnum,))
        self._conn.execute("DELETE FROM documents WHERE docnum = ?", (docnum,))
        return True

    def delete_all(self) -> int:
        """Remove every record; return how many were removed."""
        count = self.doc_count()
        self._conn.execute("DELETE FROM postings")
        self._conn.execute("DELETE FROM field_lengths")
        self._conn.execute("DELETE FROM documents")
        return count

    def doc_count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()
        return int(row[0]) if row else 0

    def _docnum_for(self, key: str) -> int | None:
        row = self._conn.execute("SELECT docnum FROM documents WHERE doc_key = ?", (key,)).fetchone()
        return int(row[0]) if row else None

    def _normalize_unique(self, document: Mapping[str, Any]) -> str:
        value = document.get(self.schema.unique_field)
        if value is None or value == "":
            msg = f"Document missing unique field '{self.schema.unique_field}'"
            raise ValueError(msg)
        return str(value)

    def _analyze_field(self, schema_field: SchemaField, value: Any) -> list[Token]:
        if value is None:
            return []
        values = list(value) if schema_field.multi_valued else [value]
        analyzer = self._analyzers.get(schema_field.name, self._keyword_analyzer)
        if isinstance(schema_field, KeywordField):
            analyzer = self._keyword_analyzer

        tokens: list[Token] = []
        base = 0
        for item in values:
            analyzed = analyzer(str(item))
            for token in analyzed:
                token.position += base
            tokens.extend(analyzed)
            if analyzed:
                base = analyzed[-1].position + 1 + POSITION_INCREMENT_GAP
        return tokens


class IndexSnapshot:
    """Immutable point-in-time view of committed index state.

    Reference counted: the lifecycle manager holds one reference while the
    snapshot is current, and each caller of ``snapshot()`` holds another until
    it calls :meth:`release` (or leaves the ``with`` block). The read
    transaction is closed when the count drops to zero.
    """

    def __init__(self, db_path: Path, schema: Schema) -> None:
        self.db_path = db_path
        self.schema = schema
        self._lock = threading.RLock()
        self._refcount = 1
        self._conn: sqlite3.Connection | None = _connect(db_path)
        try:
            apply_read_pragmas(self._conn)
            self._conn.execute("BEGIN")
            row = self._conn.execute("SELECT value FROM metadata WHERE key = 'generation'").fetchone()
        except sqlite3.Error:
            self._conn.close()
            self._conn = None
            raise
        self.generation = int(row[0]) if row else 0
        self._postings_cache: OrderedDict[tuple[str, str], list[Posting]] = OrderedDict()
        self._terms_cache: dict[str, list[str]] = {}
        self._lengths_cache: dict[str, dict[int, int]] = {}
        self._stats_cache: dict[str, FieldLengthStats] = {}
        self._doc_count: int | None = None

    # -- reference counting -----------------------------------------------

    def acquire(self) -> IndexSnapshot:
        with self._lock:
            if self._refcount <= 0:
                msg = f"Snapshot at generation {self.generation} is already closed"
                raise RuntimeError(msg)
            self._refcount += 1
        return self

    def release(self) -> None:
        with self._lock:
            if self._refcount <= 0:
                return
            self._refcount -= 1
            if self._refcount == 0:
                self._close()

    @property
    def closed(self) -> bool:
        return self._conn is None

    @property
    def refcount(self) -> int:
        return self._refcount

    def __enter__(self) -> IndexSnapshot:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.debug("Ending snapshot read transaction failed: %s", exc)
        finally:
            self._conn.close()
            self._conn = None

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> list[tuple]:
        with self._lock:
            if self._conn is None:
                msg = f"Snapshot at generation {self.generation} is already closed"
                raise RuntimeError(msg)
            return self._conn.execute(sql, tuple(params)).fetchall()

    # -- reads ------------------------------------------------------------

    def doc_count(self) -> int:
        if self._doc_count is None:
            rows = self._execute("SELECT COUNT(*) FROM documents")
            self._doc_count = int(rows[0][0]) if rows else 0
        return self._doc_count

    def postings(self, field_name: str, term: str) -> list[Posting]:
        """Return the postings of one term, keeping the most recently used lists cached."""
        cache_key = (field_name, term)
        with self._lock:
            cached = self._postings_cache.get(cache_key)
            if cached is not None:
                self._postings_cache.move_to_end(cache_key)
                return cached
        rows = self._execute(
            "SELECT docnum, tf, positions_blob FROM postings WHERE field = ? AND term = ? ORDER BY docnum",
            (field_name, term),
        )
        postings = [
            Posting(docnum=int(docnum), frequency=int(tf), positions=_decode_positions(blob))
            for docnum, tf, blob in rows
        ]
        with self._lock:
            self._postings_cache[cache_key] = postings
            if len(self._postings_cache) > POSTINGS_CACHE_SIZE:
                self._postings_cache.popitem(last=False)
        return postings

    def terms(self, field_name: str) -> list[str]:
        """Return the distinct terms of a field in sorted order."""
        cached = self._terms_cache.get(field_name)
        if cached is None:
            rows = self._execute("SELECT DISTINCT term FROM postings WHERE field = ? ORDER BY term", (field_name,))
            cached = [row[0] for row in rows if row[0]]
            self._terms_cache[field_name] = cached
        return cached

    def terms_with_prefix(self, field_name: str, prefix: str) -> list[str]:
        if not prefix:
            return self.terms(field_name)
        rows = self._execute(
            "SELECT DISTINCT term FROM postings WHERE field = ? AND term >= ? AND term < ? ORDER BY term",
            (field_name, prefix, _prefix_upper_bound(prefix)),
        )
        return [row[0] for row in rows]

    def field_lengths(self, field_name: str) -> dict[int, int]:
        cached = self._lengths_cache.get(field_name)
        if cached is None:
            rows = self._execute("SELECT docnum, length FROM field_lengths WHERE field = ?", (field_name,))
            cached = {int(docnum): int(length) for docnum, length in rows}
            self._lengths_cache[field_name] = cached
        return cached

    def field_stats(self, field_name: str) -> FieldLengthStats:
        cached = self._stats_cache.get(field_name)
        if cached is None:
            rows = self._execute(
                "SELECT COUNT(*), COALESCE(SUM(length), 0) FROM field_lengths WHERE field = ?",
                (field_name,),
            )
            doc_count, total_terms = rows[0] if rows else (0, 0)
            cached = FieldLengthStats(field=field_name, total_terms=int(total_terms), document_count=int(doc_count))
            self._stats_cache[field_name] = cached
        return cached

    def stored_fields(self, docnums: Iterable[int]) -> dict[int, dict[str, Any]]:
        """Return stored values for the given document numbers."""
        wanted = list(dict.fromkeys(docnums))
        if not wanted:
            return {}
        placeholders = ", ".join("?" for _ in wanted)
        rows = self._execute(f"SELECT docnum, stored FROM documents WHERE docnum IN ({placeholders})", wanted)
        return {int(docnum): json.loads(stored) for docnum, stored in rows}

    def document(self, key: str) -> dict[str, Any] | None:
        """Return the stored values of the record with mutation key ``key``."""
        rows = self._execute("SELECT stored FROM documents WHERE doc_key = ?", (key,))
        return json.loads(rows[0][0]) if rows else None

    def keys(self) -> list[str]:
        """Return every mutation key in insertion order."""
        return [row[0] for row in self._execute("SELECT doc_key FROM documents ORDER BY docnum")]
