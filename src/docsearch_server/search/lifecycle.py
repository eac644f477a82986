"""Ownership of an index location: the mutation handle and the current reader snapshot.

One ``IndexLifecycleManager`` exists per index directory per process. It is
built at startup, handed to the services that need it and closed at
shutdown. All writes go through :meth:`IndexLifecycleManager.mutate`, which
commits synchronously; all reads go through :meth:`IndexLifecycleManager.snapshot`.

States::

    CLOSED --open--> OPEN --handle failure--> DEGRADED --reinit ok--> OPEN
       ^               |                          |
       +----close------+-----------close----------+

A failure of the SQLite handle while mutating or opening a snapshot moves the
manager to DEGRADED, rebuilds the handle and retries the operation once. A
second failure surfaces as ``IndexUnavailable``.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Any, TypeVar

from docsearch_server.domain.errors import IndexLockError, IndexUnavailable, InvalidIndexTransition
from docsearch_server.observability.metrics import INDEX_COMMITS, INDEX_DOC_COUNT, INDEX_REINITIALIZATIONS
from docsearch_server.search.index_store import (
    INDEX_FILENAME,
    IndexSnapshot,
    IndexWriteLock,
    IndexWriter,
    initialize_index,
)
from docsearch_server.search.schema import Schema, create_document_schema


logger = logging.getLogger(__name__)

T = TypeVar("T")


class IndexState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    DEGRADED = "degraded"


_ALLOWED_TRANSITIONS: dict[IndexState, frozenset[IndexState]] = {
    IndexState.CLOSED: frozenset({IndexState.OPEN}),
    IndexState.OPEN: frozenset({IndexState.DEGRADED, IndexState.CLOSED}),
    IndexState.DEGRADED: frozenset({IndexState.OPEN, IndexState.DEGRADED, IndexState.CLOSED}),
}


def next_state(current: IndexState, target: IndexState) -> IndexState:
    """Return ``target`` if the lifecycle may move there from ``current``."""
    if target not in _ALLOWED_TRANSITIONS[current]:
        msg = f"Invalid index state transition {current.value} -> {target.value}"
        raise InvalidIndexTransition(msg)
    return target


def _is_handle_failure(exc: BaseException) -> bool:
    """Return True when ``exc`` means the SQLite handle itself is unusable."""
    return isinstance(exc, sqlite3.DatabaseError) and not isinstance(exc, sqlite3.IntegrityError)


# Resolved index directories with a live mutation handle in this process.
_open_locations: set[str] = set()
_open_locations_lock = threading.Lock()


class IndexLifecycleManager:
    """Single owner of the writer and the current snapshot of one index directory."""

    def __init__(self, path: str | Path, schema: Schema | None = None) -> None:
        self.path = Path(path).expanduser().resolve()
        self.schema = schema or create_document_schema()
        self._db_path = self.path / INDEX_FILENAME
        self._state = IndexState.CLOSED
        self._writer: IndexWriter | None = None
        self._lock_file = IndexWriteLock(self.path)
        self._current: IndexSnapshot | None = None
        self._generation = 0
        # Lock order: _write_lock before _snapshot_lock.
        self._write_lock = threading.RLock()
        self._snapshot_lock = threading.Lock()

    @classmethod
    def open_or_create(cls, path: str | Path, schema: Schema | None = None) -> IndexLifecycleManager:
        """Open the index at ``path``, creating it when missing.

        Raises:
            IndexLockError: another mutation handle is already open on ``path``.
            IndexSchemaMismatch: the existing index uses a different schema.
        """
        manager = cls(path, schema)
        manager.open()
        return manager

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def generation(self) -> int:
        """Generation of the last commit made through this manager."""
        return self._generation

    def _transition(self, target: IndexState) -> None:
        previous = self._state
        self._state = next_state(previous, target)
        if previous != target:
            logger.info("Index %s state %s -> %s", self.path, previous.value, target.value)

    # -- open / close -----------------------------------------------------

    def open(self) -> None:
        with self._write_lock:
            if self._state != IndexState.CLOSED:
                msg = f"Index at {self.path} is already open"
                raise InvalidIndexTransition(msg)
            key = str(self.path)
            with _open_locations_lock:
                if key in _open_locations:
                    msg = f"Index at {self.path} already has an open mutation handle in this process"
                    raise IndexLockError(msg)
                _open_locations.add(key)
            try:
                self.path.mkdir(parents=True, exist_ok=True)
                self._lock_file.acquire()
                initialize_index(self._db_path, self.schema)
                self._writer = IndexWriter(self._db_path, self.schema)
                self._generation = self._writer.committed_generation()
            except BaseException:
                self._discard_writer()
                self._lock_file.release()
                with _open_locations_lock:
                    _open_locations.discard(key)
                raise
            self._transition(IndexState.OPEN)
            logger.info("Opened index %s at generation %d", self.path, self._generation)

    def close(self) -> None:
        """Release the mutation handle and the manager's snapshot reference.

        Snapshots still held by callers stay readable until they are released.
        """
        with self._write_lock:
            if self._state == IndexState.CLOSED:
                return
            with self._snapshot_lock:
                if self._current is not None:
                    self._current.release()
                    self._current = None
            self._discard_writer()
            self._lock_file.release()
            with _open_locations_lock:
                _open_locations.discard(str(self.path))
            self._transition(IndexState.CLOSED)

    def __enter__(self) -> IndexLifecycleManager:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _discard_writer(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    def _require_not_closed(self) -> None:
        if self._state == IndexState.CLOSED:
            msg = f"Index at {self.path} is closed"
            raise IndexUnavailable(msg)

    # -- recovery ---------------------------------------------------------

    def _reinitialize(self) -> None:
        """Rebuild the mutation handle and drop the current snapshot (caller holds ``_write_lock``)."""
        self._transition(IndexState.DEGRADED)
        with self._snapshot_lock:
            if self._current is not None:
                self._current.release()
                self._current = None
        self._discard_writer()
        try:
            initialize_index(self._db_path, self.schema)
            self._writer = IndexWriter(self._db_path, self.schema)
            self._generation = self._writer.committed_generation()
        except sqlite3.Error as exc:
            self._discard_writer()
            INDEX_REINITIALIZATIONS.labels(outcome="failed").inc()
            msg = f"Index at {self.path} could not be reinitialized"
            raise IndexUnavailable(msg) from exc
        INDEX_REINITIALIZATIONS.labels(outcome="ok").inc()
        self._transition(IndexState.OPEN)
        logger.warning("Reinitialized index %s at generation %d", self.path, self._generation)

    def _retry_after_reinit(self, operation: Callable[[], T], description: str) -> T:
        """Reinitialize the handle and run ``operation`` one more time."""
        with self._write_lock:
            self._require_not_closed()
            self._reinitialize()
            try:
                return operation()
            except sqlite3.Error as exc:
                if not _is_handle_failure(exc):
                    raise
                self._transition(IndexState.DEGRADED)
                msg = f"Index at {self.path} is unavailable: {description} failed after reinitialization"
                raise IndexUnavailable(msg) from exc

    # -- writes -----------------------------------------------------------

    def mutate(self, fn: Callable[[IndexWriter], Any]) -> int:
        """Run ``fn`` against the mutation handle and commit; return the new generation.

        If ``fn`` raises, the transaction is rolled back and the previously
        committed state stays observable.
        """
        with self._write_lock:
            self._require_not_closed()
            if self._state == IndexState.OPEN:
                try:
                    return self._run_mutation(fn)
                except sqlite3.Error as exc:
                    if not _is_handle_failure(exc):
                        raise
                    logger.warning("Index handle failure during mutation on %s: %s", self.path, exc)
            return self._retry_after_reinit(lambda: self._run_mutation(fn), "mutation")

    def _run_mutation(self, fn: Callable[[IndexWriter], Any]) -> int:
        writer = self._writer
        if writer is None:
            msg = f"Index at {self.path} has no mutation handle"
            raise IndexUnavailable(msg)
        writer.begin()
        try:
            fn(writer)
            generation = writer.commit()
        except BaseException:
            writer.rollback()
            INDEX_COMMITS.labels(status="rolled_back").inc()
            raise
        self._generation = generation
        INDEX_COMMITS.labels(status="committed").inc()
        return generation

    # -- reads ------------------------------------------------------------

    def snapshot(self) -> IndexSnapshot:
        """Return an acquired snapshot of the most recently committed state.

        The current snapshot is reused while nothing newer has been committed.
        Release it with ``release()`` or use it as a context manager.
        """
        self._require_not_closed()
        if self._state == IndexState.OPEN:
            try:
                return self._refresh_and_acquire()
            except sqlite3.Error as exc:
                if not _is_handle_failure(exc):
                    raise
                logger.warning("Opening snapshot on %s failed: %s", self.path, exc)
        return self._retry_after_reinit(self._refresh_and_acquire, "snapshot")

    def _refresh_and_acquire(self) -> IndexSnapshot:
        with self._snapshot_lock:
            self._require_not_closed()
            current = self._current
            if current is None or current.generation < self._generation:
                fresh = IndexSnapshot(self._db_path, self.schema)
                if current is not None:
                    current.release()
                self._current = fresh
                current = fresh
                INDEX_DOC_COUNT.labels(index=self.path.name).set(fresh.doc_count())
            return current.acquire()

    def stats(self) -> dict[str, Any]:
        """Return index health details for ``/health``."""
        with self.snapshot() as snap:
            documents = snap.doc_count()
            generation = snap.generation
        return {
            "path": str(self.path),
            "state": self._state.value,
            "generation": generation,
            "documents": documents,
        }
