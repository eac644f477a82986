"""Unit tests for the index lifecycle manager: snapshots, commits, locking and recovery."""

from pathlib import Path
import threading

import pytest

from docsearch_server.domain.errors import IndexLockError, IndexUnavailable, InvalidIndexTransition
from docsearch_server.domain.model import CanonicalDocument
from docsearch_server.search.lifecycle import IndexLifecycleManager, IndexState, next_state


def _add(key: str, title: str = "title", content: str = "content"):
    def add(writer):
        writer.add_document({"id": key, "title": title, "content": content, "tags": []})

    return add


def test_state_transitions():
    assert next_state(IndexState.CLOSED, IndexState.OPEN) == IndexState.OPEN
    assert next_state(IndexState.OPEN, IndexState.DEGRADED) == IndexState.DEGRADED
    assert next_state(IndexState.DEGRADED, IndexState.OPEN) == IndexState.OPEN
    with pytest.raises(InvalidIndexTransition):
        next_state(IndexState.CLOSED, IndexState.DEGRADED)


def test_open_and_close(index_path: Path):
    manager = IndexLifecycleManager(index_path)
    assert manager.state == IndexState.CLOSED
    manager.open()
    assert manager.state == IndexState.OPEN
    assert (index_path / "index.db").exists()
    manager.close()
    assert manager.state == IndexState.CLOSED
    manager.close()


def test_open_twice_is_rejected(lifecycle):
    with pytest.raises(InvalidIndexTransition):
        lifecycle.open()


def test_second_handle_on_same_path_fails(lifecycle, index_path: Path):
    with pytest.raises(IndexLockError):
        IndexLifecycleManager.open_or_create(index_path)
    assert lifecycle.state == IndexState.OPEN


def test_path_can_be_reopened_after_close(index_path: Path):
    with IndexLifecycleManager.open_or_create(index_path):
        pass
    with IndexLifecycleManager.open_or_create(index_path) as manager:
        assert manager.state == IndexState.OPEN


def test_mutate_returns_new_generation(lifecycle):
    assert lifecycle.generation == 0
    assert lifecycle.mutate(_add("a")) == 1
    assert lifecycle.mutate(_add("b")) == 2
    assert lifecycle.generation == 2


def test_snapshot_is_reused_while_nothing_is_committed(lifecycle):
    lifecycle.mutate(_add("a"))
    with lifecycle.snapshot() as first, lifecycle.snapshot() as second:
        assert first is second


def test_snapshot_refreshes_after_commit(lifecycle):
    lifecycle.mutate(_add("a"))
    with lifecycle.snapshot() as before:
        assert before.doc_count() == 1
    lifecycle.mutate(_add("b"))
    with lifecycle.snapshot() as after:
        assert after is not before
        assert after.doc_count() == 2
        assert after.generation == 2


def test_stale_snapshot_stays_usable_until_released(lifecycle):
    lifecycle.mutate(_add("a"))
    stale = lifecycle.snapshot()
    lifecycle.mutate(_add("b"))
    with lifecycle.snapshot() as fresh:
        assert fresh.doc_count() == 2

    assert not stale.closed
    assert stale.doc_count() == 1
    stale.release()
    assert stale.closed


def test_failed_mutation_leaves_prior_state(lifecycle):
    lifecycle.mutate(_add("a"))

    def add_then_fail(writer):
        writer.add_document({"id": "b", "title": "t", "content": "c", "tags": []})
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        lifecycle.mutate(add_then_fail)

    assert lifecycle.generation == 1
    assert lifecycle.state == IndexState.OPEN
    with lifecycle.snapshot() as snapshot:
        assert snapshot.keys() == ["a"]


def test_duplicate_key_mutation_is_not_a_handle_failure(lifecycle):
    lifecycle.mutate(_add("a"))
    with pytest.raises(ValueError):
        lifecycle.mutate(_add("a"))
    assert lifecycle.state == IndexState.OPEN


def test_reinitializes_after_handle_is_closed_underneath(lifecycle):
    lifecycle.mutate(_add("a"))
    lifecycle._writer._conn.close()

    assert lifecycle.mutate(_add("b")) == 2
    assert lifecycle.state == IndexState.OPEN
    with lifecycle.snapshot() as snapshot:
        assert snapshot.keys() == ["a", "b"]


def test_closed_manager_is_unavailable(index_path: Path):
    manager = IndexLifecycleManager.open_or_create(index_path)
    manager.close()
    with pytest.raises(IndexUnavailable):
        manager.snapshot()
    with pytest.raises(IndexUnavailable):
        manager.mutate(_add("a"))


def test_reopen_recovers_committed_records(index_path: Path):
    with IndexLifecycleManager.open_or_create(index_path) as manager:
        manager.mutate(_add("a", title="persisted"))
        manager.mutate(_add("b"))

    with IndexLifecycleManager.open_or_create(index_path) as manager:
        assert manager.generation == 2
        with manager.snapshot() as snapshot:
            assert snapshot.keys() == ["a", "b"]
            assert snapshot.postings("title", "persisted")


def test_stats_report_state_and_counts(lifecycle, index_path: Path):
    lifecycle.mutate(_add("a"))
    stats = lifecycle.stats()
    assert stats == {
        "path": str(index_path.resolve()),
        "state": "open",
        "generation": 1,
        "documents": 1,
    }


def test_concurrent_updates_serialize(harness):
    original = CanonicalDocument(title="Version 0", content="shared body")
    harness.add(original)
    start_generation = harness.lifecycle.generation
    barrier = threading.Barrier(8)
    committed: dict[int, int] = {}
    committed_lock = threading.Lock()

    def update(version: int) -> None:
        replacement = CanonicalDocument(id=original.id, title=f"Version {version}", content="shared body")
        barrier.wait()
        generation = harness.pipeline.index_update(original.id, replacement)
        with committed_lock:
            committed[generation] = version

    threads = [threading.Thread(target=update, args=(version,)) for version in range(1, 9)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(committed) == list(range(start_generation + 1, start_generation + 9))
    hits, total = harness.search("shared")
    assert total == 1
    assert hits[0].title == f"Version {committed[max(committed)]}"
    assert harness.lifecycle.stats()["documents"] == 1
