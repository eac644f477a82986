"""Tests for the offline rebuild entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

from docsearch_server.adapters.document_repository import SqliteDocumentRepository
from docsearch_server.app import _reindex, reindex_main
from docsearch_server.app_builder import AppBuilder
from docsearch_server.config import Settings
from docsearch_server.domain.model import CanonicalDocument
from docsearch_server.search.lifecycle import IndexLifecycleManager


@pytest.mark.asyncio
async def test_reindex_rebuilds_from_sqlite_store(tmp_path: Path) -> None:
    settings = Settings(index_path=tmp_path / "index", store_path=tmp_path / "documents.db")
    store = SqliteDocumentRepository(settings.store_path)
    for i in range(3):
        await store.create(CanonicalDocument(title=f"Stored {i}", content="only in the store"))

    count = await _reindex(AppBuilder(settings, configure_observability=False))

    assert count == 3
    with IndexLifecycleManager.open_or_create(settings.index_path) as lifecycle, lifecycle.snapshot() as snapshot:
        assert snapshot.doc_count() == 3


def test_reindex_main_exits_on_invalid_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAX_SEARCH_LIMIT", "not-a-number")

    with pytest.raises(SystemExit) as exc_info:
        reindex_main()

    assert exc_info.value.code == 2
