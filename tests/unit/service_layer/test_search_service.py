"""Tests for the async search facade."""

from __future__ import annotations

import sqlite3
import time

import anyio
import pytest

from docsearch_server.domain.errors import IndexUnavailable, QuerySyntaxError
from docsearch_server.domain.model import CanonicalDocument
from docsearch_server.search.formatter import ResultFormatter
from docsearch_server.service_layer import SearchService


@pytest.fixture
def service(lifecycle) -> SearchService:
    return SearchService(lifecycle, default_limit=2)


@pytest.mark.asyncio
async def test_search_returns_results_and_echoes_query(service, harness, programming_documents):
    harness.add(*programming_documents)

    results = await service.search("programming", limit=10)

    assert results.query == "programming"
    assert results.total_hits == 3
    assert len(results.results) == 3


@pytest.mark.asyncio
async def test_default_limit_applies(service, harness, programming_documents):
    harness.add(*programming_documents)

    results = await service.search("programming")

    assert results.total_hits == 3
    assert len(results.results) == 2


@pytest.mark.asyncio
async def test_category_and_highlight(service, harness):
    harness.add(
        CanonicalDocument(title="Tech Article", content="About technology", category="tech"),
        CanonicalDocument(title="Science Article", content="About science", category="science"),
    )

    results = await service.search("article", category="science", highlight=True)

    assert results.total_hits == 1
    hit = results.results[0]
    assert hit.highlighted_title == "Science <mark>Article</mark>"
    assert hit.highlighted_content is None


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   ", "(kotlin", "AND kotlin"])
async def test_malformed_query_raises(service, query):
    with pytest.raises(QuerySyntaxError):
        await service.search(query)


@pytest.mark.asyncio
async def test_closed_index_is_unavailable(service, lifecycle):
    lifecycle.close()

    with pytest.raises(IndexUnavailable):
        await service.search("anything")


@pytest.mark.asyncio
async def test_storage_errors_become_index_unavailable(service, lifecycle, monkeypatch):
    def _broken_snapshot():
        raise sqlite3.DatabaseError("database disk image is malformed")

    monkeypatch.setattr(lifecycle, "snapshot", _broken_snapshot)

    with pytest.raises(IndexUnavailable, match="malformed"):
        await service.search("anything")


@pytest.mark.asyncio
async def test_search_sees_latest_commit(service, harness):
    assert (await service.search("fresh")).total_hits == 0

    harness.add(CanonicalDocument(title="Fresh", content="just committed"))

    assert (await service.search("fresh")).total_hits == 1


class _SlowRankFormatter(ResultFormatter):
    def __init__(self) -> None:
        super().__init__()
        self.formatted = False

    def rank(self, snapshot, compiled):
        time.sleep(0.3)
        return super().rank(snapshot, compiled)

    def format_hits(self, snapshot, compiled, ranked):
        self.formatted = True
        return super().format_hits(snapshot, compiled, ranked)


@pytest.mark.asyncio
async def test_cancelled_search_skips_formatting(lifecycle, harness, programming_documents):
    harness.add(*programming_documents)
    formatter = _SlowRankFormatter()
    service = SearchService(lifecycle, formatter=formatter)

    with anyio.move_on_after(0.05) as scope:
        await service.search("programming", highlight=True)

    assert scope.cancelled_caught
    await anyio.sleep(0.6)
    assert formatter.formatted is False


@pytest.mark.asyncio
async def test_uncancelled_search_formats_hits(lifecycle, harness, programming_documents):
    harness.add(*programming_documents)
    formatter = _SlowRankFormatter()
    service = SearchService(lifecycle, formatter=formatter)

    results = await service.search("programming", highlight=True)

    assert formatter.formatted is True
    assert results.results[0].highlighted_content is not None
