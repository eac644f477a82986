"""Shared test fixtures and configuration."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from docsearch_server.domain.model import CanonicalDocument
from docsearch_server.domain.search import SearchHit
from docsearch_server.search.formatter import ResultFormatter
from docsearch_server.search.indexing import IndexingPipeline
from docsearch_server.search.lifecycle import IndexLifecycleManager
from docsearch_server.search.query_parser import QueryCompiler


# Environment keys read by Settings; cleared so a developer's .env never leaks into tests.
SETTINGS_ENV_KEYS = (
    "INDEX_PATH",
    "STORE_PATH",
    "STORE_BACKEND",
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "LOG_JSON",
    "ACCESS_LOG",
    "DEFAULT_SEARCH_LIMIT",
    "MAX_SEARCH_LIMIT",
    "HIGHLIGHT_FRAGMENT_SIZE",
    "HIGHLIGHT_PRE_TAG",
    "HIGHLIGHT_POST_TAG",
    "TITLE_BOOST",
    "TAGS_BOOST",
    "CONTENT_BOOST",
    "SERVICE_NAME",
    "OTLP_ENDPOINT",
)


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in SETTINGS_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    # Settings reads .env from the working directory.
    monkeypatch.chdir(tmp_path)


def make_document(title: str, content: str, **kwargs) -> CanonicalDocument:
    return CanonicalDocument(title=title, content=content, **kwargs)


class IndexHarness:
    """An open index plus the pieces needed to write to it and search it synchronously."""

    def __init__(self, lifecycle: IndexLifecycleManager) -> None:
        self.lifecycle = lifecycle
        self.pipeline = IndexingPipeline(lifecycle)
        self.compiler = QueryCompiler(lifecycle.schema)
        self.formatter = ResultFormatter()

    def add(self, *documents: CanonicalDocument) -> list[CanonicalDocument]:
        for document in documents:
            self.pipeline.index_create(document)
        return list(documents)

    def search(
        self,
        text: str,
        *,
        category: str | None = None,
        limit: int = 10,
        highlight: bool = False,
    ) -> tuple[list[SearchHit], int]:
        compiled = self.compiler.compile(text, category=category, limit=limit, highlight=highlight)
        with self.lifecycle.snapshot() as snapshot:
            return self.formatter.execute(snapshot, compiled)


@pytest.fixture
def index_path(tmp_path: Path) -> Path:
    return tmp_path / "index"


@pytest.fixture
def lifecycle(index_path: Path) -> Iterator[IndexLifecycleManager]:
    manager = IndexLifecycleManager.open_or_create(index_path)
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def harness(lifecycle: IndexLifecycleManager) -> IndexHarness:
    return IndexHarness(lifecycle)


@pytest.fixture
def programming_documents() -> list[CanonicalDocument]:
    return [
        make_document(
            "Document One",
            "Content about Kotlin programming",
            category="programming",
            tags=["kotlin", "jvm"],
        ),
        make_document(
            "Document Two",
            "Content about Java programming and development",
            category="programming",
            tags=["java", "jvm"],
        ),
        make_document(
            "Document Three",
            "Content about Python programming and scripting",
            category="programming",
            tags=["python", "scripting"],
        ),
    ]
