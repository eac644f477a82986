"""Contract tests shared by the SQLite and in-memory document repositories."""

from __future__ import annotations

from pathlib import Path
import sqlite3

import pytest

from docsearch_server.adapters.document_repository import (
    AbstractDocumentRepository,
    InMemoryDocumentRepository,
    SqliteDocumentRepository,
)
from docsearch_server.domain.errors import StoreUnavailable
from docsearch_server.domain.model import CanonicalDocument, DocumentPatch


@pytest.fixture(params=["sqlite", "memory"])
def repository(request: pytest.FixtureRequest, tmp_path: Path) -> AbstractDocumentRepository:
    if request.param == "sqlite":
        return SqliteDocumentRepository(tmp_path / "store" / "documents.db")
    return InMemoryDocumentRepository()


def _doc(title: str = "Title", **kwargs) -> CanonicalDocument:
    return CanonicalDocument(title=title, content=kwargs.pop("content", "Body"), **kwargs)


@pytest.mark.asyncio
async def test_create_then_get_round_trips(repository: AbstractDocumentRepository) -> None:
    document = _doc(category="guides", tags=["a", "b"], metadata={"author": "sam"})

    assert await repository.create(document) == document
    assert await repository.get(document.id) == document


@pytest.mark.asyncio
async def test_get_normalizes_id_case(repository: AbstractDocumentRepository) -> None:
    document = await repository.create(_doc())

    fetched = await repository.get(document.id.upper())

    assert fetched is not None
    assert fetched.id == document.id


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_id", ["", "nope", "z" * 24, "0" * 23])
async def test_malformed_ids_are_not_found(repository: AbstractDocumentRepository, bad_id: str) -> None:
    assert await repository.get(bad_id) is None
    assert await repository.update(bad_id, DocumentPatch(title="x")) is None
    assert await repository.delete(bad_id) is False


@pytest.mark.asyncio
async def test_unknown_id_is_not_found(repository: AbstractDocumentRepository) -> None:
    missing = "0" * 24
    assert await repository.get(missing) is None
    assert await repository.update(missing, DocumentPatch(title="x")) is None
    assert await repository.delete(missing) is False


@pytest.mark.asyncio
async def test_duplicate_create_raises(repository: AbstractDocumentRepository) -> None:
    document = await repository.create(_doc())

    with pytest.raises(StoreUnavailable):
        await repository.create(document)


@pytest.mark.asyncio
async def test_list_keeps_creation_order_and_pages(repository: AbstractDocumentRepository) -> None:
    created = [await repository.create(_doc(f"Doc {i}")) for i in range(5)]

    assert [doc.id for doc in await repository.list()] == [doc.id for doc in created]
    assert [doc.id for doc in await repository.list(limit=2, offset=1)] == [created[1].id, created[2].id]
    assert await repository.list(limit=10, offset=10) == []
    assert await repository.list(limit=0) == []


@pytest.mark.asyncio
async def test_list_by_category(repository: AbstractDocumentRepository) -> None:
    tech = await repository.create(_doc("Tech", category="tech"))
    await repository.create(_doc("Science", category="science"))
    await repository.create(_doc("None"))

    assert [doc.id for doc in await repository.list_by_category("tech")] == [tech.id]
    assert await repository.list_by_category("missing") == []


@pytest.mark.asyncio
async def test_list_by_tags_matches_any(repository: AbstractDocumentRepository) -> None:
    kotlin = await repository.create(_doc("Kotlin", tags=["kotlin", "jvm"]))
    java = await repository.create(_doc("Java", tags=["java", "jvm"]))
    await repository.create(_doc("Python", tags=["python"]))

    assert [doc.id for doc in await repository.list_by_tags(["jvm"])] == [kotlin.id, java.id]
    assert [doc.id for doc in await repository.list_by_tags(["kotlin", "java"])] == [kotlin.id, java.id]
    assert [doc.id for doc in await repository.list_by_tags(["jvm"], limit=1)] == [kotlin.id]
    assert await repository.list_by_tags([]) == []


@pytest.mark.asyncio
async def test_update_merges_patch(repository: AbstractDocumentRepository) -> None:
    document = await repository.create(_doc("Old", category="keep", tags=["x"]))

    updated = await repository.update(document.id, DocumentPatch(title="New", tags=["y", "z"]))

    assert updated is not None
    assert updated.title == "New"
    assert updated.content == document.content
    assert updated.category == "keep"
    assert updated.tags == ["y", "z"]
    assert updated.created_at == document.created_at
    assert updated.updated_at >= document.updated_at
    assert await repository.get(document.id) == updated


@pytest.mark.asyncio
async def test_delete_removes_document(repository: AbstractDocumentRepository) -> None:
    document = await repository.create(_doc())

    assert await repository.count() == 1
    assert await repository.delete(document.id) is True
    assert await repository.get(document.id) is None
    assert await repository.count() == 0
    assert await repository.delete(document.id) is False


@pytest.mark.asyncio
async def test_list_all_returns_everything(repository: AbstractDocumentRepository) -> None:
    for i in range(150):
        await repository.create(_doc(f"Doc {i}"))

    assert len(await repository.list()) == 100
    assert len(await repository.list_all()) == 150


@pytest.mark.asyncio
async def test_sqlite_store_survives_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "documents.db"
    document = await SqliteDocumentRepository(db_path).create(_doc(tags=["persisted"]))

    reopened = SqliteDocumentRepository(db_path)

    assert await reopened.get(document.id) == document
    assert await reopened.count() == 1


@pytest.mark.asyncio
async def test_sqlite_errors_become_store_unavailable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    repository = SqliteDocumentRepository(tmp_path / "documents.db")

    def _fail():
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(repository, "_connect", _fail)

    with pytest.raises(StoreUnavailable, match="disk I/O error"):
        await repository.count()
