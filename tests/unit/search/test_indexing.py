"""Unit tests for the projection of canonical documents into index records."""

from docsearch_server.domain.model import CanonicalDocument
from docsearch_server.search.indexing import IndexedRecord


def _doc(**kwargs) -> CanonicalDocument:
    defaults = {"title": "Title", "content": "Content"}
    defaults.update(kwargs)
    return CanonicalDocument(**defaults)


def test_record_omits_missing_category():
    document = _doc(tags=["a", "b"])
    fields = IndexedRecord.from_document(document).to_fields()

    assert fields == {"id": document.id, "title": "Title", "content": "Content", "tags": ["a", "b"]}


def test_record_keeps_category():
    fields = IndexedRecord.from_document(_doc(category="tech")).to_fields()
    assert fields["category"] == "tech"


def test_index_create_makes_document_searchable(harness):
    document = _doc(title="Test Document", content="This is test content for indexing", tags=["sample", "test"])
    harness.add(document)

    with harness.lifecycle.snapshot() as snapshot:
        stored = snapshot.document(document.id)
    assert stored["title"] == "Test Document"
    assert stored["tags"] == ["sample", "test"]


def test_index_update_replaces_terms(harness):
    document = _doc(title="Original Title", content="Original content", category="test", tags=["original"])
    harness.add(document)
    updated = _doc(id=document.id, title="Updated Title", content="Updated content", category="updated")
    harness.pipeline.index_update(document.id, updated)

    hits, total = harness.search("Updated")
    assert total == 1
    assert hits[0].title == "Updated Title"
    assert hits[0].category == "updated"
    assert harness.search("Original")[1] == 0


def test_index_delete_is_idempotent(harness):
    document = _doc(title="Document to Delete", content="This will be deleted")
    harness.add(document)
    assert harness.search("Delete")[1] == 1

    harness.pipeline.index_delete(document.id)
    harness.pipeline.index_delete(document.id)
    assert harness.search("Delete")[1] == 0


def test_reindex_upserts(harness):
    document = _doc(title="Reindexed", content="body")
    harness.pipeline.reindex(document)
    harness.pipeline.reindex(document)

    with harness.lifecycle.snapshot() as snapshot:
        assert snapshot.keys() == [document.id]


def test_rebuild_replaces_everything_in_one_commit(harness):
    harness.add(_doc(title="zombie"), _doc(title="other"))
    generation = harness.lifecycle.generation
    kept = [_doc(title="fresh one"), _doc(title="fresh two")]

    assert harness.pipeline.rebuild(kept) == 2
    assert harness.lifecycle.generation == generation + 1
    assert harness.search("zombie")[1] == 0
    assert harness.search("fresh")[1] == 2
