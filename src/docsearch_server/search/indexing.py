"""Projection of canonical documents into index records, and the write operations on them."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
import logging
from typing import Any

from docsearch_server.domain.model import CanonicalDocument
from docsearch_server.search.index_store import IndexWriter
from docsearch_server.search.lifecycle import IndexLifecycleManager


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexedRecord:
    """The per-field projection of one canonical document held by the index.

    ``category`` is ``None`` when the document has none; the field is then
    left out of the record entirely rather than indexed as an empty value.
    """

    id: str
    title: str
    content: str
    tags: tuple[str, ...] = field(default_factory=tuple)
    category: str | None = None

    @classmethod
    def from_document(cls, document: CanonicalDocument) -> IndexedRecord:
        return cls(
            id=document.id,
            title=document.title,
            content=document.content,
            tags=tuple(document.tags),
            category=document.category,
        )

    def to_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "tags": list(self.tags),
        }
        if self.category is not None:
            fields["category"] = self.category
        return fields


class IndexingPipeline:
    """Keeps the index in step with canonical-store writes.

    Every method is one logical write: it runs inside a single
    :meth:`IndexLifecycleManager.mutate` call and is committed before it
    returns. Methods are blocking; async callers offload them to a thread.
    """

    def __init__(self, lifecycle: IndexLifecycleManager) -> None:
        self.lifecycle = lifecycle

    def index_create(self, document: CanonicalDocument) -> int:
        record = IndexedRecord.from_document(document)
        generation = self.lifecycle.mutate(lambda writer: writer.add_document(record.to_fields()))
        logger.debug("Indexed document %s (generation %d)", record.id, generation)
        return generation

    def index_update(self, document_id: str, document: CanonicalDocument) -> int:
        """Replace the record keyed by ``document_id`` atomically.

        Readers see either the old record or the new one, never neither.
        """
        record = IndexedRecord.from_document(document)
        generation = self.lifecycle.mutate(lambda writer: writer.update_document(document_id, record.to_fields()))
        logger.debug("Reindexed document %s (generation %d)", document_id, generation)
        return generation

    def index_delete(self, document_id: str) -> int:
        """Remove the record keyed by ``document_id``; succeeds when it is already gone."""
        removed: list[bool] = []

        def delete(writer: IndexWriter) -> None:
            removed.append(writer.delete_document(document_id))

        generation = self.lifecycle.mutate(delete)
        if not removed[-1]:
            logger.debug("Delete of %s found no indexed record", document_id)
        return generation

    def reindex(self, document: CanonicalDocument) -> int:
        """Upsert: replace the record if present, add it otherwise."""
        record = IndexedRecord.from_document(document)

        def upsert(writer: IndexWriter) -> None:
            writer.delete_document(record.id)
            writer.add_document(record.to_fields())

        return self.lifecycle.mutate(upsert)

    def rebuild(self, documents: Iterable[CanonicalDocument]) -> int:
        """Replace the whole index content with ``documents`` in one commit.

        Returns the number of records indexed.
        """
        records = [IndexedRecord.from_document(document) for document in documents]

        def replace_all(writer: IndexWriter) -> None:
            dropped = writer.delete_all()
            for record in records:
                writer.add_document(record.to_fields())
            logger.info("Rebuilding index: dropped %d records, adding %d", dropped, len(records))

        self.lifecycle.mutate(replace_all)
        return len(records)
