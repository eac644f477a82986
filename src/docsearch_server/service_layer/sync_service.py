"""Synchronization layer - keeps the search index in step with the canonical store.

Each write is a dual write: the canonical store first, the index second.
There is no two-phase commit. A crash between the two steps leaves either a
stored-but-unsearchable document (create/update) or a zombie index entry
(delete); ``reindex_document`` and ``reindex_all`` reconcile both cases.

Once a write has started it is shielded from caller cancellation, so a
disconnecting client cannot interrupt it between the two steps.
"""

from __future__ import annotations

from collections.abc import Sequence
import logging

import anyio

from docsearch_server.adapters.document_repository import AbstractDocumentRepository
from docsearch_server.domain.model import CanonicalDocument, DocumentPatch
from docsearch_server.observability.tracing import create_span
from docsearch_server.search.indexing import IndexingPipeline


logger = logging.getLogger(__name__)


class DocumentSyncService:
    """Create, update and delete documents in the store and the index together."""

    def __init__(self, repository: AbstractDocumentRepository, pipeline: IndexingPipeline) -> None:
        self.repository = repository
        self.pipeline = pipeline

    # -- writes -----------------------------------------------------------

    async def create(self, document: CanonicalDocument) -> CanonicalDocument:
        """Persist ``document`` and make it searchable.

        Returns the stored document once the index commit is done, so a
        search issued afterwards sees it.
        """
        with anyio.CancelScope(shield=True), create_span("sync.create", attributes={"document.id": document.id}):
            created = await self.repository.create(document)
            await anyio.to_thread.run_sync(self.pipeline.index_create, created)
        logger.info("Created document %s", created.id)
        return created

    async def update(self, document_id: str, patch: DocumentPatch) -> CanonicalDocument | None:
        """Apply ``patch`` in the store and replace the indexed record.

        Returns ``None`` for an unknown or malformed id; the index is left
        untouched in that case.
        """
        with anyio.CancelScope(shield=True), create_span("sync.update", attributes={"document.id": document_id}):
            updated = await self.repository.update(document_id, patch)
            if updated is None:
                logger.debug("Update of unknown document %s", document_id)
                return None
            await anyio.to_thread.run_sync(self.pipeline.index_update, updated.id, updated)
        logger.info("Updated document %s", updated.id)
        return updated

    async def delete(self, document_id: str) -> bool:
        """Delete from the store, then from the index.

        Returns False for an unknown or malformed id without touching the index.
        """
        with anyio.CancelScope(shield=True), create_span("sync.delete", attributes={"document.id": document_id}):
            existing = await self.repository.get(document_id)
            if existing is None:
                return False
            deleted = await self.repository.delete(existing.id)
            if not deleted:
                return False
            await anyio.to_thread.run_sync(self.pipeline.index_delete, existing.id)
        logger.info("Deleted document %s", existing.id)
        return True

    # -- reconciliation ---------------------------------------------------

    async def reindex_document(self, document_id: str) -> bool:
        """Re-project one document from the store into the index.

        A document missing from the store is removed from the index instead.
        Returns True when the document exists in the store.
        """
        with anyio.CancelScope(shield=True):
            document = await self.repository.get(document_id)
            if document is None:
                await anyio.to_thread.run_sync(self.pipeline.index_delete, document_id)
                return False
            await anyio.to_thread.run_sync(self.pipeline.reindex, document)
        return True

    async def reindex_all(self) -> int:
        """Rebuild the whole index from the store in one commit; return the record count."""
        with anyio.CancelScope(shield=True), create_span("sync.reindex_all"):
            documents = await self.repository.list_all()
            count = await anyio.to_thread.run_sync(self.pipeline.rebuild, documents)
        logger.info("Rebuilt index from %d stored documents", count)
        return count

    # -- reads ------------------------------------------------------------

    async def get(self, document_id: str) -> CanonicalDocument | None:
        return await self.repository.get(document_id)

    async def list(self, limit: int = 100, offset: int = 0) -> list[CanonicalDocument]:
        return await self.repository.list(limit=limit, offset=offset)

    async def list_by_category(self, category: str, limit: int = 100) -> list[CanonicalDocument]:
        return await self.repository.list_by_category(category, limit=limit)

    async def list_by_tags(self, tags: Sequence[str], limit: int = 100) -> list[CanonicalDocument]:
        return await self.repository.list_by_tags(tags, limit=limit)

    async def count(self) -> int:
        return await self.repository.count()
