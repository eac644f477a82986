"""Service layer - use case orchestration.

- ``DocumentSyncService`` keeps the canonical store and the index in step
- ``SearchService`` runs ranked, filtered and highlighted searches
"""

from .search_service import SearchService
from .sync_service import DocumentSyncService


__all__ = [
    "DocumentSyncService",
    "SearchService",
]
