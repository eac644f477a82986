"""Composable builder for the full-text search HTTP server."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

import anyio
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from docsearch_server.adapters.document_repository import (
    AbstractDocumentRepository,
    InMemoryDocumentRepository,
    SqliteDocumentRepository,
)
from docsearch_server.endpoints import EXCEPTION_HANDLERS
from docsearch_server.endpoints.documents import (
    create_document,
    delete_document,
    get_document,
    list_documents,
    reindex_documents,
    update_document,
)
from docsearch_server.endpoints.search import search_get, search_post
from docsearch_server.observability import (
    configure_logging,
    configure_metrics_exporter,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
    init_tracing,
)
from docsearch_server.observability.tracing import trace_request
from docsearch_server.runtime.health import build_health_endpoint
from docsearch_server.search.formatter import ResultFormatter
from docsearch_server.search.highlight import Highlighter
from docsearch_server.search.indexing import IndexingPipeline
from docsearch_server.search.lifecycle import IndexLifecycleManager
from docsearch_server.search.query_parser import QueryCompiler
from docsearch_server.search.schema import create_document_schema
from docsearch_server.service_layer import DocumentSyncService, SearchService

from .config import Settings


if TYPE_CHECKING:
    from starlette.requests import Request


logger = logging.getLogger(__name__)


class AppBuilder:
    """Builds the ASGI app from :class:`Settings`.

    The index lifecycle manager, the repository and both services are created
    in the lifespan and published on ``app.state``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        repository: AbstractDocumentRepository | None = None,
        configure_observability: bool = True,
    ) -> None:
        self.settings = settings or Settings()
        self.repository = repository
        self.configure_observability = configure_observability

    def build(self) -> Starlette:
        """Build and return the Starlette application."""
        settings = self.settings
        if self.configure_observability:
            configure_logging(level=settings.log_level, json_output=settings.log_json, access_log=settings.access_log)
            configure_metrics_exporter(settings.otlp_endpoint, service_name=settings.service_name)
            init_metrics(service_name=settings.service_name)
            init_tracing(service_name=settings.service_name, otlp_endpoint=settings.otlp_endpoint)

        app = Starlette(
            debug=settings.log_level.lower() == "debug",
            routes=self._build_routes(),
            lifespan=self._build_lifespan_manager(),
            exception_handlers=EXCEPTION_HANDLERS,
        )
        app.middleware("http")(trace_request)
        logger.info("Search server initialized (index=%s, store=%s)", settings.index_path, settings.store_backend)
        return app

    def _build_routes(self) -> list[Route]:
        return [
            Route("/", endpoint=self._build_root_endpoint(), methods=["GET"]),
            Route("/health", endpoint=build_health_endpoint(self.settings.service_name), methods=["GET"]),
            Route("/metrics", endpoint=self._build_metrics_endpoint(), methods=["GET"]),
            Route("/documents", endpoint=create_document, methods=["POST"]),
            Route("/documents", endpoint=list_documents, methods=["GET"]),
            Route("/documents/{id}", endpoint=get_document, methods=["GET"]),
            Route("/documents/{id}", endpoint=update_document, methods=["PUT"]),
            Route("/documents/{id}", endpoint=delete_document, methods=["DELETE"]),
            Route("/search", endpoint=search_get, methods=["GET"]),
            Route("/search", endpoint=search_post, methods=["POST"]),
            Route("/admin/reindex", endpoint=reindex_documents, methods=["POST"]),
        ]

    def _build_root_endpoint(self):
        async def root(_: Request) -> JSONResponse:
            return JSONResponse({"message": "Full-Text Search API"})

        return root

    def _build_metrics_endpoint(self):
        async def metrics_endpoint(_: Request) -> Response:
            return Response(content=get_metrics(), media_type=get_metrics_content_type())

        return metrics_endpoint

    def build_repository(self) -> AbstractDocumentRepository:
        if self.repository is not None:
            return self.repository
        if self.settings.store_backend == "memory":
            logger.warning("Using the in-memory document store; documents are lost on restart")
            return InMemoryDocumentRepository()
        return SqliteDocumentRepository(self.settings.store_path)

    def build_lifecycle(self) -> IndexLifecycleManager:
        settings = self.settings
        schema = create_document_schema(
            title_boost=settings.title_boost,
            tags_boost=settings.tags_boost,
            content_boost=settings.content_boost,
        )
        return IndexLifecycleManager.open_or_create(settings.index_path, schema)

    def build_search_service(self, lifecycle: IndexLifecycleManager) -> SearchService:
        settings = self.settings
        highlighter = Highlighter(
            fragment_size=settings.highlight_fragment_size,
            pre_tag=settings.highlight_pre_tag,
            post_tag=settings.highlight_post_tag,
        )
        return SearchService(
            lifecycle,
            compiler=QueryCompiler(lifecycle.schema, max_limit=settings.max_search_limit),
            formatter=ResultFormatter(highlighter),
            default_limit=settings.default_search_limit,
        )

    def _build_lifespan_manager(self):
        @asynccontextmanager
        async def lifespan(app: Starlette):
            lifecycle = await anyio.to_thread.run_sync(self.build_lifecycle)
            repository = self.build_repository()
            app.state.lifecycle = lifecycle
            app.state.repository = repository
            app.state.sync_service = DocumentSyncService(repository, IndexingPipeline(lifecycle))
            app.state.search_service = self.build_search_service(lifecycle)
            try:
                yield
            finally:
                try:
                    await repository.close()
                finally:
                    await anyio.to_thread.run_sync(lifecycle.close)
                logger.info("Search server shut down")

        return lifespan


def create_app(settings: Settings | None = None) -> Starlette:
    """Create the application from environment settings."""
    return AppBuilder(settings).build()
