"""Process entry points: the HTTP server and the offline index rebuild."""

from __future__ import annotations

import logging
import sys

import anyio
from pydantic import ValidationError

from docsearch_server.app_builder import AppBuilder
from docsearch_server.config import Settings
from docsearch_server.domain.errors import SearchServiceError
from docsearch_server.observability import configure_logging
from docsearch_server.search.indexing import IndexingPipeline
from docsearch_server.service_layer import DocumentSyncService


logger = logging.getLogger(__name__)


def _load_settings() -> Settings | None:
    try:
        return Settings()
    except ValidationError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Configuration is invalid: %s", exc)
        return None


def main() -> None:
    """Run the search server under uvicorn."""
    import uvicorn

    settings = _load_settings()
    if settings is None:
        sys.exit(2)

    app = AppBuilder(settings).build()

    logger.info("Starting search server on %s:%d", settings.host, settings.port)
    logger.info("Health check: http://%s:%d/health", settings.host, settings.port)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,  # Don't let uvicorn override our logging config
    )


async def _reindex(builder: AppBuilder) -> int:
    lifecycle = await anyio.to_thread.run_sync(builder.build_lifecycle)
    repository = builder.build_repository()
    try:
        service = DocumentSyncService(repository, IndexingPipeline(lifecycle))
        return await service.reindex_all()
    finally:
        await repository.close()
        await anyio.to_thread.run_sync(lifecycle.close)


def reindex_main() -> None:
    """Rebuild the search index from the canonical store.

    The server must be stopped first: the index accepts a single writer.
    """
    settings = _load_settings()
    if settings is None:
        sys.exit(2)
    configure_logging(level=settings.log_level, json_output=settings.log_json)

    builder = AppBuilder(settings, configure_observability=False)
    try:
        count = anyio.run(_reindex, builder)
    except SearchServiceError as exc:
        logger.error("Reindex failed: %s", exc)
        sys.exit(1)
    logger.info("Reindexed %d documents into %s", count, settings.index_path)


if __name__ == "__main__":
    main()
