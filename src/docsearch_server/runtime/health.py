"""Health endpoint factory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import anyio
from starlette.responses import JSONResponse

from docsearch_server.domain.errors import SearchServiceError


if TYPE_CHECKING:
    from starlette.requests import Request


logger = logging.getLogger(__name__)


def build_health_endpoint(service_name: str):
    """Return a coroutine function reporting store and index health.

    Reads ``sync_service`` and ``lifecycle`` from ``request.app.state``.
    """

    async def health_check(request: Request) -> JSONResponse:
        sync_service = request.app.state.sync_service
        lifecycle = request.app.state.lifecycle
        status = "ok"
        documents_count: int | None = None
        try:
            documents_count = await sync_service.count()
        except SearchServiceError as exc:
            logger.warning("Health check could not reach the document store: %s", exc)
            status = "degraded"

        try:
            index = await anyio.to_thread.run_sync(lifecycle.stats)
        except SearchServiceError as exc:
            logger.warning("Health check could not read the index: %s", exc)
            index = {"state": lifecycle.state.value, "error": str(exc)}
            status = "degraded"

        return JSONResponse(
            {
                "status": status,
                "service": service_name,
                "documentsCount": documents_count,
                "index": index,
            },
            status_code=200 if status == "ok" else 503,
        )

    return health_check
