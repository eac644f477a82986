"""Document CRUD and index maintenance endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.responses import JSONResponse, Response

from docsearch_server.domain.model import CanonicalDocument, DocumentPatch
from docsearch_server.domain.search import DocumentRequest, DocumentResponse
from docsearch_server.endpoints import not_found, parse_int_param, read_model


if TYPE_CHECKING:
    from starlette.requests import Request

    from docsearch_server.service_layer.sync_service import DocumentSyncService


logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100


def _sync_service(request: Request) -> DocumentSyncService:
    return request.app.state.sync_service


def _document_json(document: CanonicalDocument, status_code: int = 200) -> JSONResponse:
    return JSONResponse(DocumentResponse.from_document(document).model_dump(by_alias=True), status_code=status_code)


async def create_document(request: Request) -> Response:
    body, error = await read_model(request, DocumentRequest)
    if error:
        return error
    assert body is not None
    document = CanonicalDocument(
        title=body.title,
        content=body.content,
        category=body.category,
        tags=body.tags,
        metadata=body.metadata,
    )
    created = await _sync_service(request).create(document)
    return _document_json(created, status_code=201)


async def list_documents(request: Request) -> Response:
    """``GET /documents``: ``category`` takes precedence over ``tags`` (comma separated)."""
    limit, error = parse_int_param(request, "limit", default=DEFAULT_LIST_LIMIT)
    if error:
        return error
    skip, error = parse_int_param(request, "skip", default=0)
    if error:
        return error
    assert limit is not None and skip is not None

    service = _sync_service(request)
    category = request.query_params.get("category")
    raw_tags = request.query_params.get("tags")
    if category is not None:
        documents = await service.list_by_category(category, limit=limit)
    elif raw_tags:
        tags = [tag.strip() for tag in raw_tags.split(",") if tag.strip()]
        documents = await service.list_by_tags(tags, limit=limit)
    else:
        documents = await service.list(limit=limit, offset=skip)
    return JSONResponse([DocumentResponse.from_document(doc).model_dump(by_alias=True) for doc in documents])


async def get_document(request: Request) -> Response:
    document = await _sync_service(request).get(request.path_params["id"])
    if document is None:
        return not_found()
    return _document_json(document)


async def update_document(request: Request) -> Response:
    body, error = await read_model(request, DocumentRequest)
    if error:
        return error
    assert body is not None
    patch = DocumentPatch(
        title=body.title,
        content=body.content,
        category=body.category,
        tags=body.tags,
        metadata=body.metadata,
    )
    updated = await _sync_service(request).update(request.path_params["id"], patch)
    if updated is None:
        return not_found()
    return _document_json(updated)


async def delete_document(request: Request) -> Response:
    deleted = await _sync_service(request).delete(request.path_params["id"])
    if not deleted:
        return not_found()
    return Response(status_code=204)


async def reindex_documents(request: Request) -> Response:
    """``POST /admin/reindex``: rebuild the index from the canonical store."""
    count = await _sync_service(request).reindex_all()
    logger.info("Manual reindex rebuilt %d records", count)
    return JSONResponse({"status": "ok", "reindexed": count})
