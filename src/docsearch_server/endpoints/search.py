"""Search endpoints: ``GET /search`` and ``POST /search`` share one response shape."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from starlette.responses import JSONResponse, Response

from docsearch_server.domain.search import SearchRequest, SearchResponse, SearchResults
from docsearch_server.endpoints import error_response, parse_bool_param, parse_int_param, read_model


if TYPE_CHECKING:
    from starlette.requests import Request

    from docsearch_server.service_layer.search_service import SearchService


_OPTIONAL_HIT_KEYS = ("highlightedTitle", "highlightedContent")


def render_results(results: SearchResults) -> dict[str, Any]:
    """Serialize results with camelCase keys; highlight keys are omitted when absent."""
    payload = SearchResponse.from_results(results).model_dump(by_alias=True)
    for hit in payload["results"]:
        for key in _OPTIONAL_HIT_KEYS:
            if hit.get(key) is None:
                hit.pop(key, None)
    return payload


def _search_service(request: Request) -> SearchService:
    return request.app.state.search_service


async def search_get(request: Request) -> Response:
    query = request.query_params.get("q")
    if query is None:
        return error_response("Missing query parameter 'q'", 400)
    service = _search_service(request)
    limit, error = parse_int_param(request, "limit", default=service.default_limit, min_value=1)
    if error:
        return error
    results = await service.search(
        query,
        category=request.query_params.get("category"),
        limit=limit,
        highlight=parse_bool_param(request, "highlight"),
    )
    return JSONResponse(render_results(results))


async def search_post(request: Request) -> Response:
    body, error = await read_model(request, SearchRequest)
    if error:
        return error
    assert body is not None
    results = await _search_service(request).search(
        body.query,
        category=body.category,
        limit=body.limit,
        highlight=body.highlight,
    )
    return JSONResponse(render_results(results))
