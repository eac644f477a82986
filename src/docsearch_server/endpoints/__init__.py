"""HTTP endpoints and the mapping from service errors to JSON error responses."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError
from starlette.responses import JSONResponse

from docsearch_server.domain.errors import IndexUnavailable, QuerySyntaxError, StoreUnavailable
from docsearch_server.observability.metrics import ERROR_COUNT


if TYPE_CHECKING:
    from starlette.requests import Request


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def error_response(message: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def not_found() -> JSONResponse:
    return error_response("Document not found", 404)


async def read_model(request: Request, model: type[ModelT]) -> tuple[ModelT | None, JSONResponse | None]:
    """Parse the JSON body into ``model``; return a 400 response instead when it is invalid."""
    try:
        payload = await request.json()
    except ValueError:
        return None, error_response("Request body must be valid JSON", 400)
    try:
        return model.model_validate(payload), None
    except ValidationError as exc:
        details = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]} for err in exc.errors()
        ]
        return None, error_response("Invalid request body", 400, details=details)


def parse_int_param(
    request: Request,
    name: str,
    *,
    default: int,
    min_value: int = 0,
) -> tuple[int | None, JSONResponse | None]:
    raw_value = request.query_params.get(name)
    if raw_value is None or raw_value == "":
        return default, None
    try:
        parsed = int(raw_value)
    except ValueError:
        return None, error_response(f"Invalid {name}", 400)
    if parsed < min_value:
        return None, error_response(f"Invalid {name}", 400)
    return parsed, None


def parse_bool_param(request: Request, name: str, *, default: bool = False) -> bool:
    raw_value = request.query_params.get(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


async def handle_query_syntax_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, QuerySyntaxError)
    ERROR_COUNT.labels(error_type="QuerySyntaxError", component="search").inc()
    logger.info("Rejected query %r: %s", exc.query, exc.reason)
    return error_response(str(exc), 400, query=exc.query)


async def handle_index_unavailable(request: Request, exc: Exception) -> JSONResponse:
    ERROR_COUNT.labels(error_type="IndexUnavailable", component="index").inc()
    logger.error("Index unavailable while serving %s %s: %s", request.method, request.url.path, exc)
    return error_response("Search index unavailable", 503)


async def handle_store_unavailable(request: Request, exc: Exception) -> JSONResponse:
    ERROR_COUNT.labels(error_type="StoreUnavailable", component="store").inc()
    logger.error("Document store unavailable while serving %s %s: %s", request.method, request.url.path, exc)
    return error_response("Document store unavailable", 503)


EXCEPTION_HANDLERS = {
    QuerySyntaxError: handle_query_syntax_error,
    IndexUnavailable: handle_index_unavailable,
    StoreUnavailable: handle_store_unavailable,
}
