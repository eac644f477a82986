"""Error taxonomy shared by the index, the canonical store and the HTTP layer.

Lookup failures (unknown or malformed ids) are not exceptions at the service
boundary: repositories return ``None``/``False`` and the HTTP layer answers
404. Everything below is raised when a request cannot be served.
"""

from __future__ import annotations


class SearchServiceError(Exception):
    """Base class for all errors raised by the search service."""


class InvalidIdentifier(SearchServiceError, ValueError):
    """Raised when a document id string is malformed."""

    def __init__(self, raw_id: str) -> None:
        super().__init__(f"Invalid document id: {raw_id!r}")
        self.raw_id = raw_id


class QuerySyntaxError(SearchServiceError, ValueError):
    """Raised when a free-text query cannot be parsed.

    Surfaced to callers as a client error together with the offending query.
    """

    def __init__(self, query: str, reason: str, position: int | None = None) -> None:
        location = f" at position {position}" if position is not None else ""
        super().__init__(f"Cannot parse query {query!r}{location}: {reason}")
        self.query = query
        self.reason = reason
        self.position = position


class IndexUnavailable(SearchServiceError):
    """Raised when the index cannot be mutated or read after one reinitialization."""


class IndexLockError(SearchServiceError):
    """Raised when a second mutation handle is requested for an index location."""


class IndexSchemaMismatch(SearchServiceError):
    """Raised when an existing index was built with a different schema."""


class StoreUnavailable(SearchServiceError):
    """Raised when the canonical document store cannot be reached."""


class InvalidIndexTransition(SearchServiceError, RuntimeError):
    """Raised when the index lifecycle is asked to move between incompatible states."""
