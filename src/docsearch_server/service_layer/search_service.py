"""Search service orchestration layer.

Compiles the request, pins one index snapshot for the whole call and hands
it to the result formatter. Ranking, the total count and highlighting all
read the same snapshot.
"""

from __future__ import annotations

import logging
import sqlite3
import threading

import anyio

from docsearch_server.domain.errors import IndexUnavailable
from docsearch_server.domain.search import SearchHit, SearchResults
from docsearch_server.observability.metrics import SEARCH_LATENCY, track_latency
from docsearch_server.observability.tracing import create_span
from docsearch_server.search.formatter import ResultFormatter
from docsearch_server.search.lifecycle import IndexLifecycleManager
from docsearch_server.search.query import CompiledQuery
from docsearch_server.search.query_parser import QueryCompiler


logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10


class SearchService:
    """High-level search API used by the HTTP endpoints."""

    def __init__(
        self,
        lifecycle: IndexLifecycleManager,
        *,
        compiler: QueryCompiler | None = None,
        formatter: ResultFormatter | None = None,
        default_limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> None:
        self.lifecycle = lifecycle
        self.compiler = compiler or QueryCompiler(lifecycle.schema)
        self.formatter = formatter or ResultFormatter()
        self.default_limit = default_limit

    async def search(
        self,
        query: str,
        category: str | None = None,
        limit: int | None = None,
        highlight: bool = False,
    ) -> SearchResults:
        """Run a ranked search.

        Raises:
            QuerySyntaxError: the query is malformed or has no searchable terms.
            IndexUnavailable: the index could not be read.
        """
        compiled = self.compiler.compile(
            query,
            category=category,
            limit=limit if limit is not None else self.default_limit,
            highlight=highlight,
        )
        with (
            track_latency(SEARCH_LATENCY, highlight=str(highlight).lower()),
            create_span("search.execute", attributes={"search.query": query, "search.limit": compiled.limit}),
        ):
            # The worker owns the snapshot, so an abandoned call still releases it.
            abandoned = threading.Event()
            try:
                hits, total = await anyio.to_thread.run_sync(
                    self._execute, compiled, abandoned, abandon_on_cancel=True
                )
            except anyio.get_cancelled_exc_class():
                abandoned.set()
                raise
        logger.debug("Search %r returned %d of %d hits", query, len(hits), total)
        return SearchResults(results=hits, total_hits=total, query=query)

    def _execute(self, compiled: CompiledQuery, abandoned: threading.Event) -> tuple[list[SearchHit], int]:
        try:
            with self.lifecycle.snapshot() as snapshot:
                ranked = self.formatter.rank(snapshot, compiled)
                if abandoned.is_set():
                    logger.debug("Search %r was cancelled; skipping hit formatting", compiled.raw)
                    return [], ranked.total_hits
                return self.formatter.format_hits(snapshot, compiled, ranked), ranked.total_hits
        except sqlite3.Error as exc:
            msg = f"Index at {self.lifecycle.path} could not be searched: {exc}"
            raise IndexUnavailable(msg) from exc
