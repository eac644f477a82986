"""Runs a compiled query against one snapshot and shapes the hits."""

from __future__ import annotations

import logging
from typing import Any

from docsearch_server.domain.search import SearchHit
from docsearch_server.search.highlight import Highlighter
from docsearch_server.search.index_store import IndexSnapshot
from docsearch_server.search.query import CompiledQuery, highlight_matchers
from docsearch_server.search.searcher import RankedResults, Searcher


logger = logging.getLogger(__name__)

HIGHLIGHT_FIELDS = ("title", "content")


class ResultFormatter:
    """Ranking, truncation and optional highlighting for a search request.

    Ranking (:meth:`rank`) and hit shaping (:meth:`format_hits`) are separate
    so a caller can drop the second step when the request is cancelled.
    Both must be given the same snapshot.
    """

    def __init__(self, highlighter: Highlighter | None = None) -> None:
        self.highlighter = highlighter or Highlighter()

    def execute(self, snapshot: IndexSnapshot, compiled: CompiledQuery) -> tuple[list[SearchHit], int]:
        ranked = self.rank(snapshot, compiled)
        return self.format_hits(snapshot, compiled, ranked), ranked.total_hits

    def rank(self, snapshot: IndexSnapshot, compiled: CompiledQuery) -> RankedResults:
        ranked = Searcher(snapshot).search(compiled.query, compiled.limit)
        logger.debug(
            "Query %r matched %d records at generation %d",
            compiled.raw,
            ranked.total_hits,
            snapshot.generation,
        )
        return ranked

    def format_hits(self, snapshot: IndexSnapshot, compiled: CompiledQuery, ranked: RankedResults) -> list[SearchHit]:
        stored = snapshot.stored_fields(hit.docnum for hit in ranked.hits)
        matchers = highlight_matchers(compiled.text_query) if compiled.highlight else {}
        hits: list[SearchHit] = []
        for scored in ranked.hits:
            fields = stored.get(scored.docnum)
            if fields is None:
                continue
            hits.append(self._to_hit(fields, scored.score, matchers if compiled.highlight else None))
        return hits

    def _to_hit(self, fields: dict[str, Any], score: float, matchers: dict | None) -> SearchHit:
        title = fields.get("title") or ""
        content = fields.get("content") or ""
        highlighted: dict[str, str | None] = {}
        if matchers is not None:
            for field_name, text in (("title", title), ("content", content)):
                highlighted[field_name] = self.highlighter.highlight(text, matchers.get(field_name, []))
        return SearchHit(
            id=fields["id"],
            title=title,
            content=content,
            category=fields.get("category"),
            tags=list(fields.get("tags") or []),
            score=score,
            highlighted_title=highlighted.get("title"),
            highlighted_content=highlighted.get("content"),
        )
