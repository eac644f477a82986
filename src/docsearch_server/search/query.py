"""Declarative query plans.

A plan is a tree of frozen dataclasses built by the query compiler and
interpreted by :mod:`docsearch_server.search.searcher`. Plans hold analyzed
terms only; they never touch the index themselves.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
import fnmatch
import re
from typing import Union

from docsearch_server.search.fuzzy import get_max_edit_distance, levenshtein_distance


class Occur(str, Enum):
    """How a clause participates in a boolean query.

    - MUST: required, contributes to the score
    - SHOULD: optional, contributes to the score; at least one is required
      when the query has no MUST or FILTER clause
    - MUST_NOT: excludes matching records, never scores
    - FILTER: required, never scores
    """

    MUST = "must"
    SHOULD = "should"
    MUST_NOT = "must_not"
    FILTER = "filter"


@dataclass(frozen=True)
class TermQuery:
    field: str
    term: str
    boost: float = 1.0


@dataclass(frozen=True)
class PhraseQuery:
    field: str
    terms: tuple[str, ...]
    slop: int = 0
    boost: float = 1.0


@dataclass(frozen=True)
class PrefixQuery:
    field: str
    prefix: str
    boost: float = 1.0


@dataclass(frozen=True)
class WildcardQuery:
    """``*`` matches any run of characters, ``?`` exactly one."""

    field: str
    pattern: str
    boost: float = 1.0

    def compile(self) -> re.Pattern[str]:
        return re.compile(fnmatch.translate(self.pattern), re.DOTALL)


@dataclass(frozen=True)
class FuzzyQuery:
    """Terms within ``max_edits`` Levenshtein edits; ``None`` picks a limit from the term length."""

    field: str
    term: str
    max_edits: int | None = None
    boost: float = 1.0

    @property
    def effective_max_edits(self) -> int:
        if self.max_edits is None:
            return get_max_edit_distance(len(self.term))
        return self.max_edits


@dataclass(frozen=True)
class BooleanClause:
    query: Query
    occur: Occur = Occur.SHOULD


@dataclass(frozen=True)
class BooleanQuery:
    clauses: tuple[BooleanClause, ...] = field(default_factory=tuple)
    boost: float = 1.0


Query = Union[TermQuery, PhraseQuery, PrefixQuery, WildcardQuery, FuzzyQuery, BooleanQuery]


def with_boost(query: Query, factor: float) -> Query:
    """Return ``query`` with its boost multiplied by ``factor``."""
    if factor == 1.0:
        return query
    return replace(query, boost=query.boost * factor)


@dataclass(frozen=True)
class CompiledQuery:
    """Everything needed to run one search request against a snapshot.

    ``text_query`` is the free-text part alone; highlighting only looks at
    its terms, never at the category filter.
    """

    raw: str
    query: Query
    text_query: Query
    category: str | None = None
    limit: int = 10
    highlight: bool = False


TermMatcher = Callable[[str], bool]


def highlight_matchers(query: Query) -> dict[str, list[TermMatcher]]:
    """Collect per-field predicates that tell whether an analyzed token matched ``query``.

    Prohibited and filter clauses are skipped, so their terms are never marked.
    """
    matchers: dict[str, list[TermMatcher]] = {}
    _collect_matchers(query, matchers)
    return matchers


def _collect_matchers(query: Query, matchers: dict[str, list[TermMatcher]]) -> None:
    if isinstance(query, BooleanQuery):
        for clause in query.clauses:
            if clause.occur in (Occur.MUST, Occur.SHOULD):
                _collect_matchers(clause.query, matchers)
        return

    bucket = matchers.setdefault(query.field, [])
    if isinstance(query, TermQuery):
        term = query.term
        bucket.append(lambda token: token == term)
    elif isinstance(query, PhraseQuery):
        terms = frozenset(query.terms)
        bucket.append(lambda token: token in terms)
    elif isinstance(query, PrefixQuery):
        prefix = query.prefix
        bucket.append(lambda token: token.startswith(prefix))
    elif isinstance(query, WildcardQuery):
        pattern = query.compile()
        bucket.append(lambda token: pattern.match(token) is not None)
    elif isinstance(query, FuzzyQuery):
        term, limit = query.term, query.effective_max_edits
        bucket.append(lambda token: levenshtein_distance(term, token, limit) <= limit)
