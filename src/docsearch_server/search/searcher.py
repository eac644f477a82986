"""Executes query plans against an index snapshot.

Scores follow BM25 per field, multiplied by the clause boost. Multi-term
expansions (prefix, wildcard) score a constant boost per matching record;
fuzzy expansions score like term queries weighted by edit similarity.
"""

from __future__ import annotations

from dataclasses import dataclass
import heapq
import logging

from docsearch_server.search.fuzzy import find_fuzzy_matches
from docsearch_server.search.index_store import IndexSnapshot
from docsearch_server.search.phrase import phrase_frequency
from docsearch_server.search.query import (
    BooleanQuery,
    FuzzyQuery,
    Occur,
    PhraseQuery,
    PrefixQuery,
    Query,
    TermQuery,
    WildcardQuery,
)
from docsearch_server.search.stats import bm25, calculate_idf


logger = logging.getLogger(__name__)

# Upper bound on the terms a prefix, wildcard or fuzzy query may expand to.
MAX_EXPANSIONS = 1024

Scores = dict[int, float]


@dataclass(frozen=True)
class ScoredDoc:
    docnum: int
    score: float


@dataclass(frozen=True)
class RankedResults:
    """Top hits plus the count of every record the query matched."""

    hits: list[ScoredDoc]
    total_hits: int


class Searcher:
    """Plan interpreter bound to one snapshot.

    All reads for a request go through the same snapshot, so the ranked page
    and the total count always describe the same committed state.
    """

    def __init__(self, snapshot: IndexSnapshot) -> None:
        self.snapshot = snapshot
        self._total_docs = snapshot.doc_count()

    def search(self, query: Query, limit: int) -> RankedResults:
        scores = self.score(query)
        # Highest score first; equal scores keep insertion order.
        top = heapq.nsmallest(limit, scores.items(), key=lambda item: (-item[1], item[0]))
        return RankedResults(
            hits=[ScoredDoc(docnum=docnum, score=score) for docnum, score in top],
            total_hits=len(scores),
        )

    def score(self, query: Query) -> Scores:
        """Return ``{docnum: score}`` for every record matching ``query``."""
        if self._total_docs == 0:
            return {}
        if isinstance(query, TermQuery):
            return self._score_term(query.field, query.term, query.boost)
        if isinstance(query, PhraseQuery):
            return self._score_phrase(query)
        if isinstance(query, PrefixQuery):
            terms = self.snapshot.terms_with_prefix(query.field, query.prefix)
            return self._constant_score(query.field, terms, query.boost)
        if isinstance(query, WildcardQuery):
            pattern = query.compile()
            terms = [term for term in self.snapshot.terms(query.field) if pattern.match(term)]
            return self._constant_score(query.field, terms, query.boost)
        if isinstance(query, FuzzyQuery):
            return self._score_fuzzy(query)
        if isinstance(query, BooleanQuery):
            return self._score_boolean(query)
        msg = f"Unsupported query node: {type(query).__name__}"
        raise TypeError(msg)

    def _score_term(self, field_name: str, term: str, boost: float) -> Scores:
        postings = self.snapshot.postings(field_name, term)
        if not postings:
            return {}
        idf = calculate_idf(len(postings), self._total_docs)
        avg_length = self.snapshot.field_stats(field_name).average_length
        lengths = self.snapshot.field_lengths(field_name)
        return {
            posting.docnum: boost * idf * bm25(posting.frequency, lengths.get(posting.docnum, 0), avg_length)
            for posting in postings
        }

    def _score_phrase(self, query: PhraseQuery) -> Scores:
        postings_per_term = [self.snapshot.postings(query.field, term) for term in query.terms]
        if any(not postings for postings in postings_per_term):
            return {}

        by_doc = [{p.docnum: p.position_list() for p in postings} for postings in postings_per_term]
        candidates = set(by_doc[0])
        for positions in by_doc[1:]:
            candidates &= positions.keys()
        if not candidates:
            return {}

        idf = sum(calculate_idf(len(postings), self._total_docs) for postings in postings_per_term)
        avg_length = self.snapshot.field_stats(query.field).average_length
        lengths = self.snapshot.field_lengths(query.field)
        scores: Scores = {}
        for docnum in candidates:
            freq = phrase_frequency([positions[docnum] for positions in by_doc], query.slop)
            if freq > 0:
                scores[docnum] = query.boost * idf * bm25(freq, lengths.get(docnum, 0), avg_length)
        return scores

    def _constant_score(self, field_name: str, terms: list[str], boost: float) -> Scores:
        if len(terms) > MAX_EXPANSIONS:
            logger.debug("Truncating expansion on %s from %d to %d terms", field_name, len(terms), MAX_EXPANSIONS)
            terms = terms[:MAX_EXPANSIONS]
        scores: Scores = {}
        for term in terms:
            for posting in self.snapshot.postings(field_name, term):
                scores[posting.docnum] = boost
        return scores

    def _score_fuzzy(self, query: FuzzyQuery) -> Scores:
        matches = find_fuzzy_matches(query.term, self.snapshot.terms(query.field), query.effective_max_edits)
        scores: Scores = {}
        for term, distance in matches[:MAX_EXPANSIONS]:
            similarity = 1.0 - distance / max(len(query.term), 1)
            for docnum, score in self._score_term(query.field, term, query.boost * similarity).items():
                if score > scores.get(docnum, 0.0):
                    scores[docnum] = score
        return scores

    def _score_boolean(self, query: BooleanQuery) -> Scores:
        required: list[Scores] = []
        filters: list[Scores] = []
        optional: list[Scores] = []
        prohibited: set[int] = set()
        for clause in query.clauses:
            matched = self.score(clause.query)
            if clause.occur == Occur.MUST:
                required.append(matched)
            elif clause.occur == Occur.FILTER:
                filters.append(matched)
            elif clause.occur == Occur.SHOULD:
                optional.append(matched)
            else:
                prohibited.update(matched)

        if required or filters:
            gates = required + filters
            candidates = set(gates[0])
            for gate in gates[1:]:
                candidates &= gate.keys()
        else:
            candidates = set()
            for matched in optional:
                candidates.update(matched)
        candidates -= prohibited

        scores: Scores = {}
        for docnum in candidates:
            total = sum(matched[docnum] for matched in required)
            total += sum(matched.get(docnum, 0.0) for matched in optional)
            scores[docnum] = query.boost * total
        return scores
