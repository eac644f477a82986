"""Highlighted fragments for matched fields.

The stored text is re-analyzed with the index analyzer so every token keeps
its character offsets; tokens the free-text query matched are wrapped in the
configured tags. For text longer than the fragment size, candidate windows
are anchored near each match (pulled back to a sentence start when one is
close) and the window with the most distinct matched terms wins.

Smart defaults:
- 150-character fragments
- ``<mark>``/``</mark>`` tags
- ``None`` when nothing in the field matched, never an empty string
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import re

from docsearch_server.search.analyzers import Analyzer, Token, get_analyzer
from docsearch_server.search.query import TermMatcher


DEFAULT_FRAGMENT_SIZE = 150
DEFAULT_PRE_TAG = "<mark>"
DEFAULT_POST_TAG = "</mark>"

SENTENCE_END_PATTERN = re.compile(r"[.!?]\s+")


def find_sentence_start(text: str, position: int, max_lookback: int) -> int:
    """Return the start of the sentence containing ``position``, looking back at most ``max_lookback`` chars.

    Falls back to ``position`` itself when no boundary is close enough.
    """
    if position <= 0:
        return 0
    start_search = max(0, position - max_lookback)
    matches = list(SENTENCE_END_PATTERN.finditer(text, start_search, position))
    if matches:
        return matches[-1].end()
    if start_search == 0:
        return 0
    return position


@dataclass(frozen=True)
class _Window:
    start: int
    end: int
    distinct: int
    total: int


class Highlighter:
    """Produce the best marked-up fragment of a field for a set of term matchers."""

    def __init__(
        self,
        *,
        fragment_size: int = DEFAULT_FRAGMENT_SIZE,
        pre_tag: str = DEFAULT_PRE_TAG,
        post_tag: str = DEFAULT_POST_TAG,
        analyzer: Analyzer | None = None,
    ) -> None:
        if fragment_size < 1:
            msg = f"fragment_size must be positive, got {fragment_size}"
            raise ValueError(msg)
        self.fragment_size = fragment_size
        self.pre_tag = pre_tag
        self.post_tag = post_tag
        self.analyzer = analyzer or get_analyzer(None)

    def highlight(self, text: str | None, matchers: Sequence[TermMatcher]) -> str | None:
        """Return the best fragment of ``text`` with matched tokens wrapped, or ``None``."""
        if not text or not matchers:
            return None
        matched = [token for token in self.analyzer(text) if any(matcher(token.text) for matcher in matchers)]
        if not matched:
            return None

        window = self._best_window(text, matched)
        inside = [token for token in matched if token.start_char >= window.start and token.end_char <= window.end]
        return self._mark(text, window.start, window.end, inside).strip()

    def _best_window(self, text: str, matched: list[Token]) -> _Window:
        if len(text) <= self.fragment_size:
            return self._score_window(0, len(text), matched)

        best: _Window | None = None
        for anchor in matched:
            start = find_sentence_start(text, anchor.start_char, self.fragment_size // 3)
            start = _skip_leading_space(text, start)
            end = self._fragment_end(text, start)
            if anchor.end_char > end:
                # A token longer than the fragment widens the window so it stays marked.
                start = anchor.start_char
                end = max(self._fragment_end(text, start), anchor.end_char)
            candidate = self._score_window(start, end, matched)
            if best is None or (candidate.distinct, candidate.total) > (best.distinct, best.total):
                best = candidate
        return best  # type: ignore[return-value]

    def _fragment_end(self, text: str, start: int) -> int:
        """End of a fragment starting at ``start``, cut back to a word boundary."""
        limit = min(len(text), start + self.fragment_size)
        if limit == len(text):
            return limit
        cut = limit
        while cut > start and not text[cut].isspace() and not text[cut - 1].isspace():
            cut -= 1
        return cut if cut > start else limit

    @staticmethod
    def _score_window(start: int, end: int, matched: list[Token]) -> _Window:
        inside = [token.text for token in matched if token.start_char >= start and token.end_char <= end]
        return _Window(start=start, end=end, distinct=len(set(inside)), total=len(inside))

    def _mark(self, text: str, start: int, end: int, tokens: list[Token]) -> str:
        parts: list[str] = []
        cursor = start
        for token in sorted(tokens, key=lambda t: t.start_char):
            parts.append(text[cursor : token.start_char])
            parts.append(f"{self.pre_tag}{text[token.start_char : token.end_char]}{self.post_tag}")
            cursor = token.end_char
        parts.append(text[cursor:end])
        return "".join(parts)


def _skip_leading_space(text: str, position: int) -> int:
    while position < len(text) and text[position].isspace():
        position += 1
    return position
