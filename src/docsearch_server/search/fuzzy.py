"""Edit-distance matching for fuzzy query terms (``kotlin~``, ``kotlin~1``).

A fuzzy term expands to every indexed term of the field within the allowed
edit distance. Without an explicit distance the limit depends on term length:
- 1-2 chars: exact only
- 3-5 chars: 1 edit
- 6+ chars: 2 edits
"""

from __future__ import annotations

from collections.abc import Iterable


MAX_EDIT_DISTANCE = 2


def levenshtein_distance(s1: str, s2: str, max_distance: int | None = None) -> int:
    """Calculate the Levenshtein (edit) distance between two strings.

    When ``max_distance`` is given the computation stops early and returns
    ``max_distance + 1`` once the threshold is guaranteed to be exceeded.

    Examples:
        >>> levenshtein_distance("kitten", "sitting")
        3
        >>> levenshtein_distance("hello", "hallo")
        1
    """
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    if len(s1) > len(s2):
        s1, s2 = s2, s1

    m, n = len(s1), len(s2)

    if max_distance is not None and abs(m - n) > max_distance:
        return max_distance + 1

    prev_row = list(range(m + 1))
    curr_row = [0] * (m + 1)

    for j in range(1, n + 1):
        curr_row[0] = j
        row_min = curr_row[0]
        for i in range(1, m + 1):
            cost = 0 if s1[i - 1] == s2[j - 1] else 1
            curr_row[i] = min(
                prev_row[i] + 1,
                curr_row[i - 1] + 1,
                prev_row[i - 1] + cost,
            )
            row_min = min(row_min, curr_row[i])

        if max_distance is not None and row_min > max_distance:
            return max_distance + 1

        prev_row, curr_row = curr_row, prev_row

    return prev_row[m]


def get_max_edit_distance(term_length: int) -> int:
    """Get the default edit distance for a term based on its length."""
    if term_length <= 2:
        return 0
    if term_length <= 5:
        return 1
    return MAX_EDIT_DISTANCE


def find_fuzzy_matches(
    query_term: str,
    vocabulary: Iterable[str],
    max_distance: int | None = None,
) -> list[tuple[str, int]]:
    """Find terms in ``vocabulary`` within ``max_distance`` edits of ``query_term``.

    Returns:
        ``(term, distance)`` pairs sorted by distance, then term. Exact
        matches have distance 0.
    """
    if not query_term:
        return []

    if max_distance is None:
        max_distance = get_max_edit_distance(len(query_term))
    max_distance = max(0, min(max_distance, MAX_EDIT_DISTANCE))

    matches: list[tuple[str, int]] = []
    for term in vocabulary:
        if abs(len(query_term) - len(term)) > max_distance:
            continue
        distance = levenshtein_distance(query_term, term, max_distance)
        if distance <= max_distance:
            matches.append((term, distance))

    matches.sort(key=lambda x: (x[1], x[0]))
    return matches
