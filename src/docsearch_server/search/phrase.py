"""Positional matching for phrase queries.

A phrase matches when its terms occur in order at consecutive positions. With
a slop the terms may drift: for every term ``i`` at position ``p_i`` take the
offset ``p_i - i``; the match distance is the spread between the largest and
smallest offset, and the phrase matches when that spread is within the slop.
"""

from __future__ import annotations

from collections.abc import Sequence


def get_min_span(position_lists: Sequence[Sequence[int]], anchor: int) -> int:
    """Return the offset spread of the closest match anchored at ``anchor``.

    ``anchor`` is a position of the first phrase term. For each later term the
    occurrence whose offset lies closest to the anchor is chosen.
    """
    offsets = [anchor]
    for index, positions in enumerate(position_lists[1:], start=1):
        closest = min(positions, key=lambda p: abs((p - index) - anchor))
        offsets.append(closest - index)
    return max(offsets) - min(offsets)


def phrase_frequency(position_lists: Sequence[Sequence[int]], slop: int = 0) -> float:
    """Return the weighted number of phrase occurrences in one field.

    Exact occurrences count 1 each; sloppy ones count ``1 / (1 + distance)``
    so tighter matches score higher. Returns 0.0 when the phrase is absent.
    """
    if not position_lists or any(not positions for positions in position_lists):
        return 0.0
    if len(position_lists) == 1:
        return float(len(position_lists[0]))

    if slop <= 0:
        later = [set(positions) for positions in position_lists[1:]]
        hits = 0
        for anchor in position_lists[0]:
            if all(anchor + index in positions for index, positions in enumerate(later, start=1)):
                hits += 1
        return float(hits)

    frequency = 0.0
    for anchor in position_lists[0]:
        span = get_min_span(position_lists, anchor)
        if span <= slop:
            frequency += 1.0 / (1.0 + span)
    return frequency
