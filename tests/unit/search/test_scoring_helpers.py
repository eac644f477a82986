"""Unit tests for BM25 statistics, edit distance and phrase matching helpers."""

import math

import pytest

from docsearch_server.search.fuzzy import find_fuzzy_matches, get_max_edit_distance, levenshtein_distance
from docsearch_server.search.phrase import get_min_span, phrase_frequency
from docsearch_server.search.stats import FieldLengthStats, bm25, calculate_idf


def test_idf_is_positive_even_for_terms_in_every_record():
    assert calculate_idf(3, 3) > 0
    assert calculate_idf(1, 3) > calculate_idf(3, 3)
    assert calculate_idf(0, 0) == 0.0
    assert calculate_idf(1, 1) == pytest.approx(math.log(1 + 0.5 / 1.5))


def test_bm25_saturates_and_normalizes_length():
    assert bm25(0, 10, 10.0) == 0.0
    assert bm25(2, 10, 10.0) > bm25(1, 10, 10.0)
    assert bm25(1, 5, 10.0) > bm25(1, 20, 10.0)
    # Ratios above 4x the average are capped.
    assert bm25(1, 400, 10.0) == bm25(1, 40, 10.0)


def test_field_length_stats_average():
    assert FieldLengthStats("content", total_terms=30, document_count=3).average_length == 10.0
    assert FieldLengthStats("content", total_terms=0, document_count=0).average_length == 0.0


def test_levenshtein_distance():
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("hello", "hallo") == 1
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("kotlin", "java", max_distance=1) == 2


@pytest.mark.parametrize(("length", "expected"), [(2, 0), (3, 1), (5, 1), (6, 2), (12, 2)])
def test_default_edit_distance_by_length(length, expected):
    assert get_max_edit_distance(length) == expected


def test_find_fuzzy_matches_sorted_by_distance():
    vocabulary = ["kotlin", "kotlen", "koltin", "java", "kotlinx"]
    matches = find_fuzzy_matches("kotlin", vocabulary, max_distance=1)

    assert matches == [("kotlin", 0), ("kotlen", 1), ("kotlinx", 1)]


def test_find_fuzzy_matches_clamps_distance():
    assert find_fuzzy_matches("abc", ["xyz"], max_distance=5) == []
    assert find_fuzzy_matches("", ["a"]) == []


def test_exact_phrase_frequency():
    # "structured concurrency" twice, once broken up
    assert phrase_frequency([[0, 5, 9], [1, 6, 11]]) == 2.0
    assert phrase_frequency([[0], []]) == 0.0


def test_sloppy_phrase_frequency_prefers_tight_matches():
    assert phrase_frequency([[0], [2]], slop=0) == 0.0
    assert phrase_frequency([[0], [2]], slop=1) == pytest.approx(0.5)
    assert phrase_frequency([[0], [1]], slop=2) == pytest.approx(1.0)


def test_min_span_picks_closest_occurrence():
    assert get_min_span([[10], [3, 12], [13]], anchor=10) == 1
