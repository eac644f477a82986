"""Statistical helpers for BM25 style scoring.

The functions here stay independent of the storage backend: the searcher
reads raw counts from a snapshot and hands them to these helpers.
"""

from __future__ import annotations

from dataclasses import dataclass
import math


BM25_K1 = 1.2
BM25_B = 0.75


@dataclass(frozen=True)
class FieldLengthStats:
    """Aggregated term statistics for a field."""

    field: str
    total_terms: int
    document_count: int

    @property
    def average_length(self) -> float:
        if self.document_count == 0:
            return 0.0
        return self.total_terms / self.document_count


def calculate_idf(doc_freq: int, total_docs: int) -> float:
    """Return the BM25 inverse document frequency, ``ln(1 + (N - df + 0.5) / (df + 0.5))``.

    Always positive, so a term present in every record still contributes.
    """
    if total_docs <= 0:
        return 0.0
    df = max(0, min(doc_freq, total_docs))
    return math.log(1.0 + (total_docs - df + 0.5) / (df + 0.5))


def bm25(tf: float, doc_length: int, avg_doc_length: float, *, k1: float = BM25_K1, b: float = BM25_B) -> float:
    """Compute the BM25 term weight without IDF.

    ``tf`` may be fractional for sloppy phrase matches. The length ratio is
    capped at 4x the average so very long bodies are not buried.
    """

    if tf <= 0:
        return 0.0
    max_length_ratio = 4.0
    raw_ratio = doc_length / max(avg_doc_length, 1e-9)
    normalized_length = min(raw_ratio, max_length_ratio)
    denominator = tf + k1 * (1 - b + b * normalized_length)
    return (tf * (k1 + 1)) / denominator
