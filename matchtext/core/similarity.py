"""Similarity metrics over document statistics.

Two interchangeable scores in [0, 1]: pairwise TF-IDF cosine and a 128-bit
SimHash compared by Hamming distance. A third helper turns the auxiliary L2
term-frequency distance into a similarity on the same scale.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass

from matchtext.core.statistics import DocumentStatistics

FNV_OFFSET_BASIS = 14695981039346656037
FNV_PRIME = 1099511628211
SIMHASH_SEED_HIGH = 0x9E3779B185EBCA87
SIMHASH_BITS = 128

_MASK64 = (1 << 64) - 1
_MAX_DIST = math.sqrt(2.0)


class SimilarityMode(str, enum.Enum):
    TFIDF = "tfidf"
    HASH = "hash"
    DIST = "dist"


@dataclass(frozen=True)
class SimHash128:
    high: int = 0
    low: int = 0


def _clamp01(value: float) -> float:
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return value


def fnv1a_hash64(text: str, seed: int = 0) -> int:
    """64-bit FNV-1a over the UTF-8 bytes of ``text``, offset basis xor ``seed``."""
    value = FNV_OFFSET_BASIS ^ seed
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * FNV_PRIME) & _MASK64
    return value


def compute_simhash128(stats: DocumentStatistics) -> SimHash128:
    """SimHash: hash each distinct term, weight by its count, keep the sign per bit."""
    weights = [0] * SIMHASH_BITS
    for word, count in stats.counts.items():
        hash_low = fnv1a_hash64(word, 0)
        hash_high = fnv1a_hash64(word, SIMHASH_SEED_HIGH)
        for bit in range(64):
            if (hash_low >> bit) & 1:
                weights[bit] += count
            else:
                weights[bit] -= count
            if (hash_high >> bit) & 1:
                weights[bit + 64] += count
            else:
                weights[bit + 64] -= count

    low = 0
    high = 0
    for bit in range(64):
        if weights[bit] >= 0:
            low |= 1 << bit
        if weights[bit + 64] >= 0:
            high |= 1 << bit
    return SimHash128(high=high, low=low)


def hamming_distance128(left: SimHash128, right: SimHash128) -> int:
    return (left.low ^ right.low).bit_count() + (left.high ^ right.high).bit_count()


def simhash_distance(left: SimHash128, right: SimHash128) -> float:
    return hamming_distance128(left, right) / SIMHASH_BITS


def simhash_similarity(left: SimHash128, right: SimHash128) -> float:
    return 1.0 - simhash_distance(left, right)


def distance_to_similarity(distance: float) -> float:
    return _clamp01(1.0 - (distance / _MAX_DIST))


def tfidf_cosine_similarity(left: DocumentStatistics, right: DocumentStatistics) -> float:
    """Cosine of TF-IDF vectors where IDF is computed from this pair only.

    Sums use ``math.fsum`` so the score does not depend on which side is
    passed first.
    """
    if left.total == 0 or right.total == 0:
        return 0.0
    total_terms = float(left.total + right.total)

    dot_terms: list[float] = []
    left_squares: list[float] = []
    for word, count in left.counts.items():
        right_count = right.counts.get(word, 0)
        idf = math.log((total_terms + 1.0) / (count + right_count + 1.0)) + 1.0
        left_weight = (count / left.total) * idf
        left_squares.append(left_weight * left_weight)
        if right_count > 0:
            right_weight = (right_count / right.total) * idf
            dot_terms.append(left_weight * right_weight)
    right_squares: list[float] = []
    for word, count in right.counts.items():
        left_count = left.counts.get(word, 0)
        idf = math.log((total_terms + 1.0) / (count + left_count + 1.0)) + 1.0
        right_weight = (count / right.total) * idf
        right_squares.append(right_weight * right_weight)

    norm_left = math.fsum(left_squares)
    norm_right = math.fsum(right_squares)
    if norm_left <= 0.0 or norm_right <= 0.0:
        return 0.0
    denom = math.sqrt(norm_left) * math.sqrt(norm_right)
    if denom <= 0.0:
        return 0.0
    return _clamp01(math.fsum(dot_terms) / denom)


def similarity(
    left: DocumentStatistics,
    right: DocumentStatistics,
    mode: SimilarityMode | str = SimilarityMode.TFIDF,
) -> float:
    """Score two documents in [0, 1] with the chosen metric."""
    mode = SimilarityMode(mode)
    if left.is_empty() or right.is_empty():
        return 0.0
    if mode is SimilarityMode.HASH:
        return simhash_similarity(compute_simhash128(left), compute_simhash128(right))
    if mode is SimilarityMode.DIST:
        return distance_to_similarity(left.dist(right))
    return tfidf_cosine_similarity(left, right)
