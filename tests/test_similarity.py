from __future__ import annotations

import math

import pytest

from matchtext.core.similarity import (
    SIMHASH_BITS,
    SimilarityMode,
    compute_simhash128,
    fnv1a_hash64,
    similarity,
    simhash_distance,
    simhash_similarity,
    tfidf_cosine_similarity,
)
from matchtext.core.statistics import DocumentStatistics
from matchtext.core.tokenizer import CaseFolding


def _doc(text: str) -> DocumentStatistics:
    return DocumentStatistics.from_text(text, CaseFolding())


def test_dist_ignores_case_and_punctuation() -> None:
    assert _doc("Hello, world!").dist(_doc("hello world")) == 0.0


def test_dist_examples() -> None:
    assert _doc("alpha alpha beta").dist(_doc("alpha beta beta")) == pytest.approx(math.sqrt(2.0) / 3.0)
    assert _doc("alpha").dist(_doc("alpha beta")) == pytest.approx(math.sqrt(0.5))


def test_tfidf_reference_pair() -> None:
    a = _doc("the cat sat on the mat")
    b = _doc("the cat sat on the rug")
    assert a.counts == {"cat": 1, "sat": 1, "mat": 1}
    assert tfidf_cosine_similarity(a, b) == pytest.approx(0.573, abs=1e-3)


def test_tfidf_identity_and_symmetry() -> None:
    texts = [
        "quarterly revenue grew in every region",
        "revenue grew strongly, quarterly figures attached",
        "unrelated notes about gardening tomatoes",
        "gardening notes: tomatoes, basil, more tomatoes",
    ]
    docs = [_doc(t) for t in texts]
    for a in docs:
        assert similarity(a, a, SimilarityMode.TFIDF) == pytest.approx(1.0)
        for b in docs:
            for mode in SimilarityMode:
                assert similarity(a, b, mode) == similarity(b, a, mode)
                assert 0.0 <= similarity(a, b, mode) <= 1.0


def test_empty_document_scores_zero() -> None:
    assert similarity(DocumentStatistics(), _doc("hello world")) == 0.0
    assert similarity(_doc("hello world"), DocumentStatistics(), "hash") == 0.0


def test_fnv1a_known_values() -> None:
    assert fnv1a_hash64("") == 14695981039346656037
    assert fnv1a_hash64("a") == 0xAF63DC4C8601EC8C


def test_simhash_identical_text() -> None:
    left = compute_simhash128(_doc("hello world"))
    right = compute_simhash128(_doc("hello world"))
    assert simhash_distance(left, right) == 0.0
    assert simhash_similarity(left, right) == 1.0


def test_simhash_different_text() -> None:
    left = compute_simhash128(_doc("hello world"))
    right = compute_simhash128(_doc("goodbye world"))
    assert simhash_distance(left, right) > 0.0


def test_simhash_distance_is_multiple_of_one_bit() -> None:
    sigs = [compute_simhash128(_doc(t)) for t in ("alpha beta", "gamma delta", "alpha gamma omega")]
    for a in sigs:
        for b in sigs:
            bits = simhash_distance(a, b) * SIMHASH_BITS
            assert bits == int(bits)
            assert 0 <= bits <= SIMHASH_BITS
