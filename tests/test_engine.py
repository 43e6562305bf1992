from __future__ import annotations

import os
from pathlib import Path

import pytest

from matchtext.core.statistics import DocumentStatistics
from matchtext.core.tokenizer import CaseFolding
from matchtext.engine import (
    InsufficientCorpusError,
    LoadedDocument,
    MatchEngine,
    PairIdAllocator,
    best_match_table,
    build_rows,
    is_dedup_score,
    load_documents,
    rank_against_sample,
    resolve_duplicates,
)

CORPUS = {
    "doc1.txt": "budget planning meeting notes for the northern office",
    "doc2.txt": "budget planning meeting notes for the northern office",
    "doc3.txt": "recipe for lemon cake with fresh berries and cream",
    "doc4.txt": "lemon cake recipe with berries",
    "doc5.txt": "incident report about the database outage on friday",
    "doc6.txt": "database outage incident report, root cause analysis",
    "doc7.txt": "travel itinerary for the spring conference in lisbon",
}


def _write_corpus(root: Path, texts: dict[str, str]) -> list[Path]:
    paths = []
    for name, text in texts.items():
        path = root / name
        path.write_text(text, encoding="utf-8")
        paths.append(path)
    return paths


def _text_extractor(path: Path, stats: DocumentStatistics) -> bool:
    stats.add_text(path.read_text(encoding="utf-8"), CaseFolding())
    return True


def _doc(index: int, text: str, mtime: int | None = None) -> LoadedDocument:
    return LoadedDocument(
        index=index,
        path=Path(f"doc{index + 1}.txt"),
        stats=DocumentStatistics.from_text(text, CaseFolding()),
        mtime=mtime,
    )


def test_is_dedup_score_widens_by_half_a_printed_unit() -> None:
    assert is_dedup_score(0.999999996, 1.0)
    assert not is_dedup_score(0.99999999, 1.0)


def test_pair_ids_are_unordered_and_sequential() -> None:
    ids = PairIdAllocator()
    assert ids.get(3, 1) == 1
    assert ids.get(1, 3) == 1
    assert ids.get(2, 2) == 2
    assert len(ids) == 2


def test_insufficient_corpus() -> None:
    with pytest.raises(InsufficientCorpusError):
        best_match_table([_doc(0, "only one document")])


def test_load_documents_drops_failures_and_empty_files(tmp_path) -> None:
    paths = _write_corpus(tmp_path, {"a.txt": "words here", "b.txt": "the and of", "c.txt": "more words"})

    def extractor(path: Path, stats: DocumentStatistics) -> bool:
        if path.name == "c.txt":
            raise OSError("boom")
        return _text_extractor(path, stats)

    docs = load_documents(paths, extractor, workers=2)
    assert [d.path.name for d in docs] == ["a.txt"]
    assert docs[0].index == 0
    assert docs[0].mtime is not None


def test_best_match_ties_keep_first_partner() -> None:
    docs = [_doc(0, "alpha gamma"), _doc(1, "alpha gamma"), _doc(2, "alpha gamma")]
    table = best_match_table(docs)
    assert [r.best_index for r in table] == [1, 0, 0]


def test_reciprocal_pair_keeps_newer_file_and_emits_one_row() -> None:
    text = "budget planning meeting notes"
    docs = [
        _doc(0, text, mtime=2_000),
        _doc(1, text, mtime=1_000),
        _doc(2, "lemon cake recipe with berries", mtime=3_000),
    ]
    table = best_match_table(docs)
    assert table[0].best_index == 1
    assert table[1].best_index == 0

    pairs = resolve_duplicates(docs, table, 1.0)
    assert [(p.keeper, p.duplicate) for p in pairs] == [(0, 1)]

    rows = build_rows(docs, table)
    pair_rows = [r for r in rows if {r.file, r.match} == {"doc1.txt", "doc2.txt"}]
    assert len(pair_rows) == 1
    assert pair_rows[0].file == "doc1.txt"
    assert pair_rows[0].match == "doc2.txt"
    assert (pair_rows[0].keeper_index, pair_rows[0].duplicate_index) == (0, 1)
    assert rows[0] is pair_rows[0]
    assert len(rows) == 2


def test_resolve_duplicates_skips_files_in_duplicates_area(tmp_path) -> None:
    docs = [_doc(0, "same words here"), _doc(1, "same words here")]
    dup_dir = tmp_path / "Duplicates"
    docs[1].path = dup_dir / "doc2.txt"
    docs[0].mtime, docs[1].mtime = 2, 1
    table = best_match_table(docs)
    assert resolve_duplicates(docs, table, 1.0, duplicates_dir=dup_dir) == []


def test_below_threshold_resolves_nothing() -> None:
    docs = [_doc(0, "alpha beta gamma"), _doc(1, "alpha beta delta")]
    table = best_match_table(docs)
    assert resolve_duplicates(docs, table, 1.0) == []
    assert len(resolve_duplicates(docs, table, 0.1)) == 1


def test_results_do_not_depend_on_worker_count(tmp_path) -> None:
    paths = _write_corpus(tmp_path, CORPUS)
    stamp = 1_700_000_000_000_000_000
    for i, path in enumerate(paths):
        os.utime(path, ns=(stamp + i * 1_000_000_000, stamp + i * 1_000_000_000))

    results = []
    for workers in (1, 3, 8):
        engine = MatchEngine("tfidf", extractor=_text_extractor, workers=workers, dedup_threshold=0.99)
        result = engine.run(paths)
        results.append(
            (
                [d.path for d in result.documents],
                [(r.best_index, r.best_score) for r in result.table],
                result.duplicates,
                result.rows(),
            )
        )
    assert results[0] == results[1] == results[2]
    assert [(p.keeper, p.duplicate) for p in results[0][2]] == [(1, 0)]


def test_rank_against_sample_orders_by_score_then_path() -> None:
    sample = _doc(0, "lemon cake recipe")
    docs = [
        LoadedDocument(1, Path("b.txt"), DocumentStatistics.from_text("database outage", CaseFolding())),
        LoadedDocument(2, Path("a.txt"), DocumentStatistics.from_text("database outage", CaseFolding())),
        LoadedDocument(3, Path("c.txt"), DocumentStatistics.from_text("lemon cake recipe", CaseFolding())),
    ]
    ranked = rank_against_sample(sample, docs, "tfidf")
    assert [p.name for p, _ in ranked] == ["c.txt", "a.txt", "b.txt"]
    assert ranked[0][1] == pytest.approx(1.0)

    hashed = rank_against_sample(sample, docs, "hash")
    assert hashed[0][0].name == "c.txt"
    assert hashed[0][1] == 1.0
