"""Match engine: load a corpus, score all pairs, resolve duplicates.

Loading runs on a fixed pool of threads that pull work from a shared counter;
every result keeps its discovery index so the merged corpus is in scan order no
matter how the workers were scheduled. Scoring is a single sequential pass
that only replaces a best match on a strictly greater score, which keeps the
table deterministic.
"""
from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, NamedTuple, Sequence

from matchtext.config import settings
from matchtext.core.similarity import (
    SimHash128,
    SimilarityMode,
    compute_simhash128,
    distance_to_similarity,
    simhash_similarity,
    tfidf_cosine_similarity,
)
from matchtext.core.statistics import DocumentStatistics
from matchtext.core.versioning import (
    VersionDescriptor,
    choose_duplicate,
    extract_version_descriptor,
    get_mtime,
)
from matchtext.metrics import (
    COMPARISONS_TOTAL,
    DOCUMENT_LOAD_SECONDS,
    DOCUMENTS_LOADED_TOTAL,
    DOCUMENTS_SKIPPED_TOTAL,
    DUPLICATES_RESOLVED_TOTAL,
)
from matchtext.scanner import is_under_path
from matchtext.workers.extractors import read_file_to_statistics

logger = logging.getLogger(__name__)

NO_MATCH_SCORE = -1.0
# Scores are printed with 8 decimals; widen comparisons by half a unit.
DEDUP_EPSILON = 0.5e-8
OUTPUT_PAIR_THRESHOLD = 1e-8

Extractor = Callable[[Path, DocumentStatistics], bool]
ProgressCallback = Callable[[int, int], None]


class InsufficientCorpusError(RuntimeError):
    """Fewer than two usable documents remain after loading."""


@dataclass
class LoadedDocument:
    index: int
    path: Path
    stats: DocumentStatistics
    signature: SimHash128 | None = None
    mtime: int | None = None


@dataclass
class MatchRecord:
    best_index: int | None = None
    best_score: float = NO_MATCH_SCORE

    @property
    def has_match(self) -> bool:
        return self.best_index is not None


class DuplicatePair(NamedTuple):
    keeper: int
    duplicate: int
    score: float


@dataclass
class MatchRow:
    file: str
    match: str
    score: float
    pair_id: int
    keeper_index: int | None = None
    duplicate_index: int | None = None


class PairIdAllocator:
    """Stable ids for unordered document pairs, assigned on first reference."""

    def __init__(self) -> None:
        self._ids: dict[tuple[int, int], int] = {}

    def get(self, left: int, right: int) -> int:
        key = (left, right) if left <= right else (right, left)
        pair_id = self._ids.get(key)
        if pair_id is None:
            pair_id = len(self._ids) + 1
            self._ids[key] = pair_id
        return pair_id

    def __len__(self) -> int:
        return len(self._ids)


def default_worker_count() -> int:
    if settings.DEFAULT_WORKERS > 0:
        return settings.DEFAULT_WORKERS
    return max(1, os.cpu_count() or 1)


def is_dedup_score(score: float, threshold: float) -> bool:
    return (score + DEDUP_EPSILON) >= threshold


def _load_one(index: int, path: Path, extractor: Extractor, use_hash: bool) -> LoadedDocument | None:
    logger.debug("Reading file: %s", path)
    stats = DocumentStatistics()
    started = time.perf_counter()
    try:
        ok = extractor(path, stats)
    except Exception as exc:
        logger.warning("Failed to read %s: %s", path, exc)
        DOCUMENTS_SKIPPED_TOTAL.labels(reason="error").inc()
        return None
    finally:
        DOCUMENT_LOAD_SECONDS.observe(time.perf_counter() - started)

    if not ok:
        DOCUMENTS_SKIPPED_TOTAL.labels(reason="unreadable").inc()
        return None
    if stats.is_empty():
        logger.warning("Skipping empty file %s", path)
        DOCUMENTS_SKIPPED_TOTAL.labels(reason="empty").inc()
        return None

    DOCUMENTS_LOADED_TOTAL.labels(extractor=getattr(extractor, "__name__", "custom")).inc()
    return LoadedDocument(
        index=index,
        path=path,
        stats=stats,
        signature=compute_simhash128(stats) if use_hash else None,
        mtime=get_mtime(path),
    )


def load_documents(
    paths: Sequence[Path | str],
    extractor: Extractor = read_file_to_statistics,
    *,
    workers: int | None = None,
    use_hash: bool = False,
    progress: ProgressCallback | None = None,
) -> list[LoadedDocument]:
    """Tokenize every path on a worker pool; return survivors in discovery order."""
    files = [Path(p) for p in paths]
    total = len(files)
    worker_count = max(1, workers or default_worker_count())
    arenas: list[list[LoadedDocument]] = [[] for _ in range(worker_count)]
    lock = threading.Lock()
    next_index = 0
    processed = 0

    def claim() -> int | None:
        nonlocal next_index
        with lock:
            if next_index >= total:
                return None
            index = next_index
            next_index += 1
            return index

    def done() -> None:
        nonlocal processed
        with lock:
            processed += 1
            current = processed
        if progress is not None:
            progress(current, total)

    def run(slot: int) -> None:
        while (index := claim()) is not None:
            doc = _load_one(index, files[index], extractor, use_hash)
            if doc is not None:
                arenas[slot].append(doc)
            done()

    threads = [
        threading.Thread(target=run, args=(slot,), name=f"matchtext-loader-{slot}", daemon=True)
        for slot in range(worker_count)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    docs = sorted((doc for arena in arenas for doc in arena), key=lambda d: d.index)
    logger.info(
        "Loaded %d of %d files with %d worker(s)",
        len(docs),
        total,
        worker_count,
    )
    return docs


def _scorer(docs: Sequence[LoadedDocument], mode: SimilarityMode) -> Callable[[int, int], float]:
    if mode is SimilarityMode.HASH:
        signatures = [d.signature or compute_simhash128(d.stats) for d in docs]
        return lambda i, j: simhash_similarity(signatures[i], signatures[j])
    if mode is SimilarityMode.DIST:
        return lambda i, j: distance_to_similarity(docs[i].stats.dist(docs[j].stats))
    return lambda i, j: tfidf_cosine_similarity(docs[i].stats, docs[j].stats)


def best_match_table(
    docs: Sequence[LoadedDocument],
    mode: SimilarityMode | str = SimilarityMode.TFIDF,
    *,
    progress: ProgressCallback | None = None,
) -> list[MatchRecord]:
    """Each document's best partner, scoring every unordered pair once."""
    mode = SimilarityMode(mode)
    n = len(docs)
    if n < 2:
        raise InsufficientCorpusError("Need at least two non-empty files to compare.")

    score = _scorer(docs, mode)
    table = [MatchRecord() for _ in range(n)]
    for i in range(n):
        if progress is not None:
            progress(i + 1, n)
        row = table[i]
        for j in range(i + 1, n):
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Comparing: %s <> %s", docs[i].path, docs[j].path)
            value = score(i, j)
            # strict improvement only: ties keep the lower partner index
            if value > row.best_score:
                row.best_score = value
                row.best_index = j
            other = table[j]
            if value > other.best_score:
                other.best_score = value
                other.best_index = i
    COMPARISONS_TOTAL.labels(mode=mode.value).inc(n * (n - 1) // 2)
    return table


def _is_reciprocal(table: Sequence[MatchRecord], i: int, threshold: float) -> bool:
    match = table[i].best_index
    if match is None or match == i:
        return False
    partner = table[match]
    return (
        partner.best_index == i
        and is_dedup_score(table[i].best_score, threshold)
        and is_dedup_score(partner.best_score, threshold)
    )


def resolve_duplicates(
    docs: Sequence[LoadedDocument],
    table: Sequence[MatchRecord],
    threshold: float = 1.0,
    *,
    descriptors: Sequence[VersionDescriptor] | None = None,
    duplicates_dir: Path | None = None,
) -> list[DuplicatePair]:
    """Pick the documents to remove, each paired with the file it duplicates.

    A document whose best score reaches ``threshold`` keeps itself and marks
    its best match as the duplicate. Reciprocal pairs are handled once, with
    ``choose_duplicate`` deciding which side goes.
    """
    if descriptors is None:
        descriptors = [extract_version_descriptor(d.path) for d in docs]
    mtimes = [d.mtime for d in docs]

    resolved: list[DuplicatePair] = []
    seen: set[int] = set()
    for i, record in enumerate(table):
        match = record.best_index
        if match is None or not is_dedup_score(record.best_score, threshold):
            continue
        if _is_reciprocal(table, i, threshold):
            if choose_duplicate(i, match, descriptors, mtimes) != match:
                continue
        if match in seen:
            continue
        if duplicates_dir is not None and is_under_path(docs[match].path, duplicates_dir):
            logger.debug("Already in duplicates area: %s", docs[match].path)
            continue
        seen.add(match)
        resolved.append(DuplicatePair(keeper=i, duplicate=match, score=record.best_score))

    DUPLICATES_RESOLVED_TOTAL.inc(len(resolved))
    return resolved


def build_rows(
    docs: Sequence[LoadedDocument],
    table: Sequence[MatchRecord],
    *,
    descriptors: Sequence[VersionDescriptor] | None = None,
    format_path: Callable[[Path], str] = str,
    pair_ids: PairIdAllocator | None = None,
) -> list[MatchRow]:
    """Output rows, highest score first.

    Reciprocal best matches appear once, keeper on the left; every other
    document is listed against its own best match.
    """
    if descriptors is None:
        descriptors = [extract_version_descriptor(d.path) for d in docs]
    mtimes = [d.mtime for d in docs]
    pair_ids = pair_ids or PairIdAllocator()

    rows: list[MatchRow] = []
    for i, record in enumerate(table):
        match = record.best_index
        if match is not None and _is_reciprocal(table, i, OUTPUT_PAIR_THRESHOLD):
            duplicate = choose_duplicate(i, match, descriptors, mtimes)
            keeper = match if duplicate == i else i
            if i != keeper:
                continue
            rows.append(
                MatchRow(
                    file=format_path(docs[keeper].path),
                    match=format_path(docs[duplicate].path),
                    score=table[keeper].best_score,
                    pair_id=pair_ids.get(keeper, duplicate),
                    keeper_index=keeper,
                    duplicate_index=duplicate,
                )
            )
            continue
        rows.append(
            MatchRow(
                file=format_path(docs[i].path),
                match=format_path(docs[match].path) if match is not None else "",
                score=record.best_score,
                pair_id=pair_ids.get(i, match if match is not None else i),
            )
        )

    # sorted() is stable, so equal scores keep construction order
    return sorted(rows, key=lambda r: r.score, reverse=True)


def rank_against_sample(
    sample: LoadedDocument,
    docs: Sequence[LoadedDocument],
    mode: SimilarityMode | str = SimilarityMode.TFIDF,
) -> list[tuple[Path, float]]:
    """Score one sample against a repository, best first, ties by path."""
    mode = SimilarityMode(mode)
    entries: list[tuple[Path, float]] = []
    sample_signature = None
    if mode is SimilarityMode.HASH:
        sample_signature = sample.signature or compute_simhash128(sample.stats)
    for doc in docs:
        logger.debug("Comparing: %s <> %s", sample.path, doc.path)
        if mode is SimilarityMode.HASH:
            value = simhash_similarity(sample_signature, doc.signature or compute_simhash128(doc.stats))
        elif mode is SimilarityMode.DIST:
            value = distance_to_similarity(sample.stats.dist(doc.stats))
        else:
            value = tfidf_cosine_similarity(sample.stats, doc.stats)
        entries.append((doc.path, value))
    COMPARISONS_TOTAL.labels(mode=mode.value).inc(len(entries))
    entries.sort(key=lambda e: (-e[1], str(e[0])))
    return entries


@dataclass
class MatchResult:
    documents: list[LoadedDocument]
    table: list[MatchRecord]
    descriptors: list[VersionDescriptor]
    duplicates: list[DuplicatePair] = field(default_factory=list)

    def rows(self, format_path: Callable[[Path], str] = str) -> list[MatchRow]:
        return build_rows(
            self.documents,
            self.table,
            descriptors=self.descriptors,
            format_path=format_path,
        )


class MatchEngine:
    """Load, score and (optionally) resolve duplicates over one corpus."""

    def __init__(
        self,
        mode: SimilarityMode | str = SimilarityMode.TFIDF,
        *,
        extractor: Extractor = read_file_to_statistics,
        workers: int | None = None,
        dedup_threshold: float | None = None,
        duplicates_dir: Path | None = None,
        load_progress: ProgressCallback | None = None,
        score_progress: ProgressCallback | None = None,
    ) -> None:
        self.mode = SimilarityMode(mode)
        self.extractor = extractor
        self.workers = workers or default_worker_count()
        self.dedup_threshold = dedup_threshold
        self.duplicates_dir = duplicates_dir
        self.load_progress = load_progress
        self.score_progress = score_progress

    def run(self, paths: Sequence[Path | str]) -> MatchResult:
        docs = load_documents(
            paths,
            self.extractor,
            workers=self.workers,
            use_hash=self.mode is SimilarityMode.HASH,
            progress=self.load_progress,
        )
        table = best_match_table(docs, self.mode, progress=self.score_progress)
        descriptors = [extract_version_descriptor(d.path) for d in docs]
        result = MatchResult(documents=docs, table=table, descriptors=descriptors)
        if self.dedup_threshold is not None:
            result.duplicates = resolve_duplicates(
                docs,
                table,
                self.dedup_threshold,
                descriptors=descriptors,
                duplicates_dir=self.duplicates_dir,
            )
        return result
