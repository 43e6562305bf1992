#!/usr/bin/env python3
"""Command-line entry points.

``mostsimilar <Directory>`` finds the closest match for each file in a tree,
prints a table and writes ``<dirname>_mostsimilar[_hash].csv`` to the current
directory; ``--dedup`` moves duplicates into ``<Directory>/Duplicates``.

``matchtext <Sample> <RepoDir>`` lists repository files by similarity to one
sample file.

Exit codes: 0 ok, 1 usage error, 2 runtime failure.
"""
from __future__ import annotations

import argparse
import functools
import logging
import sys
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from matchtext import __version__
from matchtext.config import settings
from matchtext.core.similarity import SimilarityMode
from matchtext.core.statistics import DocumentStatistics
from matchtext.dedup_mover import move_duplicates
from matchtext.engine import (
    InsufficientCorpusError,
    LoadedDocument,
    MatchEngine,
    ProgressCallback,
    load_documents,
    rank_against_sample,
)
from matchtext.logging_config import setup_logging
from matchtext.metrics import start_metrics_server
from matchtext.report import masked_path, output_name_for_dir, render_table, write_csv
from matchtext.scanner import collect_files
from matchtext.schemas.options import (
    CorpusOptions,
    ExtractionOptions,
    RunOptions,
    SampleOptions,
    parse_threshold,
)
from matchtext.workers.extractors import read_file_to_statistics

logger = logging.getLogger("matchtext.cli")

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_FAILURE = 2

SCORE_NOTE = "Scores are normalized to [0, 1], where 1.0 means identical."


class _ArgumentParser(argparse.ArgumentParser):
    """argparse with usage errors mapped to exit code 1."""

    def error(self, message: str):  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def _thread_count(value: str) -> int:
    try:
        parsed = int(value, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid thread count: {value}") from None
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"Invalid thread count: {value}")
    return parsed


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--hash", action="store_true", help="Use SimHash instead of TF-IDF cosine similarity.")
    parser.add_argument(
        "--threads",
        type=_thread_count,
        default=None,
        metavar="N",
        help="Override the worker thread count used for file parsing.",
    )
    parser.add_argument("--safe", action="store_true", help="Serialize PDF extraction.")
    parser.add_argument(
        "--no-convert",
        action="store_true",
        help="Skip format-specific extractors and read raw bytes only.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log files as they are read and comparisons as they are scored.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")


def _progress(label: str, workers: int | None = None) -> ProgressCallback:
    def report(current: int, total: int) -> None:
        step = max(1, total // 10)
        if current != total and current % step:
            return
        if workers is None:
            logger.info("%s: %d/%d", label, current, total)
        else:
            logger.info("%s: %d/%d  Threads: %d", label, current, total, workers)

    return report


def _extractor(options: RunOptions):
    extractor = functools.partial(
        read_file_to_statistics,
        safe_mode=options.extraction.safe_mode,
        no_convert=options.extraction.no_convert,
    )
    functools.update_wrapper(extractor, read_file_to_statistics)
    return extractor


def _start_run(options: RunOptions) -> None:
    setup_logging(options.verbose)
    start_metrics_server()


# ── mostsimilar ──


def build_mostsimilar_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="mostsimilar",
        description="Find the closest match for each file within a directory tree and write a CSV.",
        epilog=SCORE_NOTE,
    )
    parser.add_argument("directory", nargs="?", type=Path, help="Directory to scan recursively.")
    parser.add_argument(
        "--dedup",
        nargs="?",
        const="",
        default=None,
        metavar="THRESHOLD",
        help=(
            "Move matches with score >= threshold (default "
            f"{settings.DEDUP_THRESHOLD}) into <Directory>/{settings.DUPLICATES_DIR_NAME}."
        ),
    )
    _add_common_flags(parser)
    return parser


def parse_mostsimilar_args(argv: Sequence[str] | None = None) -> CorpusOptions:
    parser = build_mostsimilar_parser()
    args = parser.parse_args(argv)

    threshold = settings.DEDUP_THRESHOLD
    if args.dedup:
        # --dedup only takes a value that parses as a threshold
        parsed = parse_threshold(args.dedup)
        if parsed is not None:
            threshold = parsed
        elif args.directory is None:
            args.directory = Path(args.dedup)
        else:
            parser.error(f"Unexpected argument: {args.dedup}")
    if args.directory is None:
        parser.error("the following arguments are required: directory")

    try:
        return CorpusOptions(
            root=args.directory,
            mode=SimilarityMode.HASH if args.hash else SimilarityMode.TFIDF,
            threads=args.threads,
            extraction=ExtractionOptions(safe_mode=args.safe, no_convert=args.no_convert),
            verbose=args.verbose,
            dedup=args.dedup is not None,
            dedup_threshold=threshold,
        )
    except ValidationError as exc:
        parser.error(str(exc))
        raise SystemExit(EXIT_USAGE) from exc


def run_mostsimilar(options: CorpusOptions) -> int:
    root = options.root
    duplicates_dir = options.duplicates_dir
    try:
        files = collect_files(root, recursive=True, skip_dir=duplicates_dir if options.dedup else None)
    except OSError as exc:
        logger.error("Cannot open directory: %s", exc)
        return EXIT_FAILURE
    if not files:
        logger.error("No files found under %s", root)
        return EXIT_FAILURE

    engine = MatchEngine(
        options.mode,
        extractor=_extractor(options),
        workers=options.threads,
        dedup_threshold=options.dedup_threshold if options.dedup else None,
        duplicates_dir=duplicates_dir,
    )
    engine.load_progress = _progress("Reading files", engine.workers)
    engine.score_progress = _progress("Computing matches")
    try:
        result = engine.run(files)
    except InsufficientCorpusError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE

    mask_root = root.absolute()
    rows = result.rows(format_path=lambda p: masked_path(p, mask_root))
    sys.stdout.write(render_table(rows))
    sys.stdout.flush()

    output_path = Path.cwd() / output_name_for_dir(root, options.use_hash)
    try:
        write_csv(output_path, rows)
    except OSError as exc:
        logger.error("Failed to open output file %s: %s", output_path, exc)
        return EXIT_FAILURE

    status = EXIT_OK
    if options.dedup:
        if not result.duplicates:
            logger.info("Dedup: no matches at or above the threshold.")
        else:
            sources = [result.documents[pair.duplicate].path for pair in result.duplicates]
            report = move_duplicates(sources, root, duplicates_dir)
            if not report.ok:
                status = EXIT_FAILURE

    if options.threads is None:
        logger.info("Threads used (max): %d", engine.workers)
    return status


def mostsimilar_main(argv: Sequence[str] | None = None) -> int:
    options = parse_mostsimilar_args(argv)
    _start_run(options)
    return run_mostsimilar(options)


# ── matchtext ──


def build_matchtext_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="matchtext",
        description="Match a sample file against a repository and list results by similarity.",
        epilog=SCORE_NOTE,
    )
    parser.add_argument("sample", type=Path, help="Sample file.")
    parser.add_argument("repository", type=Path, help="Repository directory.")
    parser.add_argument("-r", "--recursive", action="store_true", help="Descend into subdirectories.")
    _add_common_flags(parser)
    return parser


def parse_matchtext_args(argv: Sequence[str] | None = None) -> SampleOptions:
    args = build_matchtext_parser().parse_args(argv)
    return SampleOptions(
        sample=args.sample,
        repository=args.repository,
        recursive=args.recursive,
        mode=SimilarityMode.HASH if args.hash else SimilarityMode.TFIDF,
        threads=args.threads,
        extraction=ExtractionOptions(safe_mode=args.safe, no_convert=args.no_convert),
        verbose=args.verbose,
    )


def run_matchtext(options: SampleOptions) -> int:
    extractor = _extractor(options)
    logger.debug("Reading file: %s", options.sample)
    sample_stats = DocumentStatistics()
    try:
        ok = extractor(options.sample, sample_stats)
    except OSError as exc:
        logger.error("Cannot read sample %s: %s", options.sample, exc)
        return EXIT_FAILURE
    if not ok:
        return EXIT_FAILURE
    if sample_stats.is_empty():
        logger.error("Sample file must be non-empty: %s", options.sample)
        return EXIT_FAILURE

    try:
        files = collect_files(options.repository, recursive=options.recursive)
    except OSError as exc:
        logger.error("Cannot open repository directory: %s", exc)
        return EXIT_FAILURE

    docs = load_documents(
        files,
        extractor,
        workers=options.threads,
        progress=_progress("Reading files", options.threads),
    )
    sample = LoadedDocument(index=-1, path=options.sample, stats=sample_stats)
    for path, score in rank_against_sample(sample, docs, options.mode):
        sys.stdout.write(f"{score:.8f} {path}\n")
    sys.stdout.flush()
    return EXIT_OK


def matchtext_main(argv: Sequence[str] | None = None) -> int:
    options = parse_matchtext_args(argv)
    _start_run(options)
    return run_matchtext(options)


if __name__ == "__main__":
    raise SystemExit(mostsimilar_main())
