"""Move duplicate files into the duplicates area, mirroring their layout."""
from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from matchtext.metrics import DUPLICATE_MOVES_TOTAL
from matchtext.scanner import is_under_path

logger = logging.getLogger(__name__)

MAX_UNIQUE_ATTEMPTS = 1000


@dataclass
class MoveReport:
    moved: int = 0
    failed: int = 0

    @property
    def ok(self) -> bool:
        return self.failed == 0


def relative_to_root(path: str | Path, root: str | Path) -> Path:
    """Path of ``path`` below ``root``; only the file name when it is outside."""
    abs_path = os.path.normpath(os.path.abspath(path))
    abs_root = os.path.normpath(os.path.abspath(root))
    if abs_path != abs_root and is_under_path(abs_path, abs_root):
        return Path(os.path.relpath(abs_path, abs_root))
    return Path(Path(path).name)


def make_unique_path(path: str | Path) -> Path:
    """``path`` itself if free, else the first free ``stem_N.ext`` for N in 1..1000."""
    path = Path(path)
    if not path.exists():
        return path
    for i in range(1, MAX_UNIQUE_ATTEMPTS + 1):
        candidate = path.with_name(f"{path.stem}_{i}{path.suffix}")
        if not candidate.exists():
            return candidate
    return path


def _move_one(source: Path, target: Path) -> None:
    try:
        os.rename(source, target)
    except OSError as exc:
        # cross-device: copy then remove
        logger.debug("rename failed for %s (%s), copying", source, exc)
        shutil.copy2(source, target)
        os.remove(source)


def move_duplicates(sources: Iterable[str | Path], root: str | Path, duplicates_dir: str | Path) -> MoveReport:
    """Move each source to ``duplicates_dir/<path relative to root>``."""
    duplicates_dir = Path(duplicates_dir)
    report = MoveReport()
    sources = [Path(s) for s in sources]
    if not sources:
        return report

    try:
        duplicates_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Dedup: failed to create %s (%s)", duplicates_dir, exc)
        report.failed = len(sources)
        DUPLICATE_MOVES_TOTAL.labels(outcome="failed").inc(len(sources))
        return report

    for source in sources:
        if not source.exists():
            logger.warning("Dedup: source vanished: %s", source)
            report.failed += 1
            DUPLICATE_MOVES_TOTAL.labels(outcome="failed").inc()
            continue
        target = make_unique_path(duplicates_dir / relative_to_root(source, root))
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            _move_one(source, target)
        except OSError as exc:
            logger.warning("Dedup: could not move %s to %s: %s", source, target, exc)
            report.failed += 1
            DUPLICATE_MOVES_TOTAL.labels(outcome="failed").inc()
            continue
        logger.debug("Moved %s -> %s", source, target)
        report.moved += 1
        DUPLICATE_MOVES_TOTAL.labels(outcome="moved").inc()

    logger.info("Dedup: moved %d file(s) to %s", report.moved, duplicates_dir)
    if report.failed:
        logger.warning("Dedup: %d file(s) could not be moved.", report.failed)
    return report
