"""Corpus discovery: walk a directory and keep files with a known text extension."""
from __future__ import annotations

import logging
import os
from pathlib import Path

from matchtext.workers.extractors import is_allowed_text_file

logger = logging.getLogger(__name__)


def _log_walk_error(exc: OSError) -> None:
    logger.warning("Skipping path due to error: %s", exc)


def is_under_path(path: str | Path, root: str | Path) -> bool:
    """True when ``path`` is ``root`` itself or lies below it, compared lexically."""
    abs_path = os.path.normpath(os.path.abspath(path))
    abs_root = os.path.normpath(os.path.abspath(root))
    try:
        return os.path.commonpath([abs_path, abs_root]) == abs_root
    except ValueError:
        return False


def collect_files(
    root: str | Path,
    *,
    recursive: bool = True,
    skip_dir: str | Path | None = None,
) -> list[Path]:
    """Allowed files under ``root`` in a stable, name-sorted walk order.

    ``skip_dir`` prunes a subtree (the duplicates area during dedup runs).
    Raises ``FileNotFoundError`` / ``NotADirectoryError`` when ``root`` cannot
    be listed at all; unreadable subdirectories are logged and skipped.
    """
    root = Path(root)
    if not root.is_dir():
        if root.exists():
            raise NotADirectoryError(f"Not a directory: {root}")
        raise FileNotFoundError(f"Cannot open directory: {root}")

    files: list[Path] = []
    if not recursive:
        with os.scandir(root) as entries:
            for entry in sorted(entries, key=lambda e: e.name):
                try:
                    if not entry.is_file():
                        continue
                except OSError as exc:
                    _log_walk_error(exc)
                    continue
                if is_allowed_text_file(entry.name):
                    files.append(Path(entry.path))
        return files

    for dirpath, dirnames, filenames in os.walk(root, onerror=_log_walk_error):
        if skip_dir is not None:
            dirnames[:] = [
                d for d in dirnames if not is_under_path(os.path.join(dirpath, d), skip_dir)
            ]
        dirnames.sort()
        for name in sorted(filenames):
            if not is_allowed_text_file(name):
                continue
            full = Path(dirpath, name)
            if full.is_file():
                files.append(full)

    logger.debug("Discovered %d candidate file(s) under %s", len(files), root)
    return files
