"""Console table and CSV output for match rows."""
from __future__ import annotations

import csv
import logging
import os
from pathlib import Path
from typing import Iterable, Sequence

from matchtext.config import settings
from matchtext.engine import MatchRow

logger = logging.getLogger(__name__)

CSV_HEADER = ("file", "most_similar", "score", "pair_id")
TABLE_HEADERS = ("File", "MostSimilar", "Score")
MIN_COLUMN_WIDTH = 10
# "| " + " | " + " | " + " |"
TABLE_DECORATION = 10

RECIPROCAL_FOOTNOTE = (
    "* Reciprocal best matches are shown once; the left column is the preferred file\n"
    "  and the right column is the duplicate candidate (threshold 0.00000001), chosen\n"
    "  by filename version/date markers, then modification time, then scan order.\n"
)


def format_score(score: float) -> str:
    return f"{score:.8f}"


def output_name_for_dir(directory: str | Path, use_hash: bool = False) -> str:
    """``<dirname>_mostsimilar[_hash].csv`` named after the scanned directory."""
    resolved = Path(os.path.abspath(directory))
    name = resolved.name
    if name in {"", ".", ".."}:
        name = resolved.parent.name
    if name in {"", ".", ".."}:
        name = "output"
    suffix = "_mostsimilar_hash.csv" if use_hash else "_mostsimilar.csv"
    return name + suffix


def masked_path(path: str | Path, mask_root: str | Path) -> str:
    """Replace the scanned root with ``.../``; paths outside it stay absolute."""
    absolute_path = os.path.abspath(path)
    relative = os.path.relpath(absolute_path, os.path.abspath(mask_root))
    parts = Path(relative).parts
    if relative and relative != "." and ".." not in parts:
        return ".../" + Path(relative).as_posix()
    return absolute_path


def wrap_text(text: str, width: int) -> list[str]:
    """Hard-wrap ``text`` into ``width``-character slices (at least one line)."""
    if width <= 0:
        return [""]
    lines = [text[pos:pos + width] for pos in range(0, len(text), width)]
    return lines or [""]


def fit_column_widths(
    file_width: int,
    match_width: int,
    score_width: int,
    max_total_width: int | None = None,
) -> tuple[int, int]:
    """Shrink the two path columns proportionally to fit ``max_total_width``."""
    if max_total_width is None:
        max_total_width = settings.MAX_TABLE_WIDTH
    if file_width + match_width + score_width + TABLE_DECORATION <= max_total_width:
        return file_width, match_width

    if max_total_width > score_width + TABLE_DECORATION:
        max_sum = max_total_width - score_width - TABLE_DECORATION
    else:
        max_sum = MIN_COLUMN_WIDTH * 2
    total_text = max(1, file_width + match_width)
    new_file = max(MIN_COLUMN_WIDTH, min(file_width, (max_sum * file_width) // total_text))
    new_match = max(MIN_COLUMN_WIDTH, max_sum - new_file)
    if new_file + new_match > max_sum:
        new_match = max(0, max_sum - new_file)
    return new_file, new_match


def _separator(widths: Sequence[int]) -> str:
    return "+" + "+".join("-" * (w + 2) for w in widths) + "+"


def _row(file: str, match: str, score: str, widths: Sequence[int]) -> str:
    file_width, match_width, score_width = widths
    return f"| {file:<{file_width}} | {match:<{match_width}} | {score:>{score_width}} |"


def render_table(rows: Sequence[MatchRow], max_total_width: int | None = None) -> str:
    """ASCII table of rows with wrapped path columns and the reciprocal footnote."""
    scores = [format_score(r.score) for r in rows]
    file_width = max([len(TABLE_HEADERS[0]), *(len(r.file) for r in rows)])
    match_width = max([len(TABLE_HEADERS[1]), *(len(r.match) for r in rows)])
    score_width = max([len(TABLE_HEADERS[2]), *(len(s) for s in scores)])
    file_width, match_width = fit_column_widths(file_width, match_width, score_width, max_total_width)
    widths = (file_width, match_width, score_width)

    lines = [_separator(widths), _row(*TABLE_HEADERS, widths), _separator(widths)]
    for row, score in zip(rows, scores):
        file_lines = wrap_text(row.file, file_width)
        match_lines = wrap_text(row.match, match_width)
        for i in range(max(len(file_lines), len(match_lines))):
            lines.append(
                _row(
                    file_lines[i] if i < len(file_lines) else "",
                    match_lines[i] if i < len(match_lines) else "",
                    score if i == 0 else "",
                    widths,
                )
            )
    lines.append(_separator(widths))
    return "\n".join(lines) + "\n" + RECIPROCAL_FOOTNOTE


def write_csv(path: str | Path, rows: Iterable[MatchRow]) -> Path:
    """Write ``file,most_similar,score,pair_id`` rows; raises ``OSError`` on failure."""
    path = Path(path)
    with path.open("w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for row in rows:
            writer.writerow([row.file, row.match, format_score(row.score), row.pair_id])
    logger.info("CSV generated: %s", path)
    return path
