"""Filename version/date heuristic used to pick the keeper of a duplicate pair.

A filename stem is scanned for date stamps, version numbers, keyword-prefixed
builds, revision markers and descriptive tags ("final", "latest", ...). The
most informative match becomes a ``VersionDescriptor``; ``compare_descriptors``
is the single ordering used both to choose among the matches of one name and
to rank two files against each other.
"""
from __future__ import annotations

import functools
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(
    r"(^|[^0-9])(\d{4})[-_.]?(\d{2})[-_.]?(\d{2})"
    r"(?:[tT_. -]?(\d{2})[:_\-.]?(\d{2})(?:[:_\-.]?(\d{2}))?)?",
    re.ASCII,
)
_DATE_COMPACT_RE = re.compile(r"(^|[^0-9])(\d{8})(\d{4}|\d{6})?($|[^0-9])", re.ASCII)
_YEAR_MONTH_RE = re.compile(r"(^|[^0-9])(\d{4})[-_.]?(\d{2})($|[^0-9])", re.ASCII)
_QUARTER_RE = re.compile(r"(^|[^0-9])(\d{4})[-_.]?(q|quarter)([1-4])($|[^0-9])", re.ASCII)

_VERSION_RE = re.compile(r"(^|[^a-z0-9])v?(\d+(?:\.\d+)*)([a-z]?)", re.ASCII)
_V_SEPARATOR_RE = re.compile(r"(^|[^a-z0-9])v[._-]+(\d+(?:\.\d+)*)([a-z]?)", re.ASCII)
_SEPARATOR_V_RE = re.compile(r"(^|[^a-z0-9])[._-]+v[._-]+(\d+(?:\.\d+)*)([a-z]?)", re.ASCII)
_PREFIX_VERSION_RE = re.compile(
    r"(^|[^a-z0-9])(ver|version|rel|release|build|b)(\d+(?:\.\d+)*)([a-z]?)", re.ASCII
)
_REVISION_RE = re.compile(r"(^|[^a-z0-9])(rev|revision|r)(\d+)?([a-z]?)", re.ASCII)
_TAG_VERSION_RE = re.compile(
    r"(^|[^a-z0-9])(final|latest|new|updated|update|revised)(\d+)?([a-z]?)", re.ASCII
)
_TAG_RE = re.compile(
    r"(^|[^a-z0-9])(new|revised|revision|rev|latest|final|updated|update)($|[^a-z0-9])",
    re.ASCII,
)


@dataclass(frozen=True)
class VersionDescriptor:
    """What a filename says about its own recency.

    ``kind`` is one of ``none``, ``tagged`` (keyword only), ``versioned`` or
    ``dated``. Dates carry (year, month, day, hour, minute, second); versions
    carry their dot-separated parts. ``suffix`` is the ordinal of a trailing
    letter ('a' = 1 ... 'z' = 26).
    """

    is_date: bool = False
    parts: tuple[int, ...] = field(default_factory=tuple)
    suffix: int = 0
    has_tag: bool = False

    @property
    def has_version(self) -> bool:
        return bool(self.parts)

    @property
    def kind(self) -> str:
        if self.is_date:
            return "dated"
        if self.parts:
            return "versioned"
        if self.has_tag:
            return "tagged"
        return "none"


NO_DESCRIPTOR = VersionDescriptor()


def compare_descriptors(left: VersionDescriptor, right: VersionDescriptor) -> int:
    """Return 1 if ``left`` ranks above ``right``, -1 if below, 0 if tied."""
    if left.is_date != right.is_date:
        return 1 if left.is_date else -1

    if left.has_version and right.has_version:
        width = max(len(left.parts), len(right.parts))
        for i in range(width):
            left_part = left.parts[i] if i < len(left.parts) else 0
            right_part = right.parts[i] if i < len(right.parts) else 0
            if left_part != right_part:
                return -1 if left_part < right_part else 1
        if left.suffix != right.suffix:
            return -1 if left.suffix < right.suffix else 1
        if left.has_tag != right.has_tag:
            return 1 if left.has_tag else -1
        return 0

    # Exactly one side has components: the bare side wins only with a tag.
    if not left.has_version and right.has_version:
        return 1 if left.has_tag else -1
    if left.has_version and not right.has_version:
        return -1 if right.has_tag else 1

    if left.has_tag != right.has_tag:
        return 1 if left.has_tag else -1
    return 0


descriptor_sort_key = functools.cmp_to_key(compare_descriptors)


def _suffix_value(raw: str | None) -> int:
    if raw and "a" <= raw[0] <= "z":
        return ord(raw[0]) - ord("a") + 1
    return 0


def _version_parts(raw: str) -> tuple[int, ...]:
    return tuple(int(segment) for segment in raw.split(".") if segment)


def _valid_timestamp(month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> bool:
    return (
        1 <= month <= 12
        and 1 <= day <= 31
        and 0 <= hour <= 23
        and 0 <= minute <= 59
        and 0 <= second <= 59
    )


def _date_candidates(name: str, has_tag: bool) -> Iterable[VersionDescriptor]:
    for m in _DATE_RE.finditer(name):
        year, month, day = int(m.group(2)), int(m.group(3)), int(m.group(4))
        hour = int(m.group(5)) if m.group(5) else 0
        minute = int(m.group(6)) if m.group(6) else 0
        second = int(m.group(7)) if m.group(7) else 0
        if not _valid_timestamp(month, day, hour, minute, second):
            continue
        yield VersionDescriptor(True, (year, month, day, hour, minute, second), 0, has_tag)

    for m in _DATE_COMPACT_RE.finditer(name):
        ymd = m.group(2)
        year, month, day = int(ymd[:4]), int(ymd[4:6]), int(ymd[6:8])
        hour = minute = second = 0
        hms = m.group(3)
        if hms:
            hour, minute = int(hms[:2]), int(hms[2:4])
            if len(hms) == 6:
                second = int(hms[4:6])
        if not _valid_timestamp(month, day, hour, minute, second):
            continue
        yield VersionDescriptor(True, (year, month, day, hour, minute, second), 0, has_tag)

    for m in _YEAR_MONTH_RE.finditer(name):
        year, month = int(m.group(2)), int(m.group(3))
        if not 1 <= month <= 12:
            continue
        yield VersionDescriptor(True, (year, month, 0, 0, 0, 0), 0, has_tag)

    for m in _QUARTER_RE.finditer(name):
        year, quarter = int(m.group(2)), int(m.group(4))
        yield VersionDescriptor(True, (year, quarter * 3, 0, 0, 0, 0), 0, has_tag)


def _version_candidates(name: str, has_tag: bool) -> Iterable[VersionDescriptor]:
    for pattern in (_VERSION_RE, _V_SEPARATOR_RE, _SEPARATOR_V_RE):
        for m in pattern.finditer(name):
            yield VersionDescriptor(False, _version_parts(m.group(2)), _suffix_value(m.group(3)), has_tag)

    for m in _PREFIX_VERSION_RE.finditer(name):
        yield VersionDescriptor(False, _version_parts(m.group(3)), _suffix_value(m.group(4)), True)

    # Revision markers and tag keywords are always tagged; a bare letter
    # suffix ("rev-b" style) still counts as a version of 0.
    for pattern in (_REVISION_RE, _TAG_VERSION_RE):
        for m in pattern.finditer(name):
            digits, suffix = m.group(3), m.group(4)
            if digits:
                yield VersionDescriptor(False, (int(digits),), _suffix_value(suffix), True)
            elif suffix:
                yield VersionDescriptor(False, (0,), _suffix_value(suffix), True)
            else:
                yield VersionDescriptor(False, (), 0, True)


def extract_version_descriptor(path: str | os.PathLike[str]) -> VersionDescriptor:
    """Pick the highest-ranked descriptor found in the file's stem."""
    name = Path(path).stem.lower()
    has_tag = _TAG_RE.search(name) is not None

    candidates = [*_date_candidates(name, has_tag), *_version_candidates(name, has_tag)]
    if not candidates:
        return VersionDescriptor(has_tag=True) if has_tag else NO_DESCRIPTOR
    # max() keeps the first of equally ranked candidates
    return max(candidates, key=descriptor_sort_key)


def get_mtime(path: str | os.PathLike[str]) -> int | None:
    """Last-modified time in nanoseconds, or None when it cannot be read."""
    try:
        return os.stat(path).st_mtime_ns
    except OSError as exc:
        logger.debug("Modification time unavailable for %s: %s", path, exc)
        return None


def choose_duplicate(
    left: int,
    right: int,
    descriptors: Sequence[VersionDescriptor],
    mtimes: Sequence[int | float | None],
) -> int:
    """Return whichever of ``left`` / ``right`` should be treated as the duplicate.

    Order of evidence: filename descriptor (lower rank is the duplicate), then
    modification time (older is the duplicate, unknown loses to known), then
    discovery order (the later index is the duplicate).
    """
    version_cmp = compare_descriptors(descriptors[left], descriptors[right])
    if version_cmp != 0:
        return right if version_cmp > 0 else left

    left_time = mtimes[left]
    right_time = mtimes[right]
    if left_time is not None and right_time is not None and left_time != right_time:
        return left if left_time < right_time else right
    if (left_time is None) != (right_time is None):
        return right if left_time is not None else left

    return left if left > right else right
