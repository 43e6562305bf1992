from __future__ import annotations

import math
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from matchtext.config import settings
from matchtext.core.similarity import SimilarityMode


def parse_threshold(value: str) -> float | None:
    """Parse a dedup threshold; None unless it is a finite number in [0, 1]."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or parsed < 0.0 or parsed > 1.0:
        return None
    return parsed


class ExtractionOptions(BaseModel):
    safe_mode: bool = False
    no_convert: bool = False


class RunOptions(BaseModel):
    """Options shared by the corpus commands."""

    mode: SimilarityMode = SimilarityMode.TFIDF
    threads: Optional[int] = Field(default=None, ge=1)
    extraction: ExtractionOptions = Field(default_factory=ExtractionOptions)
    verbose: bool = False

    @property
    def use_hash(self) -> bool:
        return self.mode is SimilarityMode.HASH


class CorpusOptions(RunOptions):
    """All-pairs run over one directory tree."""

    root: Path
    dedup: bool = False
    dedup_threshold: float = Field(default_factory=lambda: settings.DEDUP_THRESHOLD)

    @field_validator("dedup_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if math.isnan(v) or not 0.0 <= v <= 1.0:
            raise ValueError("Dedup threshold must be within [0, 1]")
        return v

    @property
    def duplicates_dir(self) -> Path:
        return self.root / settings.DUPLICATES_DIR_NAME


class SampleOptions(RunOptions):
    """One sample file scored against a repository directory."""

    sample: Path
    repository: Path
    recursive: bool = False
