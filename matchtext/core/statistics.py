"""Per-document term statistics, the unit of comparison."""
from __future__ import annotations

import math

from matchtext.core.stopwords import is_stopword
from matchtext.core.tokenizer import CaseFolding, StatisticsTokenizer


class DocumentStatistics:
    """Token counts for one document.

    Mutated only while a tokenizer is feeding it; read-only once scoring
    starts. ``total`` always equals ``sum(counts.values())``.
    """

    __slots__ = ("counts", "total")

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.total = 0

    @classmethod
    def from_text(cls, text: str, folding: CaseFolding | None = None) -> "DocumentStatistics":
        stats = cls()
        stats.add_text(text, folding)
        return stats

    def add_token(self, text: str) -> None:
        if not text or is_stopword(text):
            return
        self.counts[text] = self.counts.get(text, 0) + 1
        self.total += 1

    def add_text(self, text: str, folding: CaseFolding | None = None) -> None:
        tokenizer = StatisticsTokenizer(self, folding)
        tokenizer.add_chunk(text.encode("utf-8"))
        tokenizer.finish()

    def clear(self) -> None:
        self.counts.clear()
        self.total = 0

    def is_empty(self) -> bool:
        return self.total == 0

    def dist(self, other: "DocumentStatistics") -> float:
        """L2 distance between the normalized term-frequency vectors."""
        total = 0.0
        for word, count in self.counts.items():
            freq = count / self.total
            other_count = other.counts.get(word, 0)
            other_freq = other_count / other.total if other_count else 0.0
            d = freq - other_freq
            total += d * d
        for word, count in other.counts.items():
            if word in self.counts:
                continue
            other_freq = count / other.total
            total += other_freq * other_freq
        return math.sqrt(total)

    def __len__(self) -> int:
        return len(self.counts)

    def __repr__(self) -> str:
        return f"DocumentStatistics(terms={len(self.counts)}, total={self.total})"
