"""MatchText: near-duplicate detection for document corpora."""

__version__ = "1.2.0"
