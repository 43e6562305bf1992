"""Streaming, chunk-safe tokenizer.

Bytes are decoded as UTF-8 incrementally: a multi-byte sequence split across
two chunks is held back until the next chunk arrives. Malformed input decodes
to U+FFFD one byte at a time; the placeholder ends the current token and is
never emitted itself.
"""
from __future__ import annotations

import codecs
import logging
import sys
import unicodedata
from typing import Iterable, Iterator, Protocol

from matchtext.config import settings
from matchtext.core.stopwords import is_stopword

logger = logging.getLogger(__name__)

REPLACEMENT_CHAR = "\ufffd"
BYTEWISE_REPLACE = "matchtext-bytewise-replace"


def _bytewise_replace(exc: UnicodeError) -> tuple[str, int]:
    # Resume right after the first offending byte, whatever the codec flagged.
    if not isinstance(exc, UnicodeDecodeError):
        raise exc
    return REPLACEMENT_CHAR, exc.start + 1


codecs.register_error(BYTEWISE_REPLACE, _bytewise_replace)


class TokenSink(Protocol):
    def add_token(self, text: str) -> None: ...


class CaseFolding:
    """Process-wide lowercasing and boundary rules for one locale.

    ``unicode`` folds any codepoint whose lowercase form is a single codepoint.
    ``c`` mimics the classic C locale: only ASCII letters fold, everything
    above U+007F is appended unfolded.
    """

    def __init__(self, name: str = "unicode") -> None:
        name = (name or "unicode").strip().lower()
        if name in {"c", "posix"}:
            self.name = "c"
            self.max_codepoint = 0x7F
        else:
            self.name = "unicode"
            self.max_codepoint = sys.maxunicode
        self._cache: dict[str, str | None] = {}

    @staticmethod
    def is_boundary(ch: str) -> bool:
        """Whitespace, punctuation and control characters end a token."""
        if ch == REPLACEMENT_CHAR:
            return True
        if ch < "\x80":
            return not ch.isalnum()
        category = unicodedata.category(ch)
        return category[0] in "ZPS" or category == "Cc"

    def fold(self, ch: str) -> str:
        if ord(ch) > self.max_codepoint:
            return ch
        lowered = ch.lower()
        return lowered if len(lowered) == 1 else ch

    def classify(self, ch: str) -> str | None:
        """Return the folded character, or None when ``ch`` is a boundary."""
        try:
            return self._cache[ch]
        except KeyError:
            pass
        result = None if self.is_boundary(ch) else self.fold(ch)
        # dict assignment is atomic; concurrent misses just recompute the same value
        self._cache[ch] = result
        return result


_active_folding: CaseFolding | None = None


def active_folding() -> CaseFolding:
    """Resolve the configured locale once and share it across threads."""
    global _active_folding
    if _active_folding is None:
        _active_folding = CaseFolding(settings.LOCALE)
        logger.debug("Case folding resolved: %s", _active_folding.name)
    return _active_folding


class StatisticsTokenizer:
    """Feeds completed tokens from a byte stream into a sink."""

    def __init__(self, sink: TokenSink, folding: CaseFolding | None = None) -> None:
        self._sink = sink
        self._folding = folding or active_folding()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors=BYTEWISE_REPLACE)
        self._token: list[str] = []

    def add_chunk(self, data: bytes) -> None:
        if data:
            self._consume(self._decoder.decode(data, final=False))

    def finish(self) -> None:
        """Resolve any truncated trailing sequence and flush the last token."""
        self._consume(self._decoder.decode(b"", final=True))
        self._flush()
        self._decoder.reset()

    def _consume(self, text: str) -> None:
        classify = self._folding.classify
        token = self._token
        for ch in text:
            folded = classify(ch)
            if folded is None:
                if token:
                    self._flush()
                continue
            token.append(folded)

    def _flush(self) -> None:
        if self._token:
            self._sink.add_token("".join(self._token))
            self._token.clear()


class _TokenCollector:
    def __init__(self) -> None:
        self.tokens: list[str] = []

    def add_token(self, text: str) -> None:
        if text and not is_stopword(text):
            self.tokens.append(text)


def iter_tokens(chunks: Iterable[bytes], folding: CaseFolding | None = None) -> Iterator[str]:
    """Lazily yield stop-word filtered tokens from successive byte chunks."""
    collector = _TokenCollector()
    tokenizer = StatisticsTokenizer(collector, folding)
    for chunk in chunks:
        tokenizer.add_chunk(chunk)
        yield from collector.tokens
        collector.tokens.clear()
    tokenizer.finish()
    yield from collector.tokens


def tokenize_text(text: str, folding: CaseFolding | None = None) -> list[str]:
    return list(iter_tokens([text.encode("utf-8")], folding))


def tokenize_bytes(data: bytes, folding: CaseFolding | None = None) -> list[str]:
    return list(iter_tokens([data], folding))
