"""Sentence chunker: sentence-aligned passages with a character overlap window."""

from __future__ import annotations

import re
from dataclasses import dataclass

# Whitespace that follows sentence-final punctuation.
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


@dataclass(frozen=True)
class TextChunk:
    text: str
    index: int


class SentenceChunker:
    """Accumulate sentences into passages of at most ``max_chars`` characters.

    When the next sentence would overflow the buffer, the buffer is closed as a
    chunk and the next one starts with the last ``overlap_chars`` characters of
    the closed chunk. A trailing buffer shorter than ``min_chars`` is folded into
    the previous chunk. Sentences are never split, so a single sentence longer
    than ``max_chars`` becomes an oversized chunk of its own.
    """

    def __init__(
        self, max_chars: int = 800, overlap_chars: int = 200, min_chars: int = 100
    ) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        if not 0 <= overlap_chars < max_chars:
            raise ValueError("overlap_chars must be in [0, max_chars)")
        if min_chars < 0:
            raise ValueError("min_chars must be >= 0")
        self.max_chars = max_chars
        self.overlap_chars = overlap_chars
        self.min_chars = min_chars

    @staticmethod
    def split_sentences(text: str) -> list[str]:
        return [s for s in _SENTENCE_BOUNDARY.split(text.strip()) if s]

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into ordered chunks with sequential indices from zero."""
        if not text.strip():
            return []

        pieces: list[str] = []
        buffer = ""
        for sentence in self.split_sentences(text):
            if not buffer:
                buffer = sentence
            elif len(buffer) + 1 + len(sentence) <= self.max_chars:
                buffer = f"{buffer} {sentence}"
            else:
                pieces.append(buffer)
                tail = buffer[-self.overlap_chars:] if self.overlap_chars else ""
                buffer = f"{tail} {sentence}" if tail else sentence

        if buffer:
            if pieces and len(buffer) < self.min_chars:
                pieces[-1] = f"{pieces[-1]} {buffer}"
            else:
                pieces.append(buffer)

        return [TextChunk(text=p, index=i) for i, p in enumerate(pieces)]


def chunk_text(
    text: str, max_chars: int = 800, overlap_chars: int = 200, min_chars: int = 100
) -> list[TextChunk]:
    """Convenience wrapper around :class:`SentenceChunker`."""
    return SentenceChunker(max_chars, overlap_chars, min_chars).chunk(text)
