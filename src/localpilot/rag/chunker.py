"""Sentence-greedy chunker for retrieval indexing."""

from __future__ import annotations

import re

# A sentence is a run of non-terminators followed by terminators or end-of-text.
# Stray terminators ("...") match on their own so no input text is lost.
_SENTENCE_RE = re.compile(r"[^.!?]+(?:[.!?]+|$)|[.!?]+")


class SentenceChunker:
    """Split text into chunks of at most ``max_len`` characters where possible.

    Strategy:
    - Split into sentences on ``.``, ``!`` and ``?``.
    - Accumulate sentences greedily; flush before a sentence would overflow.
    - A single sentence longer than ``max_len`` becomes its own chunk; it is
      never cut or dropped.
    - Whitespace-only input yields no chunks.
    """

    def __init__(self, max_len: int = 1_000) -> None:
        if max_len < 1:
            raise ValueError("max_len must be >= 1")
        self.max_len = max_len

    def chunk(self, text: str) -> list[str]:
        if not text.strip():
            return []

        sentences = [s for s in _SENTENCE_RE.findall(text) if s.strip()]
        chunks: list[str] = []
        current = ""
        for sentence in sentences:
            if current and len(current) + len(sentence) > self.max_len:
                chunks.append(current.strip())
                current = ""
            current += sentence
        if current.strip():
            chunks.append(current.strip())
        return chunks


def chunk_text(text: str, max_len: int = 1_000) -> list[str]:
    """Convenience wrapper around :class:`SentenceChunker`."""
    return SentenceChunker(max_len).chunk(text)
