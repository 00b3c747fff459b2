"""Row models for the vector index."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ChunkRecord:
    """One (embedding, chunk text, source) triple waiting to be inserted."""

    source: str
    text: str
    embedding: list[float]


@dataclass
class StoredChunk:
    id: int
    source: str
    text: str
    distance: float
