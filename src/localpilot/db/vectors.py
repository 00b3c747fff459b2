"""sqlite-vec virtual table management for the vector index."""

from __future__ import annotations

import sqlite3

import sqlite_vec

VEC_TABLE = "vec_chunks"


def vec_table_exists(conn: sqlite3.Connection) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (VEC_TABLE,)
    ).fetchone()
    return row is not None


def vec_table_dimensions(conn: sqlite3.Connection) -> int | None:
    """Return the dimension recorded for the vec table, or None if not created yet."""
    row = conn.execute(
        "SELECT value FROM index_meta WHERE key = 'dimensions'"
    ).fetchone()
    return int(row[0]) if row else None


def ensure_vec_table(conn: sqlite3.Connection, dimensions: int) -> str:
    """Create the cosine-distance vec0 table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec loaded, migrations run).
        dimensions: Embedding vector dimensions (e.g. 768 for nomic-embed-text).

    Returns:
        The table name.

    Raises:
        ValueError: If *dimensions* is invalid or differs from the existing table.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    if vec_table_exists(conn):
        existing = vec_table_dimensions(conn)
        if existing is not None and existing != dimensions:
            raise ValueError(
                f"Embedding dimension mismatch: index uses {existing}, got {dimensions}. "
                "Delete the index directory and re-index with one embedding model."
            )
        return VEC_TABLE

    conn.execute(
        f"CREATE VIRTUAL TABLE {VEC_TABLE} USING "
        f"vec0(embedding float[{dimensions}] distance_metric=cosine)"
    )
    conn.execute(
        "INSERT OR REPLACE INTO index_meta (key, value) VALUES ('dimensions', ?)",
        (str(dimensions),),
    )
    conn.commit()
    return VEC_TABLE


def serialize(embedding: list[float]) -> bytes:
    """Pack a float vector into the compact float32 blob sqlite-vec expects."""
    return sqlite_vec.serialize_float32(embedding)
