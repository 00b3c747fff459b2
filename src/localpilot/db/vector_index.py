"""Persistent vector index: chunk rows + sqlite-vec k-NN search.

The index lives in a single ``index.db`` file inside a storage directory that
the retrieval layer treats as opaque. Every public method takes an internal
lock so one connection can be shared between ``asyncio.to_thread`` workers.
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

from localpilot.db.connection import Database
from localpilot.db.migrations import run_migrations
from localpilot.db.models import ChunkRecord, StoredChunk
from localpilot.db.vectors import VEC_TABLE, ensure_vec_table, serialize, vec_table_exists
from localpilot.errors import IndexCorruptionError


# Substrings of sqlite3.DatabaseError messages that mean the file is damaged,
# as opposed to transient conditions such as "database is locked".
_CORRUPTION_MARKERS = (
    "malformed",
    "not a database",
    "corrupt",
    "file is encrypted",
)


def is_corruption_error(exc: BaseException) -> bool:
    """Return True if *exc* carries the signature of a damaged index file."""
    if isinstance(exc, IndexCorruptionError):
        return True
    if isinstance(exc, sqlite3.DatabaseError):
        msg = str(exc).lower()
        return any(marker in msg for marker in _CORRUPTION_MARKERS)
    return False


class VectorIndex:
    """Data access layer for chunk rows and their embeddings.

    Use :meth:`open` rather than the constructor; it creates the directory,
    runs migrations and translates a corruption signature into
    :class:`IndexCorruptionError`.
    """

    def __init__(self, conn: sqlite3.Connection, directory: Path) -> None:
        self._conn = conn
        self.directory = directory
        self._lock = threading.Lock()

    @classmethod
    def open(cls, directory: Path | str) -> VectorIndex:
        """Open (or create) the index stored in *directory*.

        Raises:
            IndexCorruptionError: If the database file exists but is unreadable.
        """
        directory = Path(directory)
        database = Database(directory)
        try:
            conn = database.connect()
        except IsADirectoryError as exc:
            raise IndexCorruptionError(str(exc)) from exc
        except sqlite3.DatabaseError as exc:
            _reraise_corruption(exc, directory)
            raise

        try:
            run_migrations(conn)
        except sqlite3.DatabaseError as exc:
            conn.close()
            _reraise_corruption(exc, directory)
            raise
        return cls(conn, directory)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_many(self, records: list[ChunkRecord]) -> list[int]:
        """Insert all *records* in one transaction. Returns the new chunk ids.

        Either every record is stored or none is; a file's chunks are never
        left half-written.
        """
        if not records:
            return []
        with self._lock:
            try:
                ensure_vec_table(self._conn, len(records[0].embedding))
                ids: list[int] = []
                with self._conn:
                    for rec in records:
                        cur = self._conn.execute(
                            "INSERT INTO chunks (source, text) VALUES (?, ?)",
                            (rec.source, rec.text),
                        )
                        chunk_id = cur.lastrowid
                        self._conn.execute(
                            f"INSERT INTO {VEC_TABLE}(rowid, embedding) VALUES (?, ?)",
                            (chunk_id, serialize(rec.embedding)),
                        )
                        ids.append(chunk_id)
                return ids
            except sqlite3.DatabaseError as exc:
                _reraise_corruption(exc, self.directory)
                raise

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(self, embedding: list[float], k: int) -> list[StoredChunk]:
        """Nearest-neighbour search. Returns chunks sorted by cosine distance."""
        if k < 1:
            return []
        with self._lock:
            try:
                if not vec_table_exists(self._conn):
                    return []
                rows = self._conn.execute(
                    f"""
                    SELECT c.id, c.source, c.text, v.distance
                    FROM (
                        SELECT rowid, distance FROM {VEC_TABLE}
                        WHERE embedding MATCH ? AND k = ?
                    ) AS v
                    JOIN chunks AS c ON c.id = v.rowid
                    ORDER BY v.distance
                    """,
                    (serialize(embedding), k),
                ).fetchall()
            except sqlite3.DatabaseError as exc:
                _reraise_corruption(exc, self.directory)
                raise
        return [
            StoredChunk(
                id=r["id"], source=r["source"], text=r["text"], distance=r["distance"]
            )
            for r in rows
        ]

    def count(self) -> int:
        """Return the number of stored chunks."""
        with self._lock:
            try:
                return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
            except sqlite3.DatabaseError as exc:
                _reraise_corruption(exc, self.directory)
                raise


def _reraise_corruption(exc: sqlite3.DatabaseError, directory: Path) -> None:
    if is_corruption_error(exc):
        raise IndexCorruptionError(
            f"Index database in '{directory}' is corrupted: {exc}"
        ) from exc
