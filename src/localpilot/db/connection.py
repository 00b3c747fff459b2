"""SQLite connection for the vector index directory, with sqlite-vec loaded."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

DB_FILENAME = "index.db"

# Milliseconds a writer waits on a locked database before failing.
_BUSY_TIMEOUT_MS = 5_000


class Database:
    """The ``index.db`` file inside a vector index storage directory.

    Args:
        directory: Storage directory; created on connect() if missing.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    @property
    def path(self) -> Path:
        return self.directory / DB_FILENAME

    def connect(self) -> sqlite3.Connection:
        """Open the database file and load sqlite-vec.

        The connection is shared between worker threads; callers serialise
        access themselves (see VectorIndex).

        Raises:
            sqlite3.DatabaseError: If the file exists but is not a database.
            IsADirectoryError: If a directory sits where the file should be.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        if self.path.exists() and not self.path.is_file():
            raise IsADirectoryError(f"'{self.path}' is not a file")

        conn = sqlite3.connect(self.path, check_same_thread=False)
        try:
            conn.row_factory = sqlite3.Row
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
            conn.execute(f"PRAGMA busy_timeout = {_BUSY_TIMEOUT_MS}")
            conn.execute("PRAGMA journal_mode = WAL")
        except BaseException:
            conn.close()
            raise
        return conn
