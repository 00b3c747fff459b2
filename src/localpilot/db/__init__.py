"""Vector index database layer."""

from localpilot.db.connection import DB_FILENAME, Database
from localpilot.db.migrations import MIGRATIONS, run_migrations
from localpilot.db.models import ChunkRecord, StoredChunk
from localpilot.db.vector_index import VectorIndex, is_corruption_error
from localpilot.db.vectors import VEC_TABLE, ensure_vec_table

__all__ = [
    "DB_FILENAME",
    "Database",
    "run_migrations",
    "MIGRATIONS",
    "ChunkRecord",
    "StoredChunk",
    "VectorIndex",
    "is_corruption_error",
    "VEC_TABLE",
    "ensure_vec_table",
]
