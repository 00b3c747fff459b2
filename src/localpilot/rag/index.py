"""Retrieval index: incremental, corruption-recoverable chunk/embedding store.

States::

    UNINITIALIZED → INITIALIZING → READY ⇄ INDEXING
    READY → CORRUPTED → RESETTING → READY   (on the next init())

A file path enters the IndexedFileSet only after every chunk of that file has
been stored, so an interrupted batch resumes where it stopped and never leaves
a file half-recorded.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from loguru import logger

from localpilot.db.models import ChunkRecord
from localpilot.db.vector_index import VectorIndex, is_corruption_error
from localpilot.errors import IndexCorruptionError, IndexNotReadyError
from localpilot.rag.chunker import SentenceChunker
from localpilot.rag.discovery import list_directory
from localpilot.rag.embedder import Embedder, Role
from localpilot.rag.extract import extract_text
from localpilot.rag.gate import RetrievedChunk
from localpilot.rag.state import IndexedFileSet

# (processed, total, filename)
ProgressCallback = Callable[[int, int, str], None]

BATCH_BUSY = "another indexing batch is already running"


class IndexState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    INDEXING = "indexing"
    CORRUPTED = "corrupted"
    RESETTING = "resetting"


@dataclass
class IndexReport:
    """Outcome of one index_batch() call."""

    indexed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    aborted: bool = False
    abort_reason: str | None = None

    @property
    def ok(self) -> bool:
        return not self.aborted


@dataclass(frozen=True)
class IndexStatus:
    state: IndexState
    indexed_files: int
    chunks: int


class RetrievalIndex:
    """Chunks, embeds, persists and queries project text.

    Args:
        embedder: Role-aware embedding front end.
        storage_dir: Directory holding the vector store (treated as opaque and
            deleted wholesale on corruption).
        state_file: JSON file recording the IndexedFileSet.
        sleep: Injected for tests (pause between files).
    """

    def __init__(
        self,
        embedder: Embedder,
        *,
        storage_dir: Path,
        state_file: Path,
        chunk_size: int = 1_000,
        max_file_bytes: int = 50 * 1024,
        file_delay: float = 0.25,
        failure_threshold: int = 3,
        checkpoint_every: int = 10,
        extensions: Iterable[str] = (),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.embedder = embedder
        self.storage_dir = Path(storage_dir)
        self.state_file = Path(state_file)
        self.chunker = SentenceChunker(chunk_size)
        self.max_file_bytes = max_file_bytes
        self.file_delay = file_delay
        self.failure_threshold = failure_threshold
        self.checkpoint_every = checkpoint_every
        self.extensions = frozenset(e.lower() for e in extensions)
        self._sleep = sleep

        self.state = IndexState.UNINITIALIZED
        self._store: VectorIndex | None = None
        self._files = IndexedFileSet(self.state_file)
        self._needs_reset = False
        self._init_lock = asyncio.Lock()
        self._batch_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._store is not None and self.state in (IndexState.READY, IndexState.INDEXING)

    @property
    def indexed_files(self) -> list[str]:
        return list(self._files)

    async def init(self) -> None:
        """Open the store and load the IndexedFileSet.

        A corrupted store (detected now, or flagged by an earlier operation)
        is deleted and recreated empty, and the IndexedFileSet is cleared.
        """
        async with self._init_lock:
            if self.is_ready:
                return
            self.state = IndexState.INITIALIZING
            files = await asyncio.to_thread(IndexedFileSet.load, self.state_file)
            try:
                if self._needs_reset:
                    await self._reset(files)
                else:
                    try:
                        self._store = await asyncio.to_thread(VectorIndex.open, self.storage_dir)
                    except IndexCorruptionError as exc:
                        logger.warning("Vector store is corrupted ({}); resetting index", exc)
                        await self._reset(files)
            except Exception:
                self.state = IndexState.UNINITIALIZED
                raise
            self._files = files
            self.state = IndexState.READY
            logger.info(
                "Retrieval index ready: {} files already indexed", len(files)
            )

    async def _reset(self, files: IndexedFileSet) -> None:
        self.state = IndexState.RESETTING
        await asyncio.to_thread(shutil.rmtree, self.storage_dir, True)
        files.clear()
        await asyncio.to_thread(files.save)
        self._store = await asyncio.to_thread(VectorIndex.open, self.storage_dir)
        self._needs_reset = False
        logger.info("Retrieval index reset: {}", self.storage_dir)

    def _mark_corrupted(self, exc: BaseException) -> None:
        logger.error("Vector store corruption detected: {}", exc)
        store, self._store = self._store, None
        if store is not None:
            try:
                store.close()
            except Exception as close_exc:
                logger.debug("Closing corrupted store failed: {}", close_exc)
        self.state = IndexState.CORRUPTED
        self._needs_reset = True

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None
        self.embedder.close()
        self.state = IndexState.UNINITIALIZED

    def _require_store(self) -> VectorIndex:
        if self._store is None:
            raise IndexNotReadyError(f"Retrieval index is not ready (state: {self.state.value})")
        return self._store

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_one_file(self, path: str | Path) -> int:
        """Extract, chunk, embed and store one file. Returns the chunk count.

        All of the file's rows are inserted in one transaction; on any error
        nothing from this file is stored.
        """
        store = self._require_store()
        path = Path(path)
        text = await asyncio.to_thread(extract_text, path)
        chunks = self.chunker.chunk(text)
        if not chunks:
            return 0

        records: list[ChunkRecord] = []
        for chunk in chunks:
            embedding = await self.embedder.embed(chunk, Role.DOCUMENT)
            records.append(ChunkRecord(source=path.name, text=chunk, embedding=embedding))
        await asyncio.to_thread(store.insert_many, records)
        return len(records)

    def _select(self, files: Iterable[str | Path], report: IndexReport) -> list[str]:
        """Drop already-indexed, unsupported, oversized and unreadable files."""
        selected: list[str] = []
        for f in files:
            key = str(f)
            path = Path(f)
            if key in self._files:
                report.skipped.append(key)
                continue
            if self.extensions and path.suffix.lower() not in self.extensions:
                report.skipped.append(key)
                continue
            try:
                size = path.stat().st_size
            except OSError:
                report.skipped.append(key)
                continue
            if size > self.max_file_bytes:
                logger.debug("Skipping {} ({} bytes > {})", key, size, self.max_file_bytes)
                report.skipped.append(key)
                continue
            selected.append(key)
        return selected

    async def index_batch(
        self,
        files: Iterable[str | Path],
        on_progress: ProgressCallback | None = None,
    ) -> IndexReport:
        """Index *files* sequentially; resumable and circuit-broken.

        Returns immediately with ``aborted=True`` if another batch is running.

        Raises:
            IndexNotReadyError: If init() has not completed.
        """
        if self._batch_lock.locked():
            logger.warning("Indexing already in progress; request rejected")
            return IndexReport(aborted=True, abort_reason=BATCH_BUSY)

        async with self._batch_lock:
            self._require_store()
            report = IndexReport()
            candidates = await asyncio.to_thread(self._select, list(files), report)
            total = len(candidates)
            logger.info(
                "Indexing {} files ({} skipped)", total, len(report.skipped)
            )

            self.state = IndexState.INDEXING
            consecutive_failures = 0
            since_checkpoint = 0
            try:
                for i, key in enumerate(candidates):
                    if on_progress is not None:
                        on_progress(i, total, Path(key).name)
                    try:
                        await self.index_one_file(key)
                    except Exception as exc:
                        if is_corruption_error(exc):
                            self._mark_corrupted(exc)
                            report.aborted = True
                            report.abort_reason = f"index corrupted: {exc}"
                            break
                        logger.error("Failed to index {}: {}", key, exc)
                        report.failed.append(key)
                        consecutive_failures += 1
                        if consecutive_failures >= self.failure_threshold:
                            logger.error(
                                "Too many consecutive failures ({}); aborting indexing",
                                consecutive_failures,
                            )
                            report.aborted = True
                            report.abort_reason = (
                                f"{consecutive_failures} consecutive failures"
                            )
                            break
                    else:
                        self._files.add(key)
                        report.indexed.append(key)
                        consecutive_failures = 0
                        since_checkpoint += 1
                        if since_checkpoint >= self.checkpoint_every:
                            await asyncio.to_thread(self._files.save)
                            since_checkpoint = 0

                    if i < total - 1:
                        await self._sleep(self.file_delay)
            finally:
                await asyncio.to_thread(self._files.save)
                if self.state == IndexState.INDEXING:
                    self.state = IndexState.READY

            logger.info(
                "Indexing finished: {} indexed, {} failed, {} skipped{}",
                len(report.indexed),
                len(report.failed),
                len(report.skipped),
                " (aborted)" if report.aborted else "",
            )
            return report

    async def index_directory(
        self, root: str | Path, on_progress: ProgressCallback | None = None
    ) -> IndexReport:
        """Discover supported files under *root* and index them."""
        files = await asyncio.to_thread(list_directory, root, self.extensions)
        return await self.index_batch(files, on_progress)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query(self, text: str, k: int = 3) -> list[RetrievedChunk]:
        """Return at most *k* chunks most similar to *text*.

        Raises:
            IndexNotReadyError: If the index is not initialised.
            IndexCorruptionError: If the store is damaged (the index is then
                flagged for reset on the next init()).
        """
        store = self._require_store()
        if k < 1:
            return []
        embedding = await self.embedder.embed(text, Role.QUERY)
        try:
            rows = await asyncio.to_thread(store.search, embedding, k)
        except Exception as exc:
            if is_corruption_error(exc):
                self._mark_corrupted(exc)
            raise
        return [
            RetrievedChunk(text=r.text, source=r.source, score=1.0 - r.distance)
            for r in rows[:k]
        ]

    async def status(self) -> IndexStatus:
        chunks = 0
        if self._store is not None:
            try:
                chunks = await asyncio.to_thread(self._store.count)
            except Exception as exc:
                if not is_corruption_error(exc):
                    raise
                self._mark_corrupted(exc)
        return IndexStatus(
            state=self.state,
            indexed_files=len(self._files),
            chunks=chunks,
        )
