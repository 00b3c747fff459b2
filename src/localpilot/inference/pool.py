"""Session pool: session id → Sequence lane, with FIFO eviction.

Eviction priority when the context has no free lane:
  1. live ephemeral sequences (autocomplete / inline prompts), oldest first,
  2. the oldest-created named session.

Session creation is serialised process-wide by an asyncio.Lock, so a burst of
first-use requests cannot allocate twice for one id. Asks on the same session
are serialised by that session's own lock.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from localpilot.errors import SessionNotFoundError
from localpilot.inference.model import InferenceContext, ModelLifecycle, Sequence
from localpilot.inference.retry import RetryPolicy, retry_acquire


@dataclass
class Session:
    """Named conversational state bound to exactly one Sequence."""

    session_id: str
    sequence: Sequence
    system_prompt: str
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def is_live(self, context: InferenceContext | None) -> bool:
        return not self.sequence.disposed and self.sequence.context is context


class SessionPool:
    """Maps session ids to sequences of the current inference context."""

    def __init__(
        self,
        lifecycle: ModelLifecycle,
        *,
        system_prompt: str,
        retry_policy: RetryPolicy = RetryPolicy(),
    ) -> None:
        self._lifecycle = lifecycle
        self._system_prompt = system_prompt
        self._retry_policy = retry_policy
        self._sessions: dict[str, Session] = {}
        self._order: deque[str] = deque()
        self._ephemerals: deque[Sequence] = deque()
        self._create_lock = asyncio.Lock()
        self.evictions = 0
        lifecycle.add_reset_listener(self.clear)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def session_ids(self) -> list[str]:
        """Live session ids, oldest first."""
        return list(self._order)

    @property
    def occupancy(self) -> int:
        context = self._lifecycle.context
        return context.occupancy if context is not None else 0

    def has_session(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and session.is_live(self._lifecycle.context)

    # ------------------------------------------------------------------
    # Named sessions
    # ------------------------------------------------------------------

    async def acquire(
        self, session_id: str, model_path: str | Path, *, create_if_missing: bool = True
    ) -> Session:
        """Return the live session for *session_id*, creating it if allowed.

        Raises:
            SessionNotFoundError: No live session and *create_if_missing* is False.
            ModelLoadError: The model could not be loaded.
        """
        context = await self._lifecycle.ensure_model(model_path)
        session = self._sessions.get(session_id)
        if session is not None and session.is_live(context):
            return session
        if session is not None:
            self._forget(session_id)
        if not create_if_missing:
            raise SessionNotFoundError(f"No session '{session_id}'")
        return await self.create(session_id, model_path)

    async def create(self, session_id: str, model_path: str | Path) -> Session:
        """Allocate a sequence for *session_id*, evicting if the pool is full."""
        async with self._create_lock:
            context = await self._lifecycle.ensure_model(model_path)
            existing = self._sessions.get(session_id)
            if existing is not None and existing.is_live(context):
                return existing
            if existing is not None:
                self._forget(session_id)

            if context.sequences_left == 0:
                logger.warning("No sequences left. Recycling to make room for '{}'", session_id)
                self._evict_one()

            sequence = context.get_sequence()
            session = Session(session_id, sequence, self._system_prompt)
            self._sessions[session_id] = session
            self._order.append(session_id)
            logger.info("AI session initialized: {}", session_id)
            return session

    async def ask(self, session_id: str, prompt: str, model_path: str | Path) -> str:
        """Prompt *session_id*, transparently re-creating it if it was recycled."""
        if not self.has_session(session_id):
            logger.info("Session '{}' not found (likely recycled). Re-initializing...", session_id)
        while True:
            session = await self.acquire(session_id, model_path, create_if_missing=True)
            async with session.lock:
                # Evicted while an earlier ask on this id held the lock.
                if session.is_live(self._lifecycle.context):
                    return await session.sequence.prompt(
                        prompt, system_prompt=session.system_prompt
                    )
            logger.info("Session '{}' was recycled while queued. Re-initializing...", session_id)

    def destroy(self, session_id: str) -> bool:
        """Dispose the session's sequence and drop it. False if it did not exist."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.sequence.dispose()
        self._forget(session_id)
        logger.info("AI session destroyed: {}", session_id)
        return True

    def clear(self) -> None:
        """Forget every session and ephemeral sequence (model reset)."""
        for session in self._sessions.values():
            session.sequence.dispose()
        self._sessions.clear()
        self._order.clear()
        while self._ephemerals:
            self._ephemerals.popleft().dispose()

    # ------------------------------------------------------------------
    # Ephemeral sequences
    # ------------------------------------------------------------------

    async def acquire_ephemeral(self, context: InferenceContext) -> Sequence:
        """Allocate a one-shot sequence, recycling other lanes if necessary.

        Raises:
            ResourceExhaustedError: If no lane could be freed within the retry budget.
        """
        sequence = await retry_acquire(
            context.get_sequence, self._evict_one, self._retry_policy
        )
        self._ephemerals.append(sequence)
        return sequence

    def release_ephemeral(self, sequence: Sequence) -> None:
        sequence.dispose()
        try:
            self._ephemerals.remove(sequence)
        except ValueError:
            pass

    @asynccontextmanager
    async def ephemeral(self, context: InferenceContext) -> AsyncIterator[Sequence]:
        """Borrow a one-shot sequence; it is released however the block exits."""
        sequence = await self.acquire_ephemeral(context)
        try:
            yield sequence
        finally:
            self.release_ephemeral(sequence)

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def _evict_one(self) -> bool:
        """Free one lane. Returns False when there was nothing to evict."""
        while self._ephemerals:
            ephemeral = self._ephemerals.popleft()
            if not ephemeral.disposed:
                ephemeral.dispose()
                self.evictions += 1
                logger.info("Force-killed ephemeral sequence to free resources")
                return True

        while self._order:
            oldest = self._order[0]
            session = self._sessions.get(oldest)
            self._forget(oldest)
            if session is not None and not session.sequence.disposed:
                session.sequence.dispose()
                self.evictions += 1
                logger.info("Force-recycled session: {}", oldest)
                return True
        return False

    def _forget(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        try:
            self._order.remove(session_id)
        except ValueError:
            pass
