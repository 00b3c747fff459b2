"""Model weights, the fixed-capacity inference context, and its sequence lanes.

Lifecycle:
  - ModelLifecycle.ensure_model(path) loads weights + context once per path.
    Concurrent callers share one load task; a failed load is forgotten so the
    next call retries.
  - A path change (or unload()) closes the old context, which disposes every
    live Sequence, and notifies reset listeners (the session pool).

llama-cpp is not re-entrant, so every computation on a context runs under the
context's compute lock in a worker thread. Lanes are capacity accounting on
top of that: a Sequence owns its chat history and its slot in the pool.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from localpilot.errors import ModelLoadError, ResourceExhaustedError, SequenceDisposedError

# (model_path, context_size, gpu_layers) -> loaded model object
Loader = Callable[[str, int, int], Any]

_CHARS_PER_TOKEN = 4
_DEFAULT_REPLY_TOKENS = 512


def load_llama(model_path: str, context_size: int, gpu_layers: int) -> Any:
    """Default loader: a llama-cpp model with a *context_size* token window."""
    if not Path(model_path).is_file():
        raise FileNotFoundError(f"Model file not found: {model_path}")
    from llama_cpp import Llama

    return Llama(
        model_path=model_path,
        n_ctx=context_size,
        n_gpu_layers=gpu_layers,
        verbose=False,
    )


def estimate_tokens(text: str) -> int:
    """Approximate token count: 4 characters ≈ 1 token."""
    return max(1, len(text) // _CHARS_PER_TOKEN)


@dataclass(frozen=True)
class ModelHandle:
    """Loaded weights, identified by the file they came from."""

    path: str
    llm: Any


class Sequence:
    """One execution lane of an InferenceContext.

    A sequence keeps the chat history of whoever owns it. Once disposed, every
    further call raises SequenceDisposedError, including a computation that was
    already queued or running when the sequence was disposed.
    """

    def __init__(self, context: InferenceContext, lane_id: int) -> None:
        self.context = context
        self.id = lane_id
        self.disposed = False
        self._history: list[dict[str, str]] = []

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "live"
        return f"<Sequence {self.id} {state}>"

    def dispose(self) -> None:
        """Release the lane back to the context. Idempotent."""
        if self.disposed:
            return
        self.disposed = True
        self._history.clear()
        self.context._release(self)

    def ensure_live(self) -> None:
        if self.disposed:
            raise SequenceDisposedError(f"Sequence {self.id} has been disposed")

    async def prompt(
        self,
        text: str,
        *,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.7,
    ) -> str:
        """Run one chat turn and append it to this sequence's history."""
        self.ensure_live()
        user_msg = {"role": "user", "content": text}
        messages = self._fit_history(system_prompt, user_msg, max_tokens)

        def _chat(llm: Any) -> str:
            response = llm.create_chat_completion(
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
            return response["choices"][0]["message"]["content"] or ""

        reply = await self.context.run(self, _chat)
        self._history.extend([user_msg, {"role": "assistant", "content": reply}])
        return reply

    async def complete(
        self,
        prompt: str,
        *,
        max_tokens: int = 50,
        temperature: float = 0.1,
        stop: list[str] | None = None,
    ) -> str:
        """Raw (non-chat) completion; does not touch the history."""
        self.ensure_live()

        def _complete(llm: Any) -> str:
            response = llm.create_completion(
                prompt=prompt,
                max_tokens=max_tokens,
                temperature=temperature,
                stop=stop or [],
            )
            return response["choices"][0]["text"] or ""

        return await self.context.run(self, _complete)

    def _fit_history(
        self,
        system_prompt: str | None,
        user_msg: dict[str, str],
        max_tokens: int | None,
    ) -> list[dict[str, str]]:
        """Drop the oldest exchanges until the prompt fits the context window."""
        budget = self.context.context_size - (max_tokens or _DEFAULT_REPLY_TOKENS)
        head = [{"role": "system", "content": system_prompt}] if system_prompt else []
        fixed = sum(estimate_tokens(m["content"]) for m in head + [user_msg])

        history = list(self._history)
        while history and fixed + sum(estimate_tokens(m["content"]) for m in history) > budget:
            del history[:2]
        self._history = history
        return head + history + [user_msg]


class InferenceContext:
    """Fixed-capacity execution context created from one ModelHandle."""

    def __init__(self, model: ModelHandle, capacity: int, context_size: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.model = model
        self.capacity = capacity
        self.context_size = context_size
        self.closed = False
        self._live: dict[int, Sequence] = {}
        self._next_id = 0
        self._compute_lock = asyncio.Lock()

    @property
    def sequences_left(self) -> int:
        return 0 if self.closed else self.capacity - len(self._live)

    @property
    def occupancy(self) -> int:
        return len(self._live)

    def get_sequence(self) -> Sequence:
        """Allocate a free lane.

        Raises:
            ResourceExhaustedError: If all lanes are in use.
            SequenceDisposedError: If the context has been closed.
        """
        if self.closed:
            raise SequenceDisposedError("Inference context has been closed")
        if len(self._live) >= self.capacity:
            raise ResourceExhaustedError("No sequences left")
        seq = Sequence(self, self._next_id)
        self._next_id += 1
        self._live[seq.id] = seq
        return seq

    async def run(self, seq: Sequence, fn: Callable[[Any], str]) -> str:
        """Run *fn(llm)* in a worker thread on behalf of *seq*."""
        async with self._compute_lock:
            seq.ensure_live()
            result = await asyncio.to_thread(fn, self.model.llm)
        # Disposal is the only hard stop: a result for a dead lane is dropped.
        seq.ensure_live()
        return result

    def close(self) -> None:
        """Dispose every live sequence and refuse further allocations."""
        for seq in list(self._live.values()):
            seq.dispose()
        self.closed = True

    def _release(self, seq: Sequence) -> None:
        self._live.pop(seq.id, None)


class ModelLifecycle:
    """Owns the single loaded model and its inference context."""

    def __init__(
        self,
        *,
        context_size: int = 2048,
        sequences: int = 2,
        gpu_layers: int = -1,
        loader: Loader = load_llama,
    ) -> None:
        self._context_size = context_size
        self._sequences = sequences
        self._gpu_layers = gpu_layers
        self._loader = loader
        self._path: str | None = None
        self._context: InferenceContext | None = None
        self._init_task: asyncio.Task[InferenceContext] | None = None
        self._reset_listeners: list[Callable[[], None]] = []

    @property
    def path(self) -> str | None:
        return self._path

    @property
    def context(self) -> InferenceContext | None:
        """The ready context, or None while nothing is loaded."""
        return self._context

    def add_reset_listener(self, callback: Callable[[], None]) -> None:
        self._reset_listeners.append(callback)

    async def ensure_model(self, path: str | Path) -> InferenceContext:
        """Return the context for *path*, loading (or reloading) it if needed.

        Raises:
            ModelLoadError: If loading fails. The failed load is forgotten so a
                later call starts a fresh attempt.
        """
        path = str(path)
        if self._path != path:
            if self._path is not None:
                logger.info("Model path changed from {} to {}; resetting backend", self._path, path)
            self._reset()
            self._path = path

        if self._context is not None:
            return self._context

        if self._init_task is None:
            self._init_task = asyncio.create_task(self._load(path))
        task = self._init_task
        try:
            return await asyncio.shield(task)
        except ModelLoadError:
            if self._init_task is task:
                self._init_task = None
            raise

    def unload(self) -> None:
        """Drop the model, its context and every session built on it."""
        self._reset()
        self._path = None

    async def _load(self, path: str) -> InferenceContext:
        logger.info("Loading model {}", path)
        try:
            llm = await asyncio.to_thread(
                self._loader, path, self._context_size, self._gpu_layers
            )
        except Exception as exc:
            logger.error("Model load failed for {}: {}", path, exc)
            raise ModelLoadError(f"Failed to load model '{path}': {exc}") from exc

        context = InferenceContext(
            ModelHandle(path=path, llm=llm), self._sequences, self._context_size
        )
        if self._init_task is not asyncio.current_task():
            # A reset happened while loading.
            context.close()
            raise ModelLoadError(f"Load of '{path}' was superseded by a model reset")

        self._context = context
        logger.info(
            "Context ready: {} sequences, {} tokens", self._sequences, self._context_size
        )
        return context

    def _reset(self) -> None:
        if self._context is not None:
            self._context.close()
        self._context = None
        self._init_task = None
        for callback in self._reset_listeners:
            callback()
