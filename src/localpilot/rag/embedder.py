"""Embedding backends for the retrieval index.

Two backends, selected by the model string:
  - a path ending in ``.gguf``  → local llama-cpp model in embedding mode
  - anything else              → LiteLLM model string (``ollama/nomic-embed-text``,
                                 ``openai/text-embedding-3-small``, ...)

Queries and documents are embedded with distinct textual prefixes, as required
by nomic-embed style models.
"""

from __future__ import annotations

import asyncio
import threading
from enum import Enum
from pathlib import Path
from typing import Any

import litellm
from loguru import logger

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True


class Role(str, Enum):
    QUERY = "query"
    DOCUMENT = "document"


def is_local_model(model: str) -> bool:
    return model.lower().endswith(".gguf")


class LlamaEmbeddingBackend:
    """llama-cpp model loaded once, on first use, with ``embedding=True``."""

    def __init__(self, model_path: str, context_size: int = 2048) -> None:
        self.model_path = model_path
        self._context_size = context_size
        self._llm: Any = None
        self._lock = threading.Lock()

    def _model(self) -> Any:
        if self._llm is None:
            if not Path(self.model_path).is_file():
                raise FileNotFoundError(f"Embedding model not found: {self.model_path}")
            from llama_cpp import Llama

            logger.info("Loading embedding model {}", self.model_path)
            self._llm = Llama(
                model_path=self.model_path,
                embedding=True,
                n_ctx=self._context_size,
                verbose=False,
            )
        return self._llm

    def embed(self, text: str) -> list[float]:
        with self._lock:
            vector = self._model().embed(text)
        if vector and isinstance(vector[0], list):
            # Un-pooled model: one vector per token. Mean-pool them.
            n = len(vector)
            vector = [sum(col) / n for col in zip(*vector)]
        return [float(x) for x in vector]

    def close(self) -> None:
        with self._lock:
            self._llm = None


class LiteLLMEmbeddingBackend:
    """Embeddings through ``litellm.embedding()`` with LiteLLM's own retry."""

    def __init__(self, model: str, num_retries: int = 3) -> None:
        self.model = model
        self._num_retries = num_retries

    def embed(self, text: str) -> list[float]:
        response = litellm.embedding(
            model=self.model,
            input=[text],
            num_retries=self._num_retries,
        )
        return response.data[0]["embedding"]

    def close(self) -> None:
        pass


class Embedder:
    """Role-aware embedding front end; blocking work runs in a worker thread."""

    def __init__(
        self,
        model: str,
        *,
        query_prefix: str = "search_query: ",
        document_prefix: str = "search_document: ",
        backend: Any = None,
    ) -> None:
        self.model = model
        self._prefixes = {Role.QUERY: query_prefix, Role.DOCUMENT: document_prefix}
        if backend is None:
            backend = (
                LlamaEmbeddingBackend(model)
                if is_local_model(model)
                else LiteLLMEmbeddingBackend(model)
            )
        self._backend = backend

    def prepare(self, text: str, role: Role | str) -> str:
        return f"{self._prefixes[Role(role)]}{text}"

    async def embed(self, text: str, role: Role | str = Role.DOCUMENT) -> list[float]:
        """Embed *text* for *role*.

        Raises:
            Whatever the backend raises (missing model, provider errors, ...).
        """
        return await asyncio.to_thread(self._backend.embed, self.prepare(text, role))

    def close(self) -> None:
        self._backend.close()
