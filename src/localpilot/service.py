"""InferenceService: the one process-wide owner of model, sessions and index.

The host application (or the CLI) talks only to this object. Library code
below it raises typed exceptions; this layer converts them at the edge:

  - ask() never raises and returns a human-readable string on failure.
  - initialize() reports failures as ``InitResult(ok=False, error=...)``.
  - complete_inline() returns None on failure; inline_prompt() returns a
    ``// Error ...`` comment.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from localpilot.catalog import CHAT_MODELS, EMBEDDING_MODELS, ModelSpec, get_chat_model
from localpilot.config import LocalPilotConfig
from localpilot.download import DownloadProgress, download_model, is_complete
from localpilot.errors import IndexNotReadyError, LocalPilotError, ModelLoadError
from localpilot.inference.inline import FIM_STOP, clean_code_response, fim_prompt, inline_messages
from localpilot.inference.model import Loader, ModelLifecycle, load_llama
from localpilot.inference.pool import SessionPool
from localpilot.inference.retry import RetryPolicy
from localpilot.rag.embedder import Embedder
from localpilot.rag.gate import AugmentationGate, RetrievedChunk
from localpilot.rag.index import IndexStatus, ProgressCallback, RetrievalIndex

NOT_INITIALIZED = "AI is not initialized. Please wait."
EMPTY_RESPONSE = "(Empty response from AI)"

Downloader = Callable[..., Path]


@dataclass(frozen=True)
class InitResult:
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class ModelInfo:
    spec: ModelSpec
    path: Path
    downloaded: bool
    active: bool


class InferenceService:
    """Facade over ModelLifecycle, SessionPool and RetrievalIndex.

    Args:
        config: Loaded configuration.
        loader: Chat-model loader (tests inject a fake).
        embedder: Embedding front end; built from ``config.embedding`` if None.
        downloader: Model download function (tests inject a fake).
    """

    def __init__(
        self,
        config: LocalPilotConfig,
        *,
        loader: Loader = load_llama,
        embedder: Embedder | None = None,
        downloader: Downloader = download_model,
    ) -> None:
        self.config = config
        self.data_dir = config.storage.root
        self.active_model_id = config.model.active
        self.lifecycle = ModelLifecycle(
            context_size=config.model.context_size,
            sequences=config.model.sequences,
            gpu_layers=config.model.gpu_layers,
            loader=loader,
        )
        self.pool = SessionPool(
            self.lifecycle,
            system_prompt=config.model.system_prompt,
            retry_policy=RetryPolicy(config.pool.max_retries, config.pool.backoff_base),
        )
        self.gate = AugmentationGate(
            self._retrieve,
            top_k=config.retrieval.top_k,
            max_context_chars=config.retrieval.max_context_chars,
            min_prompt_chars=config.retrieval.min_prompt_chars,
        )
        self._embedder = embedder
        self._downloader = downloader
        self.index: RetrievalIndex | None = None

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def active_model(self) -> ModelSpec:
        return get_chat_model(self.active_model_id)

    @property
    def model_path(self) -> Path:
        return self.active_model.path_in(self.data_dir)

    @property
    def embedding_spec(self) -> ModelSpec | None:
        """Catalog entry for the embedding model, or None for a LiteLLM string."""
        return EMBEDDING_MODELS.get(self.config.embedding.model)

    def _embedding_ref(self) -> str:
        spec = self.embedding_spec
        if spec is not None:
            return str(spec.path_in(self.data_dir))
        return self.config.embedding.model

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(
        self, session_id: str, on_download_progress: DownloadProgress | None = None
    ) -> InitResult:
        """Download (if needed) and load the active model, then open *session_id*.

        The retrieval index is initialised best-effort afterwards; its
        failure does not fail initialization.
        """
        try:
            spec = self.active_model
            path = await self._ensure_downloaded(spec, on_download_progress)
            await self.pool.acquire(session_id, path, create_if_missing=True)
        except (KeyError, LocalPilotError) as exc:
            message = exc.args[0] if isinstance(exc, KeyError) else str(exc)
            logger.error("AI initialization failed: {}", message)
            return InitResult(ok=False, error=message)

        try:
            await self.init_rag(download=True, on_download_progress=on_download_progress)
        except Exception as exc:
            logger.warning("Retrieval index unavailable: {}", exc)
        return InitResult(ok=True)

    async def _ensure_downloaded(
        self, spec: ModelSpec, on_progress: DownloadProgress | None
    ) -> Path:
        return await asyncio.to_thread(
            self._downloader,
            spec.url,
            spec.path_in(self.data_dir),
            expected_size=spec.expected_size,
            on_progress=on_progress,
            display_name=spec.name,
        )

    async def init_rag(
        self,
        *,
        download: bool = False,
        on_download_progress: DownloadProgress | None = None,
    ) -> bool:
        """Make the retrieval index ready. False if the embedding model is missing.

        With ``download=True`` a catalog embedding model is fetched first.
        """
        if self.index is not None and self.index.is_ready:
            return True

        spec = self.embedding_spec
        if spec is not None and self._embedder is None:
            if download:
                await self._ensure_downloaded(spec, on_download_progress)
            elif not spec.path_in(self.data_dir).is_file():
                logger.warning("Embedding model not found: {}", spec.path_in(self.data_dir))
                return False

        if self.index is None:
            embedder = self._embedder or Embedder(
                self._embedding_ref(),
                query_prefix=self.config.embedding.query_prefix,
                document_prefix=self.config.embedding.document_prefix,
            )
            indexing = self.config.indexing
            self.index = RetrievalIndex(
                embedder,
                storage_dir=self.config.storage.index_dir,
                state_file=self.config.storage.state_file,
                chunk_size=indexing.chunk_size,
                max_file_bytes=indexing.max_file_bytes,
                file_delay=indexing.file_delay,
                failure_threshold=indexing.failure_threshold,
                checkpoint_every=indexing.checkpoint_every,
                extensions=indexing.extensions,
            )
        await self.index.init()
        return True

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def ask(self, session_id: str, prompt: str) -> str:
        """Answer *prompt* in *session_id*. Never raises.

        The active model is reloaded on demand after an unload; only a missing
        weights file or a failed load reports the not-initialized message.
        """
        try:
            path = self.model_path
        except KeyError as exc:
            logger.error("No usable chat model: {}", exc)
            return NOT_INITIALIZED
        if not path.is_file():
            return NOT_INITIALIZED
        try:
            augmented = await self.gate.augment(session_id, prompt)
            reply = await self.pool.ask(session_id, augmented, path)
        except ModelLoadError as exc:
            logger.error("AI model could not be loaded for session '{}': {}", session_id, exc)
            return NOT_INITIALIZED
        except Exception as exc:
            logger.error("AI request failed for session '{}': {}", session_id, exc)
            return f"Error: {exc}"
        return reply or EMPTY_RESPONSE

    def destroy_session(self, session_id: str) -> bool:
        return self.pool.destroy(session_id)

    async def complete_inline(self, text_with_cursor: str) -> str | None:
        """Fill-in-the-middle completion at ``<CURSOR>``; None on any failure."""
        context = self.lifecycle.context
        if context is None:
            return None
        try:
            async with self.pool.ephemeral(context) as sequence:
                text = await sequence.complete(
                    fim_prompt(text_with_cursor),
                    max_tokens=50,
                    temperature=0.1,
                    stop=FIM_STOP,
                )
        except Exception as exc:
            logger.warning("Autocomplete failed: {}", exc)
            return None
        return text.strip()

    async def inline_prompt(self, code: str, prompt: str, line_number: int) -> str:
        """Generate code for *prompt* at *line_number*; errors come back as comments."""
        try:
            context = await self.lifecycle.ensure_model(self.model_path)
        except (KeyError, LocalPilotError) as exc:
            logger.error("Inline prompt could not load the model: {}", exc)
            return f"// Error: AI initialization failed: {exc}"

        system, user = inline_messages(code, prompt, line_number)
        logger.info("Inline prompt for line {}: {!r}", line_number, prompt)
        try:
            async with self.pool.ephemeral(context) as sequence:
                response = await sequence.prompt(
                    user, system_prompt=system, max_tokens=1024, temperature=0.2
                )
        except Exception as exc:
            logger.error("Inline prompt failed: {}", exc)
            return f"// Error generating code: {exc}"
        return clean_code_response(response)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def _retrieve(self, text: str, k: int) -> list[RetrievedChunk]:
        if self.index is None or not self.index.is_ready:
            return []
        return await self.index.query(text, k)

    async def index_project(
        self, files: Iterable[str | Path], on_progress: ProgressCallback | None = None
    ) -> bool:
        """Index *files*. False if the index is unavailable, busy or the batch aborted."""
        if not await self.init_rag() or self.index is None:
            return False
        report = await self.index.index_batch(files, on_progress)
        return report.ok

    async def index_directory(
        self, root: str | Path, on_progress: ProgressCallback | None = None
    ) -> bool:
        if not await self.init_rag() or self.index is None:
            return False
        report = await self.index.index_directory(root, on_progress)
        return report.ok

    async def query(self, text: str, k: int = 3) -> list[RetrievedChunk]:
        """Similarity search over the index.

        Raises:
            IndexNotReadyError: If the embedding model is missing.
        """
        if not await self.init_rag() or self.index is None:
            raise IndexNotReadyError("Retrieval index is unavailable: embedding model missing")
        return await self.index.query(text, k)

    async def index_status(self) -> IndexStatus | None:
        if self.index is None:
            return None
        return await self.index.status()

    # ------------------------------------------------------------------
    # Model management
    # ------------------------------------------------------------------

    def list_models(self) -> list[ModelInfo]:
        infos = []
        for spec in (*CHAT_MODELS.values(), *EMBEDDING_MODELS.values()):
            path = spec.path_in(self.data_dir)
            infos.append(
                ModelInfo(
                    spec=spec,
                    path=path,
                    downloaded=is_complete(path, spec.expected_size),
                    active=spec.id in (self.active_model_id, self.config.embedding.model),
                )
            )
        return infos

    def check_model(self) -> bool:
        """True if the active chat model (and catalog embedding model) are present."""
        spec = CHAT_MODELS.get(self.active_model_id)
        if spec is None or not is_complete(spec.path_in(self.data_dir), spec.expected_size):
            return False
        embedding = self.embedding_spec
        return embedding is None or embedding.path_in(self.data_dir).is_file()

    def set_active_model(self, model_id: str) -> bool:
        """Select the chat model used by the next initialize(). False if unknown."""
        if model_id not in CHAT_MODELS:
            return False
        self.active_model_id = model_id
        return True

    def delete_model(self, model_id: str | None = None) -> bool:
        """Delete one model file (or all of them) and reset the AI state."""
        if model_id is None:
            specs = [*CHAT_MODELS.values(), *EMBEDDING_MODELS.values()]
        else:
            spec = CHAT_MODELS.get(model_id) or EMBEDDING_MODELS.get(model_id)
            specs = [spec] if spec is not None else []

        self.lifecycle.unload()
        if self.index is not None and any(s.kind == "embedding" for s in specs):
            self.index.close()
            self.index = None
        try:
            for spec in specs:
                path = spec.path_in(self.data_dir)
                if path.exists():
                    path.unlink()
                    logger.info("Deleted model file {}", path)
        except OSError as exc:
            logger.error("Failed to delete model: {}", exc)
            return False
        return True

    def shutdown(self) -> None:
        self.lifecycle.unload()
        if self.index is not None:
            self.index.close()
            self.index = None
        logger.info("Inference service shut down")
