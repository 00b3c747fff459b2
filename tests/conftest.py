"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import time
from pathlib import Path

import pytest

from localpilot.config import LocalPilotConfig, StorageCfg
from localpilot.db.vector_index import VectorIndex
from localpilot.rag.embedder import Embedder


class FakeLlama:
    """Stands in for llama_cpp.Llama; records every call."""

    def __init__(self, reply="ok", completion="done();", error: Exception | None = None):
        self.reply = reply
        self.completion = completion
        self.error = error
        self.chat_calls: list[dict] = []
        self.completion_calls: list[dict] = []

    def create_chat_completion(self, messages, max_tokens=None, temperature=0.7):
        self.chat_calls.append(
            {"messages": messages, "max_tokens": max_tokens, "temperature": temperature}
        )
        if self.error is not None:
            raise self.error
        content = self.reply(messages) if callable(self.reply) else self.reply
        return {"choices": [{"message": {"role": "assistant", "content": content}}]}

    def create_completion(self, prompt, max_tokens=16, temperature=0.8, stop=None):
        self.completion_calls.append(
            {"prompt": prompt, "max_tokens": max_tokens, "temperature": temperature, "stop": stop}
        )
        if self.error is not None:
            raise self.error
        return {"choices": [{"text": self.completion}]}


class FakeLoader:
    """Model loader that returns one shared FakeLlama; can fail or be slow."""

    def __init__(self, llm: FakeLlama | None = None, fail_times: int = 0, delay: float = 0.0):
        self.llm = llm or FakeLlama()
        self.fail_times = fail_times
        self.delay = delay
        self.calls: list[tuple[str, int, int]] = []

    def __call__(self, model_path: str, context_size: int, gpu_layers: int) -> FakeLlama:
        self.calls.append((model_path, context_size, gpu_layers))
        if self.delay:
            time.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("weights are corrupt")
        return self.llm


class FakeEmbeddingBackend:
    """Deterministic 8-dim embeddings derived from the text hash."""

    dims = 8

    def __init__(self, fail_on: tuple[str, ...] = ()) -> None:
        self.fail_on = fail_on
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise RuntimeError(f"embedding failed for {text[:30]!r}")
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 + 0.01 for b in digest[: self.dims]]

    def close(self) -> None:
        pass


class FakeDownloader:
    """Writes a placeholder file instead of fetching anything."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.urls: list[str] = []

    def __call__(self, url, dest, *, expected_size=None, on_progress=None, display_name=None):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(b"gguf")
        if on_progress is not None:
            on_progress(100.0, f"Downloading {display_name}...")
        return dest


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep LOCALPILOT_* variables from the developer's shell out of tests."""
    for var in (
        "LOCALPILOT_MODEL",
        "LOCALPILOT_EMBEDDING_MODEL",
        "LOCALPILOT_DATA_DIR",
        "LOCALPILOT_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def fake_llm() -> FakeLlama:
    return FakeLlama()


@pytest.fixture
def fake_loader(fake_llm) -> FakeLoader:
    return FakeLoader(fake_llm)


@pytest.fixture
def embedding_backend() -> FakeEmbeddingBackend:
    return FakeEmbeddingBackend()


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def embedder(embedding_backend) -> Embedder:
    return Embedder("fake/embedding-model", backend=embedding_backend)


@pytest.fixture
def config(tmp_path: Path) -> LocalPilotConfig:
    """Defaults with all storage under tmp_path and no pause between files."""
    cfg = LocalPilotConfig(storage=StorageCfg(data_dir=str(tmp_path / "data")))
    cfg.indexing.file_delay = 0.0
    return cfg


@pytest.fixture
def vector_index(tmp_path: Path):
    """Opened VectorIndex in tmp_path, closed after the test."""
    index = VectorIndex.open(tmp_path / "rag_index")
    yield index
    index.close()
