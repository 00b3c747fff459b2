"""Model catalog: the chat and embedding models localpilot knows how to fetch."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ModelSpec:
    """One downloadable GGUF model.

    ``expected_size`` is the exact byte size of the published file, or None
    when it is not pinned (the download is then verified against the
    server's Content-Length only).
    """

    id: str
    name: str
    url: str
    filename: str
    expected_size: int | None = None
    kind: str = "chat"

    def path_in(self, data_dir: Path) -> Path:
        return Path(data_dir) / self.filename


CHAT_MODELS: dict[str, ModelSpec] = {
    "deepseek": ModelSpec(
        id="deepseek",
        name="DeepSeek Coder 1.3B",
        url=(
            "https://huggingface.co/TheBloke/deepseek-coder-1.3b-instruct-GGUF"
            "/resolve/main/deepseek-coder-1.3b-instruct.Q4_K_M.gguf"
        ),
        filename="deepseek-1.3b.gguf",
        expected_size=873_582_624,
    ),
    "qwen": ModelSpec(
        id="qwen",
        name="Qwen2.5 Coder 1.5B",
        url=(
            "https://huggingface.co/Qwen/Qwen2.5-Coder-1.5B-Instruct-GGUF"
            "/resolve/main/qwen2.5-coder-1.5b-instruct-q4_k_m.gguf"
        ),
        filename="qwen2.5-coder-1.5b-instruct-q4_k_m.gguf",
    ),
}

EMBEDDING_MODELS: dict[str, ModelSpec] = {
    "nomic": ModelSpec(
        id="nomic",
        name="Nomic Embed Text v1.5",
        url=(
            "https://huggingface.co/nomic-ai/nomic-embed-text-v1.5-GGUF"
            "/resolve/main/nomic-embed-text-v1.5.Q4_K_M.gguf"
        ),
        filename="nomic-embed-text-v1.5.Q4_K_M.gguf",
        kind="embedding",
    ),
}

DEFAULT_CHAT_MODEL = "deepseek"


def get_chat_model(model_id: str) -> ModelSpec:
    """Return the chat model *model_id*.

    Raises:
        KeyError: If the id is not in the catalog.
    """
    try:
        return CHAT_MODELS[model_id]
    except KeyError:
        raise KeyError(
            f"Unknown model '{model_id}'. Available: {', '.join(sorted(CHAT_MODELS))}"
        ) from None
