"""localpilot configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (LOCALPILOT_MODEL, LOCALPILOT_EMBEDDING_MODEL,
                             LOCALPILOT_DATA_DIR, LOCALPILOT_LOG_LEVEL)
  3. Per-project localpilot.yaml
  4. Global ~/.localpilot/config.yaml  (no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from localpilot.catalog import CHAT_MODELS
from localpilot.errors import ConfigError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".localpilot"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "localpilot.yaml"

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret,
# secret, password, passwd, credential(s). Does NOT match max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["model", "embedding", "retrieval", "indexing", "pool", "storage", "logging"]
)

_LOG_LEVELS: frozenset[str] = frozenset(
    ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful coding assistant. When asked for code, always provide "
    "implementation in C++ unless another language is explicitly requested."
)

DEFAULT_EXTENSIONS: tuple[str, ...] = (
    ".cpp", ".h", ".hpp", ".c", ".js", ".jsx", ".json", ".css",
    ".md", ".py", ".txt", ".sh", ".pdf",
)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ModelCfg:
    """Chat model configuration (localpilot.yaml: model:).

    Attributes:
        active: Catalog id of the chat model to load (see localpilot.catalog).
        context_size: Context window of the inference context, in tokens.
        sequences: Number of concurrent lanes the context provides.
        gpu_layers: Layers offloaded to the GPU (-1 = all, 0 = CPU only).
        system_prompt: System prompt given to every named session.
    """

    active: str = "deepseek"
    context_size: int = 2048
    sequences: int = 2
    gpu_layers: int = -1
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (localpilot.yaml: embedding:).

    ``model`` is either a catalog id (a local .gguf file is downloaded into the
    data directory) or a LiteLLM model string such as ``ollama/nomic-embed-text``.
    """

    model: str = "nomic"
    query_prefix: str = "search_query: "
    document_prefix: str = "search_document: "


@dataclass
class RetrievalCfg:
    """Prompt augmentation configuration (localpilot.yaml: retrieval:)."""

    top_k: int = 3
    max_context_chars: int = 4_000
    min_prompt_chars: int = 10


@dataclass
class IndexingCfg:
    """Retrieval index ingestion configuration (localpilot.yaml: indexing:)."""

    chunk_size: int = 1_000
    max_file_bytes: int = 50 * 1024
    file_delay: float = 0.25
    failure_threshold: int = 3
    checkpoint_every: int = 10
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))


@dataclass
class PoolCfg:
    """Sequence acquisition retry policy (localpilot.yaml: pool:)."""

    max_retries: int = 3
    backoff_base: float = 0.2


@dataclass
class StorageCfg:
    """Where models, the vector index and its state file live."""

    data_dir: str = str(_GLOBAL_CONFIG_DIR)

    @property
    def root(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def index_dir(self) -> Path:
        return self.root / "rag_index"

    @property
    def state_file(self) -> Path:
        return self.root / "rag_state.json"


@dataclass
class LoggingCfg:
    level: str = "INFO"
    file: str | None = None


@dataclass
class LocalPilotConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    model: ModelCfg = field(default_factory=ModelCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    indexing: IndexingCfg = field(default_factory=IndexingCfg)
    pool: PoolCfg = field(default_factory=PoolCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: LocalPilotConfig) -> None:
    if cfg.model.active not in CHAT_MODELS:
        raise ConfigError(
            f"model.active must be one of {sorted(CHAT_MODELS)}, got '{cfg.model.active}'"
        )
    if cfg.model.sequences < 1:
        raise ConfigError(f"model.sequences must be >= 1, got {cfg.model.sequences}")
    if cfg.model.context_size < 256:
        raise ConfigError(
            f"model.context_size must be >= 256, got {cfg.model.context_size}"
        )
    if cfg.indexing.chunk_size < 1:
        raise ConfigError(f"indexing.chunk_size must be >= 1, got {cfg.indexing.chunk_size}")
    if cfg.indexing.failure_threshold < 1:
        raise ConfigError(
            f"indexing.failure_threshold must be >= 1, got {cfg.indexing.failure_threshold}"
        )
    if cfg.logging.level.upper() not in _LOG_LEVELS:
        raise ConfigError(
            f"logging.level must be one of {sorted(_LOG_LEVELS)}, got '{cfg.logging.level}'"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _normalise_extensions(raw: list[Any]) -> list[str]:
    exts = []
    for e in raw:
        e = str(e).lower()
        exts.append(e if e.startswith(".") else f".{e}")
    return exts


def _cfg_from_dict(data: dict[str, Any]) -> LocalPilotConfig:
    """Build a *LocalPilotConfig* from a merged raw YAML dict."""
    cfg = LocalPilotConfig()

    if "model" in data:
        m = data["model"]
        cfg.model = ModelCfg(
            active=str(m.get("active", cfg.model.active)),
            context_size=int(m.get("context_size", cfg.model.context_size)),
            sequences=int(m.get("sequences", cfg.model.sequences)),
            gpu_layers=int(m.get("gpu_layers", cfg.model.gpu_layers)),
            system_prompt=str(m.get("system_prompt", cfg.model.system_prompt)),
        )

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            query_prefix=str(e.get("query_prefix", cfg.embedding.query_prefix)),
            document_prefix=str(e.get("document_prefix", cfg.embedding.document_prefix)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            max_context_chars=int(
                r.get("max_context_chars", cfg.retrieval.max_context_chars)
            ),
            min_prompt_chars=int(r.get("min_prompt_chars", cfg.retrieval.min_prompt_chars)),
        )

    if "indexing" in data:
        i = data["indexing"]
        cfg.indexing = IndexingCfg(
            chunk_size=int(i.get("chunk_size", cfg.indexing.chunk_size)),
            max_file_bytes=int(i.get("max_file_bytes", cfg.indexing.max_file_bytes)),
            file_delay=float(i.get("file_delay", cfg.indexing.file_delay)),
            failure_threshold=int(
                i.get("failure_threshold", cfg.indexing.failure_threshold)
            ),
            checkpoint_every=int(i.get("checkpoint_every", cfg.indexing.checkpoint_every)),
            extensions=_normalise_extensions(i.get("extensions", cfg.indexing.extensions)),
        )

    if "pool" in data:
        p = data["pool"]
        cfg.pool = PoolCfg(
            max_retries=int(p.get("max_retries", cfg.pool.max_retries)),
            backoff_base=float(p.get("backoff_base", cfg.pool.backoff_base)),
        )

    if "storage" in data:
        s = data["storage"]
        cfg.storage = StorageCfg(data_dir=str(s.get("data_dir", cfg.storage.data_dir)))

    if "logging" in data:
        lg = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)).upper(),
            file=lg.get("file") or cfg.logging.file,
        )

    return cfg


def _apply_env_overrides(cfg: LocalPilotConfig) -> LocalPilotConfig:
    """Apply LOCALPILOT_* environment variable overrides."""
    if model := os.environ.get("LOCALPILOT_MODEL"):
        cfg.model.active = model
    if model := os.environ.get("LOCALPILOT_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if data_dir := os.environ.get("LOCALPILOT_DATA_DIR"):
        cfg.storage.data_dir = data_dir
    if level := os.environ.get("LOCALPILOT_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> LocalPilotConfig:
    """Load and return a merged *LocalPilotConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *localpilot.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.localpilot/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# localpilot global configuration — model defaults only.\n"
            "# NEVER store API keys here — use environment variables.\n"
            "\n"
            "model:\n"
            "  active: deepseek\n"
            "  context_size: 2048\n"
            "  sequences: 2\n"
            "\n"
            "embedding:\n"
            "  model: nomic\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target


def save_active_model(
    model_id: str,
    global_config_path: Path | None = None,
) -> Path:
    """Persist ``model.active`` in the global config, creating it if needed."""
    target = ensure_global_config(global_config_path)
    data = yaml.safe_load(target.read_text(encoding="utf-8")) or {}
    model = data.get("model")
    if not isinstance(model, dict):
        model = data["model"] = {}
    model["active"] = model_id
    target.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return target
