"""Persisted set of fully indexed file paths (``rag_state.json``)."""

from __future__ import annotations

import json
import os
from pathlib import Path

from loguru import logger


class IndexedFileSet:
    """Insertion-ordered, grow-only set of paths whose chunks are all stored.

    On disk: ``{"indexedFiles": [path, ...]}``. A missing file loads as empty;
    an unreadable one loads as empty with a warning.
    """

    def __init__(self, path: Path, files: list[str] | None = None) -> None:
        self.path = Path(path)
        self._files: dict[str, None] = dict.fromkeys(files or [])

    @classmethod
    def load(cls, path: Path | str) -> IndexedFileSet:
        path = Path(path)
        if not path.exists():
            return cls(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            files = data.get("indexedFiles", [])
            if not isinstance(files, list):
                raise ValueError("'indexedFiles' is not a list")
        except (OSError, ValueError, AttributeError) as exc:
            logger.warning("Ignoring unreadable index state {}: {}", path, exc)
            return cls(path)
        return cls(path, [str(f) for f in files])

    def __contains__(self, item: object) -> bool:
        return item in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self):
        return iter(self._files)

    def add(self, file_path: str) -> None:
        self._files[file_path] = None

    def clear(self) -> None:
        self._files.clear()

    def save(self) -> None:
        """Write atomically: temp file in the same directory, then replace."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps({"indexedFiles": list(self._files)}, indent=2), encoding="utf-8"
        )
        os.replace(tmp, self.path)
