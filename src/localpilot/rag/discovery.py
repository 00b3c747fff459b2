"""Project file discovery for ``index_directory``."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

IGNORED_DIRS: frozenset[str] = frozenset(
    ["node_modules", ".git", "dist", "build", ".next", ".venv"]
)


def list_directory(root: str | Path, extensions: Iterable[str]) -> list[Path]:
    """Return every file under *root* with an allowed extension, sorted.

    Directories named in IGNORED_DIRS are pruned at any depth. Symlinked
    directories are not followed.
    """
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")

    allowed = {e.lower() for e in extensions}
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS)
        for name in sorted(filenames):
            if Path(name).suffix.lower() in allowed:
                found.append(Path(dirpath) / name)
    return found
