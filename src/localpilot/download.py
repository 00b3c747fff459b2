"""Streaming model downloads with size verification and progress reporting.

- Allowed URL schemes: https:// and http:// only.
- Data is streamed into ``<dest>.part`` and renamed into place only after the
  byte count matches Content-Length (or the catalog's expected size).
- Any failure removes the partial file and raises DownloadError.
"""

from __future__ import annotations

import os
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable
from pathlib import Path

from loguru import logger

from localpilot.errors import DownloadError

# (percent, message)
DownloadProgress = Callable[[float, str], None]

_USER_AGENT = "localpilot/0.1"
_TIMEOUT = 30  # seconds, per socket operation
_CHUNK_BYTES = 1024 * 1024
_ALLOWED_SCHEMES = {"https", "http"}


def is_complete(dest: Path, expected_size: int | None) -> bool:
    """True if *dest* exists and matches *expected_size* (when one is known)."""
    if not dest.is_file():
        return False
    return expected_size is None or dest.stat().st_size == expected_size


def download_model(
    url: str,
    dest: Path | str,
    *,
    expected_size: int | None = None,
    on_progress: DownloadProgress | None = None,
    display_name: str | None = None,
) -> Path:
    """Download *url* to *dest* unless a verified copy is already present.

    Raises:
        DownloadError: On network failure, HTTP error or size mismatch.
    """
    dest = Path(dest)
    name = display_name or dest.name

    if dest.exists():
        if is_complete(dest, expected_size):
            logger.debug("Model already present: {}", dest)
            return dest
        logger.warning(
            "Model file {} is {} bytes, expected {}; re-downloading",
            dest,
            dest.stat().st_size,
            expected_size,
        )
        dest.unlink()

    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise DownloadError(
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
        )

    dest.parent.mkdir(parents=True, exist_ok=True)
    part = dest.with_name(dest.name + ".part")
    logger.info("Downloading {} from {}", name, url)
    try:
        _stream(url, part, expected_size, name, on_progress)
        os.replace(part, dest)
    except OSError as exc:
        part.unlink(missing_ok=True)
        raise DownloadError(f"Failed to download {name}: {exc}") from exc
    except BaseException:
        part.unlink(missing_ok=True)
        raise

    logger.info("Downloaded {} ({} bytes)", name, dest.stat().st_size)
    return dest


def _stream(
    url: str,
    part: Path,
    expected_size: int | None,
    name: str,
    on_progress: DownloadProgress | None,
) -> None:
    request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    try:
        response = urllib.request.urlopen(request, timeout=_TIMEOUT)
    except urllib.error.URLError as exc:
        raise DownloadError(f"Failed to fetch '{url}': {exc}") from exc

    with response:
        length = response.headers.get("Content-Length")
        total = int(length) if length else expected_size
        received = 0
        with part.open("wb") as fh:
            while True:
                block = response.read(_CHUNK_BYTES)
                if not block:
                    break
                fh.write(block)
                received += len(block)
                if on_progress is not None and total:
                    percent = round(min(100.0, received / total * 100), 2)
                    on_progress(percent, f"Downloading {name}...")

    if total is not None and received != total:
        raise DownloadError(
            f"Size mismatch for {name}: received {received} bytes, expected {total}"
        )
    if expected_size is not None and received != expected_size:
        raise DownloadError(
            f"Size mismatch for {name}: received {received} bytes, catalog says {expected_size}"
        )
