"""Text extraction for indexable files: plain reads and PDF via pypdf."""

from __future__ import annotations

from pathlib import Path

import pypdf

PDF_EXTENSIONS = frozenset({".pdf"})


def read_file(path: str | Path) -> str:
    """Read a text/code file, replacing undecodable bytes."""
    return Path(path).read_text(encoding="utf-8", errors="replace")


def extract_pdf_text(path: str | Path) -> str:
    """Extract all page text from the PDF at *path*.

    Pages that yield no text (scanned images, etc.) are silently skipped.
    """
    reader = pypdf.PdfReader(str(path))
    parts: list[str] = []
    for page in reader.pages:
        page_text = page.extract_text() or ""
        stripped = page_text.strip()
        if stripped:
            parts.append(stripped)
    return "\n\n".join(parts)


def extract_text(path: str | Path) -> str:
    """Dispatch on extension: PDFs through pypdf, everything else read as text."""
    if Path(path).suffix.lower() in PDF_EXTENSIONS:
        return extract_pdf_text(path)
    return read_file(path)
