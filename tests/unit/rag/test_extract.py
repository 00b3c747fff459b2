"""Tests for text extraction (plain reads and pypdf)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from localpilot.rag.extract import extract_pdf_text, extract_text, read_file


def _mock_reader(page_texts: list[str | None]):
    """Return a mock PdfReader with pages that yield the given texts."""
    pages = []
    for text in page_texts:
        page = MagicMock()
        page.extract_text.return_value = text
        pages.append(page)
    reader = MagicMock()
    reader.pages = pages
    return reader


def test_read_file_replaces_undecodable_bytes(tmp_path):
    f = tmp_path / "a.txt"
    f.write_bytes(b"ok \xff\xfe end")
    assert read_file(f).startswith("ok ")
    assert read_file(f).endswith(" end")


def test_extract_pdf_text_joins_pages_and_skips_empty(tmp_path):
    with patch("localpilot.rag.extract.pypdf") as mock_pypdf:
        mock_pypdf.PdfReader.return_value = _mock_reader(["  Page one.  ", "", None, "Page three."])
        text = extract_pdf_text(tmp_path / "doc.pdf")

    assert text == "Page one.\n\nPage three."


def test_extract_text_dispatches_on_extension(tmp_path):
    code = tmp_path / "main.cpp"
    code.write_text("int main() {}", encoding="utf-8")
    assert extract_text(code) == "int main() {}"

    with patch("localpilot.rag.extract.pypdf") as mock_pypdf:
        mock_pypdf.PdfReader.return_value = _mock_reader(["From PDF."])
        assert extract_text(tmp_path / "Manual.PDF") == "From PDF."
