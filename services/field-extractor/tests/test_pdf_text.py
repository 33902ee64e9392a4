"""Tests for PDF text extraction."""

import io
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from pypdf import PdfWriter

sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import TextExtractionError
from pdf_text import extract_text, extract_text_pages


def _page(text: str | None) -> MagicMock:
    page = MagicMock()
    page.extract_text.return_value = text
    return page


def _reader(*texts: str | None) -> MagicMock:
    reader = MagicMock()
    reader.pages = [_page(t) for t in texts]
    return reader


@pytest.fixture
def blank_pdf_bytes() -> bytes:
    """A valid one-page PDF with no text layer, like a scan."""
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


class TestExtractTextPages:
    def test_whitespace_normalised(self):
        with patch("pdf_text.PdfReader", return_value=_reader("Invoice   No:\n INV-1  ")):
            assert extract_text_pages(b"%PDF") == ["Invoice No: INV-1"]

    def test_empty_pages_skipped(self):
        with patch("pdf_text.PdfReader", return_value=_reader("page one", None, "   ", "page four")):
            assert extract_text_pages(b"%PDF") == ["page one", "page four"]

    def test_max_pages(self):
        with patch("pdf_text.PdfReader", return_value=_reader("one", "two", "three")):
            assert extract_text_pages(b"%PDF", max_pages=2) == ["one", "two"]


class TestExtractText:
    def test_pages_joined(self):
        with patch("pdf_text.PdfReader", return_value=_reader("Invoice No: INV-1", "Total: 267.35")):
            assert extract_text(b"%PDF") == "Invoice No: INV-1\nTotal: 267.35"

    def test_empty_upload(self):
        with pytest.raises(TextExtractionError, match="Empty file uploaded"):
            extract_text(b"")

    def test_image_only_pdf(self, blank_pdf_bytes: bytes):
        with pytest.raises(TextExtractionError, match="No text content found"):
            extract_text(blank_pdf_bytes)

    def test_not_a_pdf(self):
        with pytest.raises(TextExtractionError, match="Failed to extract text"):
            extract_text(b"this is not a pdf file at all")
