"""PDF text extraction.

Text-layer only: scanned, image-only PDFs have no extractable text and are
reported as an error rather than returned as an empty string.
"""

import io
import logging

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from errors import TextExtractionError

logger = logging.getLogger(__name__)


def extract_text_pages(data: bytes, max_pages: int | None = None) -> list[str]:
    """Return the non-empty, whitespace-normalised text of each page."""
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = reader.pages
        if max_pages is not None:
            pages = pages[:max_pages]

        texts: list[str] = []
        for page in pages:
            text = page.extract_text() or ""
            text = " ".join(text.split())
            if text:
                texts.append(text)
    except (PdfReadError, ValueError) as e:
        raise TextExtractionError(f"Failed to extract text from PDF: {e}") from e

    return texts


def extract_text(data: bytes, max_pages: int | None = None) -> str:
    if not data:
        raise TextExtractionError("Empty file uploaded")

    pages = extract_text_pages(data, max_pages=max_pages)
    if not pages:
        raise TextExtractionError(
            "No text content found in PDF (scanned or image-only documents are not supported)"
        )

    logger.info("Extracted text from %d page(s)", len(pages))
    return "\n".join(pages)
