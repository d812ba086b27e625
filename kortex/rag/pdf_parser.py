"""PDF parser for extracting text from uploaded study documents.

Handles:
- Opening PDFs from in-memory bytes
- Page-by-page text extraction
- Mapping malformed input to UnreadableDocumentError
"""
from dataclasses import dataclass
from pathlib import Path
from typing import List

import fitz  # PyMuPDF
import structlog

from kortex.exceptions import UnreadableDocumentError

logger = structlog.get_logger()


@dataclass
class PdfDocument:
    """Parsed PDF with per-page text."""

    file_name: str
    pages: List[str]

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def text(self) -> str:
        """All page text, pages separated by a blank line."""
        return "\n\n".join(self.pages)


class PdfTextExtractor:
    """Text extractor for PDF files backed by PyMuPDF."""

    def __init__(self, max_pages: int = None):
        """Initialize the extractor.

        Args:
            max_pages: Stop after this many pages (None reads the whole file)
        """
        self.max_pages = max_pages

    def parse_bytes(self, file_bytes: bytes, file_name: str = "upload.pdf") -> PdfDocument:
        """Parse PDF bytes into a PdfDocument.

        Args:
            file_bytes: Raw PDF content
            file_name: Name used in logs and error messages

        Returns:
            PdfDocument with the text of each page

        Raises:
            UnreadableDocumentError: If the bytes are not a readable PDF
        """
        if not file_bytes:
            raise UnreadableDocumentError(file_name, "file is empty")

        try:
            with fitz.open(stream=file_bytes, filetype="pdf") as doc:
                if doc.needs_pass:
                    raise UnreadableDocumentError(file_name, "PDF is password protected")

                page_total = len(doc)
                if self.max_pages is not None:
                    page_total = min(page_total, self.max_pages)

                pages = [doc.load_page(i).get_text() for i in range(page_total)]

        except UnreadableDocumentError:
            raise
        except Exception as e:
            logger.error(
                "pdf_parse_failed",
                file_name=file_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise UnreadableDocumentError(file_name, str(e)) from e

        logger.info(
            "pdf_parsed",
            file_name=file_name,
            page_count=len(pages),
            content_length=sum(len(p) for p in pages),
        )

        return PdfDocument(file_name=file_name, pages=pages)

    def parse_file(self, file_path: Path) -> PdfDocument:
        """Parse a PDF file from disk.

        Raises:
            FileNotFoundError: If file doesn't exist
            UnreadableDocumentError: If the file is not a readable PDF
        """
        if not file_path.exists():
            raise FileNotFoundError(f"PDF file not found: {file_path}")

        return self.parse_bytes(file_path.read_bytes(), file_name=file_path.name)

    def extract(self, file_bytes: bytes) -> str:
        """Return the raw text of a PDF (TextExtractor interface)."""
        return self.parse_bytes(file_bytes).text
