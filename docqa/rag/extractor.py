"""Text extraction from uploaded documents (plain text, PDF, Word).

Parsing runs in a worker thread so the event loop keeps serving requests.
"""
import asyncio
import io
from typing import Callable, Dict

import structlog
from docx import Document
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from docqa.errors import ExtractionError, UnsupportedFormatError

logger = structlog.get_logger()

PDF = "application/pdf"
PLAIN_TEXT = "text/plain"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MSWORD = "application/msword"


def _extract_plain_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _extract_pdf(data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, ValueError, KeyError, TypeError) as e:
        logger.error("pdf_parse_failed", error=str(e))
        raise ExtractionError("Failed to extract text from PDF") from e
    return "\n".join(pages)


def _extract_docx(data: bytes) -> str:
    try:
        document = Document(io.BytesIO(data))
    except Exception as e:
        # python-docx surfaces zip, XML and package errors with no common base
        logger.error("docx_parse_failed", error=str(e), error_type=type(e).__name__)
        raise ExtractionError("Failed to extract text from Word document") from e
    return "\n".join(paragraph.text for paragraph in document.paragraphs)


def _extract_legacy_word(data: bytes) -> str:
    # Binary .doc files are accepted at upload but python-docx only reads OOXML;
    # a .doc that is really .docx (common with renamed files) still works.
    try:
        return _extract_docx(data)
    except ExtractionError as e:
        raise ExtractionError(
            "Legacy Word (.doc) files are not supported; please convert to .docx"
        ) from e


class TextExtractor:
    """Dispatches raw document bytes to a parser by MIME type."""

    def __init__(self):
        self._parsers: Dict[str, Callable[[bytes], str]] = {
            PLAIN_TEXT: _extract_plain_text,
            PDF: _extract_pdf,
            DOCX: _extract_docx,
            MSWORD: _extract_legacy_word,
        }

    @property
    def supported_types(self):
        return sorted(self._parsers)

    async def extract(self, data: bytes, mime_type: str) -> str:
        """Extract plain text from document bytes.

        Args:
            data: Raw file contents
            mime_type: Declared MIME type of the file

        Returns:
            Extracted text (may be empty; callers decide whether that is an error)

        Raises:
            UnsupportedFormatError: If there is no parser for the MIME type
            ExtractionError: If the parser fails
        """
        parser = self._parsers.get(mime_type)
        if parser is None:
            raise UnsupportedFormatError(f"Unsupported file type: {mime_type}")

        text = await asyncio.to_thread(parser, data)

        logger.info(
            "text_extracted",
            mime_type=mime_type,
            byte_count=len(data),
            text_length=len(text),
        )
        return text
