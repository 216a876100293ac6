"""Format dispatch, truncation and shared metadata for parsed documents."""
from __future__ import annotations

import logging
import time
from typing import Optional

from ..errors import CourseAssistantError, ExtractionError
from .extractors import DocxExtractor, ImageExtractor, PDFExtractor, TextExtractor
from .format_detection import DocumentFormat, DocumentFormatDetector
from .language import LanguageDetector
from .models import ParsedDocument, ParserOptions

LOGGER = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[Text truncated due to length...]"


def truncate_text(text: str, max_length: int) -> tuple[str, bool]:
    """Cut ``text`` to ``max_length`` characters and append the marker when cut."""

    if len(text) <= max_length:
        return text, False
    return text[:max_length] + TRUNCATION_MARKER, True


def count_words(text: str) -> int:
    return len(text.split())


class DocumentParser:
    """Turns raw upload bytes into plain text plus metadata."""

    def __init__(
        self,
        *,
        pdf_extractor: Optional[PDFExtractor] = None,
        docx_extractor: Optional[DocxExtractor] = None,
        image_extractor: Optional[ImageExtractor] = None,
        text_extractor: Optional[TextExtractor] = None,
        language_detector: Optional[LanguageDetector] = None,
    ) -> None:
        self.pdf_extractor = pdf_extractor or PDFExtractor()
        self.docx_extractor = docx_extractor or DocxExtractor()
        self.image_extractor = image_extractor or ImageExtractor()
        self.text_extractor = text_extractor or TextExtractor()
        self.language_detector = language_detector or LanguageDetector()

    def parse(
        self, data: bytes, mime_type: str, options: Optional[ParserOptions] = None
    ) -> ParsedDocument:
        options = options or ParserOptions()
        if options.max_text_length <= 0:
            raise ValueError("max_text_length must be positive")

        document_format = DocumentFormatDetector.detect(mime_type)
        started = time.perf_counter()
        try:
            extracted = self._extract(document_format, data, options)
        except CourseAssistantError:
            raise
        except Exception as error:
            LOGGER.exception("Unexpected %s extraction failure", document_format.value)
            raise ExtractionError(f"Failed to parse document: {error}", cause=error)

        text, truncated = truncate_text(extracted.text, options.max_text_length)
        metadata = dict(extracted.metadata)
        metadata.setdefault("processing_method", f"{document_format.value}-extract")
        metadata.update(
            {
                "format": document_format.value,
                "mime_type": DocumentFormatDetector.normalise_mime(mime_type),
                "word_count": count_words(text),
                "character_count": len(text),
                "truncated": truncated,
            }
        )
        if metadata["processing_method"] != "image-skipped":
            metadata["language"] = self.language_detector.detect(text)
        metadata["processing_time_ms"] = int((time.perf_counter() - started) * 1000)

        if truncated:
            LOGGER.info(
                "Truncated %s text from %d to %d characters",
                document_format.value,
                len(extracted.text),
                options.max_text_length,
            )
        return ParsedDocument(text=text, metadata=metadata)

    def _extract(
        self, document_format: DocumentFormat, data: bytes, options: ParserOptions
    ) -> ParsedDocument:
        if document_format is DocumentFormat.PDF:
            return self.pdf_extractor.extract(data)
        if document_format is DocumentFormat.DOCX:
            return self.docx_extractor.extract(data)
        if document_format is DocumentFormat.IMAGE:
            return self.image_extractor.extract(data, options)
        return self.text_extractor.extract(data)
