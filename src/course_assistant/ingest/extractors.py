"""Extractors for supported document types."""
from __future__ import annotations

import base64
import io
import logging
from typing import Optional

import pytesseract
from docx import Document as load_docx
from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError
from PyPDF2 import PdfReader

from ..errors import CorruptInputError, ExtractionError
from ..llm.base import CompletionOptions, CompletionProvider
from .models import ParsedDocument, ParserOptions

LOGGER = logging.getLogger(__name__)

IMAGE_PLACEHOLDER_TEXT = (
    "[Image uploaded but OCR/Vision processing is disabled. "
    "Enable it to extract text from images.]"
)

VISION_PROMPT = (
    "Please extract and transcribe all text visible in this image. "
    "If there is no text, provide a detailed description of the image content. "
    "Focus on educational content, diagrams, charts, or any information that "
    "would be useful for studying."
)

MAX_IMAGE_EDGE = 2000


class PDFExtractor:
    """Extract text from PDF documents page by page."""

    def extract(self, data: bytes) -> ParsedDocument:
        try:
            reader = PdfReader(io.BytesIO(data))
            if reader.is_encrypted and not reader.decrypt(""):
                raise CorruptInputError("PDF parsing failed: document is password protected")
            pages = list(reader.pages)
        except CorruptInputError:
            raise
        except Exception as error:  # PyPDF2 surfaces malformed input as many error types
            raise CorruptInputError(f"PDF parsing failed: {error}", cause=error)

        texts: list[str] = []
        for index, page in enumerate(pages, start=1):
            try:
                text = page.extract_text() or ""
            except Exception as error:  # pragma: no cover - depends on page content
                LOGGER.warning("Failed to extract text from PDF page %s: %s", index, error)
                text = ""
            texts.append(text.strip())

        metadata: dict[str, object] = {"page_count": len(pages)}
        info = reader.metadata
        if info:
            if info.title:
                metadata["pdf_title"] = str(info.title)
            if info.author:
                metadata["pdf_author"] = str(info.author)
        return ParsedDocument(text="\n\n".join(text for text in texts if text), metadata=metadata)


class DocxExtractor:
    """Extract text from Microsoft Word documents."""

    def extract(self, data: bytes) -> ParsedDocument:
        try:
            document = load_docx(io.BytesIO(data))
        except Exception as error:  # python-docx raises zip, XML and package errors
            raise CorruptInputError(f"DOCX parsing failed: {error}", cause=error)

        paragraphs = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    paragraphs.append(" | ".join(cells))
        return ParsedDocument(
            text="\n\n".join(paragraphs),
            metadata={"paragraph_count": len(document.paragraphs)},
        )


class TextExtractor:
    """Extract text from plaintext documents."""

    def extract(self, data: bytes) -> ParsedDocument:
        if data.startswith((b"\xff\xfe", b"\xfe\xff")):
            return ParsedDocument(text=data.decode("utf-16"), metadata={"encoding": "utf-16"})
        try:
            text = data.decode("utf-8-sig")
            encoding = "utf-8"
        except UnicodeDecodeError:
            text = data.decode("latin-1")
            encoding = "latin-1"
        return ParsedDocument(text=text, metadata={"encoding": encoding})


class ImageExtractor:
    """Turn images into text through a vision model or Tesseract."""

    def __init__(
        self,
        vision_provider: Optional[CompletionProvider] = None,
        *,
        vision_model: str = "gpt-4o",
        max_edge: int = MAX_IMAGE_EDGE,
    ) -> None:
        self.vision_provider = vision_provider
        self.vision_model = vision_model
        self.max_edge = max_edge

    def extract(self, data: bytes, options: ParserOptions) -> ParsedDocument:
        if not options.enable_ocr:
            return ParsedDocument(
                text=IMAGE_PLACEHOLDER_TEXT,
                metadata={"processing_method": "image-skipped"},
            )

        image = self._load(data)
        original_size = image.size
        image = self._downscale(image)
        metadata: dict[str, object] = {
            "image_width": original_size[0],
            "image_height": original_size[1],
            "processed_width": image.size[0],
            "processed_height": image.size[1],
        }

        if options.ocr_engine == "tesseract":
            text, extra = self._run_tesseract(image, options.ocr_language)
        else:
            text, extra = self._run_vision(image)
        metadata.update(extra)

        if not text.strip():
            raise ExtractionError("No text could be extracted from the image")
        return ParsedDocument(text=text, metadata=metadata)

    def _load(self, data: bytes) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as error:
            raise CorruptInputError(f"Image decoding failed: {error}", cause=error)
        return image

    def _downscale(self, image: Image.Image) -> Image.Image:
        if max(image.size) <= self.max_edge:
            return image
        resized = image.copy()
        resized.thumbnail((self.max_edge, self.max_edge), Image.Resampling.LANCZOS)
        LOGGER.debug("Downscaled image from %s to %s", image.size, resized.size)
        return resized

    def _run_vision(self, image: Image.Image) -> tuple[str, dict[str, object]]:
        if self.vision_provider is None:
            raise ExtractionError("Vision OCR requested but no vision provider is configured")

        if image.mode not in ("RGB", "RGBA", "L", "LA"):
            image = image.convert("RGBA")
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": VISION_PROMPT},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:image/png;base64,{encoded}"},
                    },
                ],
            }
        ]
        text = self.vision_provider.complete(
            messages, CompletionOptions(model=self.vision_model, temperature=0.0, max_tokens=4096)
        )
        return text, {
            "processing_method": "openai-vision",
            "ocr_engine": "vision",
            "vision_model": self.vision_model,
        }

    def _run_tesseract(self, image: Image.Image, language: str) -> tuple[str, dict[str, object]]:
        processed = ImageOps.autocontrast(ImageOps.grayscale(image)).filter(ImageFilter.SHARPEN)
        try:
            data = pytesseract.image_to_data(
                processed, lang=language, output_type=pytesseract.Output.DICT
            )
        except pytesseract.TesseractNotFoundError as error:
            raise ExtractionError("Tesseract OCR engine is not installed", cause=error)
        except pytesseract.TesseractError as error:
            raise ExtractionError(f"Tesseract OCR failed: {error}", cause=error)

        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []
        for index, word in enumerate(data.get("text", [])):
            if not word or not word.strip():
                continue
            key = (data["block_num"][index], data["par_num"][index], data["line_num"][index])
            lines.setdefault(key, []).append(word.strip())
            confidence = float(data["conf"][index])
            if confidence >= 0:
                confidences.append(confidence)

        text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
        average = round(sum(confidences) / len(confidences), 2) if confidences else 0.0
        return text, {
            "processing_method": "tesseract",
            "ocr_engine": "tesseract",
            "ocr_confidence": average,
            "ocr_language": language,
        }
