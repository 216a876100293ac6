"""Utilities for mapping declared MIME types to supported document formats."""
from __future__ import annotations

import mimetypes
from enum import Enum
from typing import Optional

from ..errors import UnsupportedFormatError


class DocumentFormat(str, Enum):
    """Supported document formats."""

    PDF = "pdf"
    DOCX = "docx"
    IMAGE = "image"
    TEXT = "text"


SUPPORTED_MIME_TYPES: tuple[str, ...] = (
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "text/plain",
    "text/markdown",
)

_GENERIC_MIME_TYPES = {"", "application/octet-stream", "binary/octet-stream"}


class DocumentFormatDetector:
    """Detects the document format from the declared MIME type."""

    _MIME_MAP = {
        "application/pdf": DocumentFormat.PDF,
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DocumentFormat.DOCX,
        "application/msword": DocumentFormat.DOCX,
        "text/plain": DocumentFormat.TEXT,
        "text/markdown": DocumentFormat.TEXT,
    }

    @staticmethod
    def normalise_mime(mime_type: Optional[str]) -> str:
        """Lower-case the MIME type and drop parameters such as ``charset``."""

        if not mime_type:
            return ""
        return mime_type.split(";", 1)[0].strip().lower()

    @classmethod
    def is_supported(cls, mime_type: Optional[str]) -> bool:
        return cls.normalise_mime(mime_type) in SUPPORTED_MIME_TYPES

    @classmethod
    def detect(cls, mime_type: Optional[str]) -> DocumentFormat:
        normalised = cls.normalise_mime(mime_type)
        if normalised not in SUPPORTED_MIME_TYPES:
            raise UnsupportedFormatError(f"Unsupported file type: {mime_type or 'unknown'}")
        if normalised.startswith("image/"):
            return DocumentFormat.IMAGE
        return cls._MIME_MAP[normalised]

    @classmethod
    def resolve_mime(cls, file_name: str, declared: Optional[str]) -> str:
        """Return the declared type, guessing from ``file_name`` when it is generic."""

        normalised = cls.normalise_mime(declared)
        if normalised not in _GENERIC_MIME_TYPES:
            return normalised
        if file_name.lower().endswith((".md", ".markdown")):
            return "text/markdown"
        guessed, _ = mimetypes.guess_type(file_name)
        return cls.normalise_mime(guessed) or normalised
