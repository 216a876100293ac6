"""Data models used by the ingestion pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..config import DEFAULT_MAX_TEXT_LENGTH


@dataclass(slots=True)
class ParserOptions:
    """Per-call switches for :class:`DocumentParser`."""

    enable_ocr: bool = False
    ocr_engine: str = "vision"
    ocr_language: str = "eng"
    max_text_length: int = DEFAULT_MAX_TEXT_LENGTH


@dataclass(slots=True)
class ParsedDocument:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TextChunk:
    """A chunk of text and the span of the source text it was cut from."""

    content: str
    chunk_index: int
    char_start: int
    char_end: int

    @property
    def length(self) -> int:
        return len(self.content)


@dataclass(slots=True)
class ChunkStatistics:
    total_chunks: int
    average_length: int
    min_length: int
    max_length: int
    estimated_tokens: int

    def as_dict(self) -> dict[str, int]:
        return {
            "total_chunks": self.total_chunks,
            "average_length": self.average_length,
            "min_length": self.min_length,
            "max_length": self.max_length,
            "estimated_tokens": self.estimated_tokens,
        }
