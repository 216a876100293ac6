"""Parse, clean and chunk one upload."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .chunking import ChunkingConfig, RecursiveTextChunker, chunk_statistics
from .models import ChunkStatistics, ParsedDocument, ParserOptions, TextChunk
from .normalization import clean_text
from .parser import DocumentParser

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PipelineResult:
    parsed: ParsedDocument
    text: str
    chunks: list[TextChunk]
    statistics: ChunkStatistics
    chunking: ChunkingConfig


class IngestPipeline:
    """Pipeline orchestrating document extraction, normalisation and chunking."""

    def __init__(
        self,
        parser: Optional[DocumentParser] = None,
        chunking: Optional[ChunkingConfig] = None,
    ) -> None:
        self.parser = parser or DocumentParser()
        self.chunking = chunking

    def run(self, data: bytes, mime_type: str, options: ParserOptions) -> PipelineResult:
        parsed = self.parser.parse(data, mime_type, options)
        text = clean_text(parsed.text)
        config = self.chunking or ChunkingConfig.for_text_length(len(text))
        chunks: list[TextChunk] = []
        if text:
            chunks = RecursiveTextChunker(config).chunk_filtered(text)
        else:
            # Scanned or image-only files complete with nothing to retrieve.
            LOGGER.warning("No extractable text in %s upload", parsed.metadata.get("format", mime_type))
        LOGGER.info(
            "Generated %s chunks (size=%s overlap=%s) from %s characters",
            len(chunks),
            config.chunk_size,
            config.chunk_overlap,
            len(text),
        )
        return PipelineResult(
            parsed=parsed,
            text=text,
            chunks=chunks,
            statistics=chunk_statistics(chunks),
            chunking=config,
        )
