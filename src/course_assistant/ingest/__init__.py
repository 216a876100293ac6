"""Document ingestion: parsing, chunking and the background processing lifecycle."""
from __future__ import annotations

from .chunking import ChunkingConfig, RecursiveTextChunker, chunk_statistics
from .models import ChunkStatistics, ParsedDocument, ParserOptions, TextChunk
from .orchestrator import IngestionOrchestrator, ProcessingResult
from .parser import DocumentParser
from .pipeline import IngestPipeline
from .worker import IngestionWorker

__all__ = [
    "ChunkStatistics",
    "ChunkingConfig",
    "DocumentParser",
    "IngestPipeline",
    "IngestionOrchestrator",
    "IngestionWorker",
    "ParsedDocument",
    "ParserOptions",
    "ProcessingResult",
    "RecursiveTextChunker",
    "TextChunk",
    "chunk_statistics",
]
