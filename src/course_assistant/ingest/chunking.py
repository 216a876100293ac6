"""Recursive separator-aware chunking of extracted document text."""
from __future__ import annotations

import logging
import math
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .models import ChunkStatistics, TextChunk

LOGGER = logging.getLogger(__name__)

Span = tuple[int, int]

DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", "? ", "! ", ", ", " ", "")
MIN_CHUNK_LENGTH = 50
MIN_CONTENT_CHARACTERS = 20

_NOISE_RE = re.compile(r"[\s.,!?;:(){}\[\]\"'`~@#$%^&*+=<>/\\|_-]")


def estimate_tokens(text_or_length: str | int) -> int:
    """Rough token estimate of four characters per token."""

    length = text_or_length if isinstance(text_or_length, int) else len(text_or_length)
    return math.ceil(length / 4)


@dataclass(slots=True)
class ChunkingConfig:
    chunk_size: int = 1000
    chunk_overlap: int = 200
    separators: Sequence[str] = field(default=DEFAULT_SEPARATORS)

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.chunk_overlap < 0:
            raise ValueError("chunk_overlap must not be negative")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        if not self.separators:
            raise ValueError("at least one separator is required")

    @classmethod
    def for_text_length(cls, text_length: int) -> "ChunkingConfig":
        size = optimal_chunk_size(text_length)
        return cls(chunk_size=size, chunk_overlap=int(size * 0.2))


def optimal_chunk_size(text_length: int) -> int:
    if text_length < 2000:
        return 500
    if text_length < 10000:
        return 1000
    return 1500


def is_quality_chunk(content: str) -> bool:
    """Reject short chunks and chunks that are mostly punctuation or whitespace."""

    if len(content) < MIN_CHUNK_LENGTH:
        return False
    return len(_NOISE_RE.sub("", content)) >= MIN_CONTENT_CHARACTERS


def chunk_statistics(chunks: Sequence[TextChunk]) -> ChunkStatistics:
    if not chunks:
        return ChunkStatistics(0, 0, 0, 0, 0)
    lengths = [chunk.length for chunk in chunks]
    total = sum(lengths)
    return ChunkStatistics(
        total_chunks=len(chunks),
        average_length=round(total / len(chunks)),
        min_length=min(lengths),
        max_length=max(lengths),
        estimated_tokens=estimate_tokens(total),
    )


class RecursiveTextChunker:
    """Split text on the coarsest separator that keeps pieces under ``chunk_size``.

    Pieces are tracked as spans of the source string, so every chunk knows
    the exact ``[char_start, char_end)`` range it came from. Adjacent pieces
    are merged greedily, carrying up to ``chunk_overlap`` trailing characters
    of one chunk into the next.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(self, text: str) -> list[TextChunk]:
        spans = self._split(text, 0, len(text), tuple(self.config.separators))
        chunks: list[TextChunk] = []
        for start, end in self._trim(text, spans):
            chunks.append(
                TextChunk(
                    content=text[start:end],
                    chunk_index=len(chunks),
                    char_start=start,
                    char_end=end,
                )
            )
        return chunks

    def chunk_filtered(self, text: str) -> list[TextChunk]:
        """Chunk, drop low quality chunks and renumber the survivors."""

        kept = [chunk for chunk in self.chunk(text) if is_quality_chunk(chunk.content)]
        for index, chunk in enumerate(kept):
            chunk.chunk_index = index
        return kept

    def _split(self, text: str, start: int, end: int, separators: tuple[str, ...]) -> list[Span]:
        separator = separators[-1]
        remaining: tuple[str, ...] = ()
        for position, candidate in enumerate(separators):
            if candidate == "" or text.find(candidate, start, end) != -1:
                separator = candidate
                remaining = separators[position + 1 :]
                break

        chunk_size = self.config.chunk_size
        results: list[Span] = []
        pending: list[Span] = []
        for piece in self._pieces(text, start, end, separator):
            if piece[1] - piece[0] <= chunk_size:
                pending.append(piece)
                continue
            if pending:
                results.extend(self._merge(pending))
                pending = []
            if remaining:
                results.extend(self._split(text, piece[0], piece[1], remaining))
            else:
                results.append(piece)
        if pending:
            results.extend(self._merge(pending))
        return results

    @staticmethod
    def _pieces(text: str, start: int, end: int, separator: str) -> list[Span]:
        """Split ``text[start:end]`` keeping each separator on the piece before it."""

        if separator == "":
            return [(index, index + 1) for index in range(start, end)]
        pieces: list[Span] = []
        cursor = start
        while True:
            found = text.find(separator, cursor, end)
            if found == -1:
                break
            pieces.append((cursor, found + len(separator)))
            cursor = found + len(separator)
        if cursor < end:
            pieces.append((cursor, end))
        return pieces

    def _merge(self, pieces: Iterable[Span]) -> list[Span]:
        chunk_size = self.config.chunk_size
        overlap = self.config.chunk_overlap
        merged: list[Span] = []
        window: deque[Span] = deque()
        total = 0
        for piece in pieces:
            length = piece[1] - piece[0]
            if window and total + length > chunk_size:
                merged.append((window[0][0], window[-1][1]))
                while window and (total > overlap or total + length > chunk_size):
                    dropped = window.popleft()
                    total -= dropped[1] - dropped[0]
            window.append(piece)
            total += length
        if window:
            merged.append((window[0][0], window[-1][1]))
        return merged

    @staticmethod
    def _trim(text: str, spans: Iterable[Span]) -> Iterable[Span]:
        for start, end in spans:
            while start < end and text[start].isspace():
                start += 1
            while end > start and text[end - 1].isspace():
                end -= 1
            if start < end:
                yield start, end
