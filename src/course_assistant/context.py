"""Builds the course-material context block for a chat turn."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .models import Document, DocumentStatus
from .store import ChunkMatch, Store

LOGGER = logging.getLogger(__name__)

CHUNK_SEPARATOR = "\n\n"
DOCUMENT_SEPARATOR = "\n\n---\n\n"


@dataclass(slots=True)
class AssembledContext:
    text: str = ""
    documents: list[Document] = field(default_factory=list)
    total_chunks: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.text


class ContextAssembler:
    """Concatenates the chunks of referenced, completed documents."""

    def __init__(self, store: Store) -> None:
        self._store = store

    def assemble(
        self,
        document_ids: Sequence[str],
        *,
        course_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> AssembledContext:
        """Return one labelled section per usable document, in request order.

        Documents that are missing, not COMPLETED, attached to another course
        or without chunks are skipped. With ``user_id`` set, another user's
        document is only used when it belongs to ``course_id``.
        """

        unique_ids = list(dict.fromkeys(document_ids))
        if not unique_ids:
            return AssembledContext()

        sections: list[str] = []
        used: list[Document] = []
        total_chunks = 0
        for document in self._store.get_documents(unique_ids):
            if document.status is not DocumentStatus.COMPLETED:
                LOGGER.debug("Skipping document %s in state %s", document.id, document.status.value)
                continue
            if course_id is not None and document.course_id not in (None, course_id):
                LOGGER.debug("Skipping document %s from course %s", document.id, document.course_id)
                continue
            if user_id is not None and document.user_id != user_id and (
                course_id is None or document.course_id != course_id
            ):
                LOGGER.warning("Skipping document %s not shared with user %s", document.id, user_id)
                continue
            chunks = self._store.get_chunks(document.id)
            if not chunks:
                continue
            body = CHUNK_SEPARATOR.join(chunk.content for chunk in chunks)
            sections.append(f"=== {document.original_name} ===\n\n{body}")
            used.append(document)
            total_chunks += len(chunks)

        skipped = len(unique_ids) - len(used)
        if skipped:
            LOGGER.info("Excluded %d of %d referenced documents from context", skipped, len(unique_ids))
        return AssembledContext(
            text=DOCUMENT_SEPARATOR.join(sections),
            documents=used,
            total_chunks=total_chunks,
        )

    def search_chunks(self, query: str, *, user_id: str, limit: int = 10) -> list[ChunkMatch]:
        query = query.strip()
        if not query or limit <= 0:
            return []
        return self._store.search_chunks(query, user_id=user_id, limit=limit)
