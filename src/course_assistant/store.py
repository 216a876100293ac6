"""Thread-safe in-memory persistence for documents, chunks and chat history."""

from __future__ import annotations

import copy
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from .errors import NotFoundError
from .models import (
    ChatSession,
    Course,
    Document,
    DocumentChunk,
    DocumentStatus,
    Message,
    utcnow,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ChunkMatch:
    chunk: DocumentChunk
    document: Document


class CourseDirectory(Protocol):
    """Read-only view of the course catalogue."""

    def get_course(self, course_id: str) -> Optional[Course]: ...


class Store(CourseDirectory, Protocol):
    """Persistence operations used by ingestion and chat."""

    def add_document(self, document: Document) -> Document: ...

    def get_document(self, document_id: str) -> Optional[Document]: ...

    def get_documents(self, document_ids: Sequence[str]) -> list[Document]: ...

    def update_document(self, document_id: str, **changes: Any) -> Document: ...

    def list_documents(
        self,
        *,
        user_id: Optional[str] = None,
        course_id: Optional[str] = None,
        status: Optional[DocumentStatus] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> tuple[list[Document], int]: ...

    def delete_document(self, document_id: str) -> Optional[Document]: ...

    def replace_chunks(
        self,
        document_id: str,
        chunks: Iterable[DocumentChunk],
        *,
        document_changes: Optional[Mapping[str, Any]] = None,
    ) -> Document: ...

    def get_chunks(self, document_id: str) -> list[DocumentChunk]: ...

    def count_chunks(self, document_id: str) -> int: ...

    def search_chunks(self, query: str, *, user_id: str, limit: int = 10) -> list[ChunkMatch]: ...

    def create_session(self, session: ChatSession) -> ChatSession: ...

    def get_session(self, session_id: str) -> Optional[ChatSession]: ...

    def list_sessions(self, *, user_id: str, course_id: Optional[str] = None) -> list[ChatSession]: ...

    def delete_session(self, session_id: str) -> Optional[ChatSession]: ...

    def add_message(self, message: Message) -> Message: ...

    def commit_assistant_message(
        self, message: Message, *, superseded_ids: Sequence[str] = ()
    ) -> Message: ...

    def list_messages(
        self, session_id: str, *, limit: Optional[int] = None, offset: int = 0
    ) -> list[Message]: ...

    def count_messages(self, session_id: str) -> int: ...


class InMemoryStore:
    """Process-local store. Every read returns a copy of the stored record."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._courses: dict[str, Course] = {}
        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, list[DocumentChunk]] = {}
        self._sessions: dict[str, ChatSession] = {}
        self._messages: dict[str, list[Message]] = {}
        self._sequence = 0

    # Courses ---------------------------------------------------------------

    def upsert_course(self, course: Course) -> Course:
        with self._lock:
            self._courses[course.id] = copy.deepcopy(course)
            return copy.deepcopy(course)

    def get_course(self, course_id: str) -> Optional[Course]:
        with self._lock:
            course = self._courses.get(course_id)
            return copy.deepcopy(course) if course else None

    def load_courses(self, path: str | Path) -> int:
        """Seed courses from a JSON list of course objects."""

        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        loaded = 0
        for item in raw:
            self.upsert_course(Course(**item))
            loaded += 1
        LOGGER.info("Loaded %d course(s) from %s", loaded, path)
        return loaded

    # Documents -------------------------------------------------------------

    def add_document(self, document: Document) -> Document:
        with self._lock:
            self._documents[document.id] = copy.deepcopy(document)
            self._chunks.setdefault(document.id, [])
            return copy.deepcopy(document)

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._lock:
            document = self._documents.get(document_id)
            return copy.deepcopy(document) if document else None

    def get_documents(self, document_ids: Sequence[str]) -> list[Document]:
        """Return the known documents among ``document_ids`` in request order."""

        with self._lock:
            return [
                copy.deepcopy(self._documents[document_id])
                for document_id in document_ids
                if document_id in self._documents
            ]

    def update_document(self, document_id: str, **changes: Any) -> Document:
        with self._lock:
            document = self._require_document(document_id)
            for key, value in changes.items():
                if not hasattr(document, key):
                    raise AttributeError(f"Document has no field {key!r}")
                setattr(document, key, copy.deepcopy(value))
            document.updated_at = utcnow()
            return copy.deepcopy(document)

    def list_documents(
        self,
        *,
        user_id: Optional[str] = None,
        course_id: Optional[str] = None,
        status: Optional[DocumentStatus] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> tuple[list[Document], int]:
        with self._lock:
            matches = [
                document
                for document in self._documents.values()
                if (user_id is None or document.user_id == user_id)
                and (course_id is None or document.course_id == course_id)
                and (status is None or document.status == status)
            ]
            matches.sort(key=lambda document: document.created_at, reverse=True)
            total = len(matches)
            end = None if limit is None else offset + limit
            return [copy.deepcopy(document) for document in matches[offset:end]], total

    def delete_document(self, document_id: str) -> Optional[Document]:
        with self._lock:
            self._chunks.pop(document_id, None)
            return self._documents.pop(document_id, None)

    # Chunks ----------------------------------------------------------------

    def replace_chunks(
        self,
        document_id: str,
        chunks: Iterable[DocumentChunk],
        *,
        document_changes: Optional[Mapping[str, Any]] = None,
    ) -> Document:
        """Swap a document's chunk set and apply ``document_changes`` in one step."""

        staged = sorted((copy.deepcopy(chunk) for chunk in chunks), key=lambda c: c.chunk_index)
        with self._lock:
            self._require_document(document_id)
            self._chunks[document_id] = staged
            return self.update_document(document_id, **dict(document_changes or {}))

    def get_chunks(self, document_id: str) -> list[DocumentChunk]:
        with self._lock:
            return copy.deepcopy(self._chunks.get(document_id, []))

    def count_chunks(self, document_id: str) -> int:
        with self._lock:
            return len(self._chunks.get(document_id, []))

    def search_chunks(self, query: str, *, user_id: str, limit: int = 10) -> list[ChunkMatch]:
        """Case-insensitive substring match over the caller's completed documents."""

        needle = query.casefold()
        matches: list[ChunkMatch] = []
        with self._lock:
            documents = sorted(
                self._documents.values(), key=lambda document: document.created_at, reverse=True
            )
            for document in documents:
                if document.user_id != user_id or document.status != DocumentStatus.COMPLETED:
                    continue
                for chunk in self._chunks.get(document.id, []):
                    if needle in chunk.content.casefold():
                        matches.append(ChunkMatch(copy.deepcopy(chunk), copy.deepcopy(document)))
                        if len(matches) >= limit:
                            return matches
        return matches

    # Sessions and messages -------------------------------------------------

    def create_session(self, session: ChatSession) -> ChatSession:
        with self._lock:
            self._sessions[session.id] = copy.deepcopy(session)
            self._messages.setdefault(session.id, [])
            return copy.deepcopy(session)

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session else None

    def list_sessions(self, *, user_id: str, course_id: Optional[str] = None) -> list[ChatSession]:
        with self._lock:
            sessions = [
                session
                for session in self._sessions.values()
                if session.user_id == user_id
                and (course_id is None or session.course_id == course_id)
            ]
            sessions.sort(key=lambda session: session.updated_at, reverse=True)
            return copy.deepcopy(sessions)

    def delete_session(self, session_id: str) -> Optional[ChatSession]:
        with self._lock:
            self._messages.pop(session_id, None)
            return self._sessions.pop(session_id, None)

    def add_message(self, message: Message) -> Message:
        with self._lock:
            stored = self._append_message(message)
            self._touch_session(message.session_id)
            return copy.deepcopy(stored)

    def commit_assistant_message(
        self, message: Message, *, superseded_ids: Sequence[str] = ()
    ) -> Message:
        """Persist a finished reply, dropping the replies it regenerates."""

        with self._lock:
            self._require_session(message.session_id)
            if superseded_ids:
                drop = set(superseded_ids)
                self._messages[message.session_id] = [
                    existing
                    for existing in self._messages[message.session_id]
                    if existing.id not in drop
                ]
            stored = self._append_message(message)
            self._touch_session(message.session_id)
            return copy.deepcopy(stored)

    def list_messages(
        self, session_id: str, *, limit: Optional[int] = None, offset: int = 0
    ) -> list[Message]:
        """Return messages oldest first. ``limit`` keeps the most recent ones."""

        with self._lock:
            messages = self._messages.get(session_id, [])
            if limit is not None:
                end = len(messages) - offset
                messages = messages[max(0, end - limit) : max(0, end)]
            return copy.deepcopy(messages)

    def count_messages(self, session_id: str) -> int:
        with self._lock:
            return len(self._messages.get(session_id, []))

    # Internal helpers ------------------------------------------------------

    def _append_message(self, message: Message) -> Message:
        self._require_session(message.session_id)
        self._sequence += 1
        stored = copy.deepcopy(message)
        stored.sequence = self._sequence
        self._messages[message.session_id].append(stored)
        return stored

    def _touch_session(self, session_id: str) -> None:
        self._sessions[session_id].updated_at = utcnow()

    def _require_document(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    def _require_session(self, session_id: str) -> ChatSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Chat session {session_id} not found")
        return session
