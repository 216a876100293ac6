"""Chat sessions, user messages and turn preparation."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..errors import AccessDeniedError, InvalidRequestError, InvalidStateError, NotFoundError
from ..ingest.chunking import estimate_tokens
from ..models import ChatSession, Course, Message, MessageRole, new_id
from ..store import Store

LOGGER = logging.getLogger(__name__)

SESSION_TITLE_LENGTH = 50


@dataclass(slots=True)
class ChatTurn:
    """Everything the streaming engine needs to answer the latest user message."""

    session: ChatSession
    course: Optional[Course]
    history: list[Message]
    new_message: Message
    document_ids: list[str] = field(default_factory=list)
    superseded_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SessionSummary:
    session: ChatSession
    message_count: int
    last_message: Optional[Message]


def session_title(content: str) -> str:
    title = " ".join(content.split())
    if len(title) > SESSION_TITLE_LENGTH:
        return title[:SESSION_TITLE_LENGTH] + "..."
    return title or "New conversation"


class ChatService:
    def __init__(self, store: Store) -> None:
        self._store = store

    def get_course(self, course_id: str) -> Course:
        course = self._store.get_course(course_id)
        if course is None:
            raise NotFoundError(f"Course {course_id} not found")
        return course

    def get_session(
        self, session_id: str, *, user_id: str, course_id: Optional[str] = None
    ) -> ChatSession:
        session = self._store.get_session(session_id)
        if session is None:
            raise NotFoundError("Chat session not found")
        if session.user_id != user_id:
            raise AccessDeniedError("You do not have access to this chat session")
        if course_id is not None and session.course_id != course_id:
            raise AccessDeniedError("Chat session belongs to a different course")
        return session

    def post_user_message(
        self,
        *,
        course_id: str,
        user_id: str,
        content: str,
        session_id: Optional[str] = None,
        document_ids: Sequence[str] = (),
    ) -> tuple[ChatSession, Message]:
        """Persist a user message, creating the session on first use."""

        content = content.strip()
        document_ids = list(dict.fromkeys(document_ids))
        if not content and not document_ids:
            raise InvalidRequestError("Message content is required")
        self.get_course(course_id)
        self._check_documents(document_ids, user_id=user_id, course_id=course_id)

        if session_id:
            session = self.get_session(session_id, user_id=user_id, course_id=course_id)
        else:
            session = self._store.create_session(
                ChatSession(
                    id=new_id(),
                    course_id=course_id,
                    user_id=user_id,
                    title=session_title(content),
                )
            )
            LOGGER.info("Created chat session %s for course %s", session.id, course_id)

        message = self._store.add_message(
            Message(
                id=new_id(),
                session_id=session.id,
                user_id=user_id,
                role=MessageRole.USER,
                content=content,
                token_count=estimate_tokens(content),
                document_ids=document_ids,
            )
        )
        return self._store.get_session(session.id) or session, message

    def _check_documents(self, document_ids: Sequence[str], *, user_id: str, course_id: str) -> None:
        """Referenced documents must be the caller's own or shared with the course."""

        found = {document.id: document for document in self._store.get_documents(document_ids)}
        for document_id in document_ids:
            document = found.get(document_id)
            if document is None:
                raise NotFoundError(f"Document {document_id} not found")
            if document.user_id != user_id and document.course_id != course_id:
                raise AccessDeniedError("You do not have access to this document")

    def prepare_turn(
        self,
        session: ChatSession,
        *,
        regenerate: bool = False,
        history_limit: int = 10,
    ) -> ChatTurn:
        """Locate the user message to answer and the history that precedes it.

        A regenerate turn marks the assistant replies after that message as
        superseded. Without ``regenerate`` the latest message must be unanswered.
        """

        messages = self._store.list_messages(session.id)
        last_user_index = next(
            (
                index
                for index in range(len(messages) - 1, -1, -1)
                if messages[index].role is MessageRole.USER
            ),
            None,
        )
        if last_user_index is None:
            raise InvalidStateError("Chat session has no user message to answer")

        trailing = messages[last_user_index + 1 :]
        if trailing and not regenerate:
            raise InvalidStateError(
                "The latest message already has a reply; set regenerate to replace it"
            )

        new_message = messages[last_user_index]
        history = messages[:last_user_index]
        return ChatTurn(
            session=session,
            course=self._store.get_course(session.course_id),
            history=history[-history_limit:] if history_limit > 0 else [],
            new_message=new_message,
            document_ids=list(new_message.document_ids),
            superseded_ids=[message.id for message in trailing],
        )

    def list_sessions(self, *, course_id: str, user_id: str) -> list[SessionSummary]:
        summaries = []
        for session in self._store.list_sessions(user_id=user_id, course_id=course_id):
            latest = self._store.list_messages(session.id, limit=1)
            summaries.append(
                SessionSummary(
                    session=session,
                    message_count=self._store.count_messages(session.id),
                    last_message=latest[0] if latest else None,
                )
            )
        return summaries

    def list_messages(
        self, session_id: str, *, user_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[Message], int]:
        self.get_session(session_id, user_id=user_id)
        total = self._store.count_messages(session_id)
        return self._store.list_messages(session_id, limit=limit, offset=offset), total

    def delete_session(self, session_id: str, *, user_id: str) -> None:
        self.get_session(session_id, user_id=user_id)
        self._store.delete_session(session_id)
        LOGGER.info("Deleted chat session %s", session_id)
