"""API router for course chat sessions and streamed replies."""
from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..chat.service import ChatTurn
from ..models import ChatSession, Message, MessageRole
from ..rate_limit import CHAT_MESSAGE
from ..services import ServiceContainer, get_services
from .deps import get_current_user_id

router = APIRouter(tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class SendMessageRequest(BaseModel):
    content: str = Field("", max_length=10_000)
    session_id: Optional[str] = None
    document_ids: list[str] = Field(default_factory=list, max_length=20)


class StreamRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    regenerate: bool = False


class MessageResponse(BaseModel):
    id: str
    session_id: str
    role: MessageRole
    content: str
    token_count: Optional[int] = None
    document_ids: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime


class SendMessageResponse(BaseModel):
    session_id: str
    message: MessageResponse


class SessionResponse(BaseModel):
    id: str
    course_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    last_message: Optional[MessageResponse] = None


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]


class MessageListResponse(BaseModel):
    session_id: str
    messages: list[MessageResponse]
    total: int


def _serialise_message(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        session_id=message.session_id,
        role=message.role,
        content=message.content,
        token_count=message.token_count,
        document_ids=message.document_ids,
        error=message.error,
        created_at=message.created_at,
    )


def _serialise_session(
    session: ChatSession, message_count: int = 0, last_message: Optional[Message] = None
) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        course_id=session.course_id,
        title=session.title,
        created_at=session.created_at,
        updated_at=session.updated_at,
        message_count=message_count,
        last_message=_serialise_message(last_message) if last_message else None,
    )


def _event_stream(
    services: ServiceContainer, turn: ChatTurn, request: Request
) -> StreamingResponse:
    async def _frames() -> AsyncIterator[str]:
        async for event in services.engine.stream(turn, is_disconnected=request.is_disconnected):
            yield event.to_sse()

    return StreamingResponse(_frames(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post(
    "/courses/{course_id}/chat", response_model=SendMessageResponse, status_code=201
)
def post_message(
    course_id: str,
    payload: SendMessageRequest,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> SendMessageResponse:
    """Persist a user message. The reply is fetched from the stream endpoint."""

    limit = services.rate_limiter.enforce(user_id, CHAT_MESSAGE)
    response.headers.update(limit.headers())
    session, message = services.chat.post_user_message(
        course_id=course_id,
        user_id=user_id,
        content=payload.content,
        session_id=payload.session_id,
        document_ids=payload.document_ids,
    )
    return SendMessageResponse(session_id=session.id, message=_serialise_message(message))


@router.post("/courses/{course_id}/chat/stream")
def stream_reply(
    course_id: str,
    payload: StreamRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> StreamingResponse:
    """Stream the assistant reply to the latest user message as server-sent events."""

    session = services.chat.get_session(payload.session_id, user_id=user_id, course_id=course_id)
    turn = services.chat.prepare_turn(
        session,
        regenerate=payload.regenerate,
        history_limit=services.settings.history_limit,
    )
    return _event_stream(services, turn, request)


@router.post("/courses/{course_id}/chat/send")
def send_and_stream(
    course_id: str,
    payload: SendMessageRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> StreamingResponse:
    """Persist a user message and stream the reply in one request."""

    limit = services.rate_limiter.enforce(user_id, CHAT_MESSAGE)
    session, message = services.chat.post_user_message(
        course_id=course_id,
        user_id=user_id,
        content=payload.content,
        session_id=payload.session_id,
        document_ids=payload.document_ids,
    )
    turn = services.chat.prepare_turn(session, history_limit=services.settings.history_limit)
    response = _event_stream(services, turn, request)
    response.headers.update(limit.headers())
    response.headers["X-User-Message-Id"] = message.id
    response.headers["X-Session-Id"] = session.id
    return response


@router.get("/courses/{course_id}/chat/sessions", response_model=SessionListResponse)
def list_sessions(
    course_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> SessionListResponse:
    summaries = services.chat.list_sessions(course_id=course_id, user_id=user_id)
    return SessionListResponse(
        sessions=[
            _serialise_session(summary.session, summary.message_count, summary.last_message)
            for summary in summaries
        ]
    )


@router.get("/chat/sessions/{session_id}/messages", response_model=MessageListResponse)
def list_messages(
    session_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> MessageListResponse:
    messages, total = services.chat.list_messages(
        session_id, user_id=user_id, limit=limit, offset=offset
    )
    return MessageListResponse(
        session_id=session_id,
        messages=[_serialise_message(message) for message in messages],
        total=total,
    )


@router.delete("/chat/sessions/{session_id}", status_code=204)
def delete_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> Response:
    services.chat.delete_session(session_id, user_id=user_id)
    return Response(status_code=204)
