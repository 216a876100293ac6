from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from course_assistant.client import ConversationClient, HttpChatTransport
from course_assistant.errors import ChatTransportError, NotFoundError, RateLimitedError


def _handler(request: httpx.Request) -> httpx.Response:
    assert request.headers["X-User-Id"] == "student-1"
    if request.url.path == "/courses/course-101/chat":
        body = json.loads(request.content)
        return httpx.Response(
            201,
            json={
                "session_id": body["session_id"] or "s-1",
                "message": {"id": "m-1", "content": body["content"], "document_ids": body["document_ids"]},
            },
        )
    if request.url.path == "/courses/course-101/chat/stream":
        frames = "".join(
            f"data: {json.dumps(payload)}\n\n"
            for payload in (
                {"delta": "Hello", "done": False},
                {"delta": " world", "done": False},
                {"delta": "", "done": True, "finishReason": "stop", "messageId": "a-1"},
            )
        )
        return httpx.Response(200, text=frames, headers={"Content-Type": "text/event-stream"})
    if request.url.path == "/courses/limited/chat":
        return httpx.Response(429, json={"error": "Too many requests", "code": "rate_limited"})
    return httpx.Response(404, json={"error": "Chat session not found", "code": "not_found"})


def _transport(handler=_handler) -> HttpChatTransport:
    client = httpx.AsyncClient(base_url="http://testserver", transport=httpx.MockTransport(handler))
    return HttpChatTransport(user_id="student-1", client=client)


def test_conversation_over_http_transport() -> None:
    conversation = ConversationClient(_transport(), "course-101")

    reply = asyncio.run(conversation.send("hi", ["doc-1"]))

    assert reply.content == "Hello world"
    assert reply.id == "a-1"
    assert conversation.messages[0].id == "m-1"
    assert conversation.messages[0].document_ids == ["doc-1"]
    assert conversation.session_id == "s-1"


def test_error_responses_become_typed_errors() -> None:
    transport = _transport()

    with pytest.raises(RateLimitedError):
        asyncio.run(transport.send_message("limited", "hi"))

    async def _stream_missing():
        return [event async for event in transport.stream_reply("other", "s-404")]

    with pytest.raises(NotFoundError) as excinfo:
        asyncio.run(_stream_missing())
    assert str(excinfo.value) == "Chat session not found"


def test_network_failure_becomes_transport_error() -> None:
    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ChatTransportError):
        asyncio.run(_transport(broken).send_message("course-101", "hi"))
