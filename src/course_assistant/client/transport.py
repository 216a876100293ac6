"""Transports that carry a conversation between the client and the chat API."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Protocol, Sequence

import httpx

from ..chat.events import StreamEvent, parse_sse_line
from ..errors import ChatTransportError, CourseAssistantError, error_for_status

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SendAck:
    """Server acknowledgement of a persisted user message."""

    session_id: str
    message: dict[str, Any]

    @property
    def message_id(self) -> str:
        return self.message["id"]


class ChatTransport(Protocol):
    async def send_message(
        self,
        course_id: str,
        content: str,
        *,
        session_id: Optional[str] = None,
        document_ids: Sequence[str] = (),
    ) -> SendAck: ...

    def stream_reply(
        self, course_id: str, session_id: str, *, regenerate: bool = False
    ) -> AsyncIterator[StreamEvent]: ...


def _error_from_response(response: httpx.Response, body: bytes) -> CourseAssistantError:
    message = f"Request failed with status {response.status_code}"
    code = None
    try:
        payload = json.loads(body)
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("error") or message
        code = payload.get("code")
    return error_for_status(response.status_code, message, code)


class HttpChatTransport:
    """Talks to the chat endpoints over HTTP using an ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: str = "",
        *,
        user_id: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"X-User-Id": user_id}

    async def send_message(
        self,
        course_id: str,
        content: str,
        *,
        session_id: Optional[str] = None,
        document_ids: Sequence[str] = (),
    ) -> SendAck:
        try:
            response = await self._client.post(
                f"/courses/{course_id}/chat",
                json={
                    "content": content,
                    "session_id": session_id,
                    "document_ids": list(document_ids),
                },
                headers=self._headers,
            )
        except httpx.HTTPError as error:
            raise ChatTransportError(f"Failed to send message: {error}", cause=error)
        if response.is_error:
            raise _error_from_response(response, response.content)
        payload = response.json()
        return SendAck(session_id=payload["session_id"], message=payload["message"])

    async def stream_reply(
        self, course_id: str, session_id: str, *, regenerate: bool = False
    ) -> AsyncIterator[StreamEvent]:
        try:
            async with self._client.stream(
                "POST",
                f"/courses/{course_id}/chat/stream",
                json={"session_id": session_id, "regenerate": regenerate},
                headers=self._headers,
            ) as response:
                if response.is_error:
                    raise _error_from_response(response, await response.aread())
                async for line in response.aiter_lines():
                    event = parse_sse_line(line)
                    if event is None:
                        continue
                    yield event
                    if event.done:
                        return
        except httpx.HTTPError as error:
            raise ChatTransportError(f"Stream interrupted: {error}", cause=error)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
