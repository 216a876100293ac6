"""Client-side conversation state with optimistic messages."""
from __future__ import annotations

import asyncio
import itertools
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from ..errors import (
    ConcurrentSendError,
    CourseAssistantError,
    InvalidRequestError,
    InvalidStateError,
    UpstreamCompletionError,
)
from ..models import MessageRole
from .transport import ChatTransport

LOGGER = logging.getLogger(__name__)


class MessageState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    CONFIRMED = "confirmed"
    ERRORED = "errored"


class TurnPhase(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    SETTLED = "settled"
    ERRORED = "errored"


@dataclass(slots=True)
class ClientMessage:
    """A message as the client renders it.

    ``local_key`` is assigned once and never changes, so an optimistic
    entry keeps its identity after the server assigns ``id``.
    """

    local_key: str
    role: MessageRole
    content: str
    state: MessageState
    id: Optional[str] = None
    document_ids: list[str] = field(default_factory=list)
    error: Optional[str] = None


class ConversationClient:
    """Drives one chat session: send, stream, cancel, retry and regenerate.

    At most one turn is in flight. Calls made while a turn is sending or
    streaming raise :class:`ConcurrentSendError`.
    """

    def __init__(
        self,
        transport: ChatTransport,
        course_id: str,
        *,
        session_id: Optional[str] = None,
        messages: Iterable[ClientMessage] = (),
    ) -> None:
        self._transport = transport
        self.course_id = course_id
        self.session_id = session_id
        self._messages: list[ClientMessage] = list(messages)
        self._keys = itertools.count(len(self._messages) + 1)
        self._phase = TurnPhase.IDLE
        self._stream_task: Optional[asyncio.Task[None]] = None
        self._cancel_requested = False
        self.error: Optional[str] = None

    @property
    def messages(self) -> tuple[ClientMessage, ...]:
        return tuple(self._messages)

    @property
    def phase(self) -> TurnPhase:
        return self._phase

    @property
    def is_busy(self) -> bool:
        return self._phase in (TurnPhase.SENDING, TurnPhase.STREAMING)

    def _next_key(self, prefix: str) -> str:
        return f"{prefix}-{next(self._keys)}"

    def _ensure_idle(self) -> None:
        if self.is_busy:
            raise ConcurrentSendError("A message is already being sent")

    def _find(self, local_key: str) -> int:
        for index, message in enumerate(self._messages):
            if message.local_key == local_key:
                return index
        raise InvalidRequestError(f"Unknown message {local_key}")

    async def send(
        self, content: str, document_ids: Sequence[str] = ()
    ) -> Optional[ClientMessage]:
        """Post ``content`` and stream the reply.

        Returns the assistant message, or ``None`` when the send failed or the
        stream was cancelled.
        """

        self._ensure_idle()
        content = content.strip()
        if not content and not document_ids:
            raise InvalidRequestError("Message content is required")

        self._phase = TurnPhase.SENDING
        self.error = None
        pending = ClientMessage(
            local_key=self._next_key("user"),
            role=MessageRole.USER,
            content=content,
            state=MessageState.PENDING,
            document_ids=list(document_ids),
        )
        self._messages.append(pending)

        try:
            ack = await self._transport.send_message(
                self.course_id,
                content,
                session_id=self.session_id,
                document_ids=pending.document_ids,
            )
        except CourseAssistantError as error:
            LOGGER.warning("Sending message failed: %s", error)
            pending.state = MessageState.ERRORED
            pending.error = str(error)
            self.error = str(error)
            self._phase = TurnPhase.ERRORED
            return None

        self.session_id = ack.session_id
        self._confirm(pending, ack.message)
        return await self._stream_reply(regenerate=False)

    def _confirm(self, message: ClientMessage, server_message: dict[str, Any]) -> None:
        message.id = server_message["id"]
        message.content = server_message.get("content", message.content)
        message.document_ids = list(server_message.get("document_ids", message.document_ids))
        message.state = MessageState.CONFIRMED
        message.error = None

    async def _stream_reply(self, *, regenerate: bool) -> Optional[ClientMessage]:
        assert self.session_id is not None
        self._phase = TurnPhase.STREAMING
        reply = ClientMessage(
            local_key=self._next_key("assistant"),
            role=MessageRole.ASSISTANT,
            content="",
            state=MessageState.STREAMING,
        )
        self._messages.append(reply)
        self._cancel_requested = False
        self._stream_task = asyncio.create_task(self._consume(reply, regenerate))
        try:
            await self._stream_task
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            self._messages.remove(reply)
            self._phase = TurnPhase.IDLE
            LOGGER.info("Reply stream for session %s cancelled", self.session_id)
            return None
        except CourseAssistantError as error:
            reply.state = MessageState.ERRORED
            reply.error = str(error)
            self.error = str(error)
            self._phase = TurnPhase.ERRORED
            return reply
        finally:
            self._stream_task = None

        reply.state = MessageState.CONFIRMED
        self._phase = TurnPhase.SETTLED
        return reply

    async def _consume(self, reply: ClientMessage, regenerate: bool) -> None:
        assert self.session_id is not None
        stream = self._transport.stream_reply(
            self.course_id, self.session_id, regenerate=regenerate
        )
        async with aclosing(stream) as events:
            async for event in events:
                if event.error is not None:
                    raise UpstreamCompletionError(event.error)
                if event.delta:
                    reply.content += event.delta
                if event.done:
                    reply.id = event.message_id
                    return
        raise UpstreamCompletionError("Reply stream ended before completion")

    def cancel(self) -> bool:
        """Abort the reply stream in flight. The partial reply is discarded."""

        if self._stream_task is None or self._stream_task.done():
            return False
        self._cancel_requested = True
        self._stream_task.cancel()
        return True

    async def retry(self, local_key: str) -> Optional[ClientMessage]:
        """Resend a user message whose send failed."""

        self._ensure_idle()
        message = self._messages[self._find(local_key)]
        if message.role is not MessageRole.USER or message.state is not MessageState.ERRORED:
            raise InvalidStateError("Only a failed user message can be retried")
        self._messages.remove(message)
        return await self.send(message.content, message.document_ids)

    async def regenerate(self, local_key: str) -> Optional[ClientMessage]:
        """Replace the most recent assistant reply with a freshly streamed one."""

        self._ensure_idle()
        index = self._find(local_key)
        message = self._messages[index]
        if message.role is not MessageRole.ASSISTANT:
            raise InvalidStateError("Only an assistant reply can be regenerated")
        if any(later.role is MessageRole.ASSISTANT for later in self._messages[index + 1 :]):
            raise InvalidStateError("Only the most recent assistant reply can be regenerated")
        if self.session_id is None:
            raise InvalidStateError("Conversation has no session yet")

        del self._messages[index:]
        self.error = None
        return await self._stream_reply(regenerate=True)
