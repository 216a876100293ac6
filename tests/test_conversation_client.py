from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional, Sequence

import pytest

from course_assistant.chat.events import StreamEvent
from course_assistant.client import ConversationClient, MessageState, SendAck, TurnPhase
from course_assistant.errors import ChatTransportError, ConcurrentSendError, InvalidStateError
from course_assistant.models import MessageRole


class FakeTransport:
    """In-memory transport scripted per test."""

    def __init__(self, deltas: Sequence[str] = ("Mito", "chondria")) -> None:
        self.deltas = list(deltas)
        self.fail_send: Optional[Exception] = None
        self.stream_error: Optional[str] = None
        self.gate: Optional[asyncio.Event] = None
        self.sent: list[tuple[str, Optional[str], list[str]]] = []
        self.streams: list[bool] = []
        self.stream_closed = 0
        self._ids = 0

    async def send_message(self, course_id, content, *, session_id=None, document_ids=()) -> SendAck:
        await asyncio.sleep(0)
        if self.fail_send is not None:
            error, self.fail_send = self.fail_send, None
            raise error
        self._ids += 1
        self.sent.append((content, session_id, list(document_ids)))
        return SendAck(
            session_id=session_id or "session-1",
            message={"id": f"user-{self._ids}", "content": content, "document_ids": list(document_ids)},
        )

    async def stream_reply(self, course_id, session_id, *, regenerate=False) -> AsyncIterator[StreamEvent]:
        self.streams.append(regenerate)
        try:
            for index, delta in enumerate(self.deltas):
                if index == 1 and self.gate is not None:
                    await self.gate.wait()
                await asyncio.sleep(0)
                yield StreamEvent(delta=delta)
            if self.stream_error is not None:
                yield StreamEvent(done=True, error=self.stream_error)
                return
            yield StreamEvent(done=True, finish_reason="stop", message_id=f"assistant-{len(self.streams)}")
        finally:
            self.stream_closed += 1


def test_send_confirms_user_message_and_streams_reply() -> None:
    transport = FakeTransport()
    client = ConversationClient(transport, "course-101")

    reply = asyncio.run(client.send("What is ATP?"))

    user, assistant = client.messages
    assert user.state is MessageState.CONFIRMED and user.id == "user-1"
    assert user.local_key.startswith("user-")
    assert assistant is reply
    assert assistant.content == "Mitochondria"
    assert assistant.state is MessageState.CONFIRMED and assistant.id == "assistant-1"
    assert client.phase is TurnPhase.SETTLED
    assert client.session_id == "session-1"


def test_second_send_reuses_session() -> None:
    transport = FakeTransport()
    client = ConversationClient(transport, "course-101")

    async def _run() -> None:
        await client.send("first")
        await client.send("second")

    asyncio.run(_run())

    assert [sent[1] for sent in transport.sent] == [None, "session-1"]
    assert [m.role for m in client.messages] == [
        MessageRole.USER,
        MessageRole.ASSISTANT,
        MessageRole.USER,
        MessageRole.ASSISTANT,
    ]


def test_concurrent_send_is_rejected_without_side_effects() -> None:
    transport = FakeTransport()
    transport.gate = asyncio.Event()
    client = ConversationClient(transport, "course-101")

    async def _run() -> None:
        first = asyncio.create_task(client.send("first"))
        while client.phase is not TurnPhase.STREAMING:
            await asyncio.sleep(0)
        with pytest.raises(ConcurrentSendError):
            await client.send("second")
        assert len(client.messages) == 2
        transport.gate.set()
        await first

    asyncio.run(_run())

    assert [sent[0] for sent in transport.sent] == ["first"]


def test_cancel_discards_partial_reply() -> None:
    transport = FakeTransport()
    transport.gate = asyncio.Event()
    client = ConversationClient(transport, "course-101")

    async def _run():
        task = asyncio.create_task(client.send("question"))
        while not any(m.content == "Mito" for m in client.messages):
            await asyncio.sleep(0)
        assert client.cancel() is True
        return await task

    result = asyncio.run(_run())

    assert result is None
    assert [m.role for m in client.messages] == [MessageRole.USER]
    assert client.messages[0].state is MessageState.CONFIRMED
    assert client.phase is TurnPhase.IDLE
    assert transport.stream_closed == 1
    assert client.cancel() is False


def test_failed_send_can_be_retried() -> None:
    transport = FakeTransport()
    transport.fail_send = ChatTransportError("network down")
    client = ConversationClient(transport, "course-101")

    async def _run():
        assert await client.send("retry me") is None
        failed = client.messages[0]
        assert failed.state is MessageState.ERRORED and failed.error == "network down"
        assert client.phase is TurnPhase.ERRORED
        return await client.retry(failed.local_key)

    reply = asyncio.run(_run())

    assert reply.content == "Mitochondria"
    assert [m.state for m in client.messages] == [MessageState.CONFIRMED, MessageState.CONFIRMED]
    assert client.messages[0].content == "retry me"


def test_only_failed_user_messages_can_be_retried() -> None:
    client = ConversationClient(FakeTransport(), "course-101")
    asyncio.run(client.send("fine"))

    with pytest.raises(InvalidStateError):
        asyncio.run(client.retry(client.messages[0].local_key))


def test_stream_error_marks_reply_errored() -> None:
    transport = FakeTransport()
    transport.stream_error = "Completion request failed"
    client = ConversationClient(transport, "course-101")

    reply = asyncio.run(client.send("question"))

    assert reply.state is MessageState.ERRORED
    assert reply.error == "Completion request failed"
    assert reply.content == "Mitochondria"
    assert client.phase is TurnPhase.ERRORED
    assert client.messages[0].state is MessageState.CONFIRMED


def test_regenerate_replaces_latest_reply() -> None:
    transport = FakeTransport()
    client = ConversationClient(transport, "course-101")

    async def _run():
        first = await client.send("question")
        transport.deltas = ["Ribo", "somes"]
        return first, await client.regenerate(first.local_key)

    first, second = asyncio.run(_run())

    assert transport.streams == [False, True]
    assert [m.content for m in client.messages] == ["question", "Ribosomes"]
    assert second.local_key != first.local_key
    assert second.id == "assistant-2"


def test_regenerate_rejects_older_replies() -> None:
    transport = FakeTransport()
    client = ConversationClient(transport, "course-101")

    async def _run():
        first = await client.send("one")
        await client.send("two")
        with pytest.raises(InvalidStateError):
            await client.regenerate(first.local_key)
        with pytest.raises(InvalidStateError):
            await client.regenerate(client.messages[0].local_key)

    asyncio.run(_run())
