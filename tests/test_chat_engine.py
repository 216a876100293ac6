from __future__ import annotations

import asyncio
import json

import pytest

from course_assistant.chat.events import StreamEvent, parse_sse_line
from course_assistant.errors import InvalidStateError
from course_assistant.models import Course, Document, DocumentChunk, DocumentStatus, MessageRole, new_id

COURSE_ID = "course-101"
USER_ID = "student-1"


def _collect(agen) -> list[StreamEvent]:
    async def _run() -> list[StreamEvent]:
        return [event async for event in agen]

    return asyncio.run(_run())


def _turn(services, content: str = "What does photosynthesis do?", **kwargs):
    session, _ = services.chat.post_user_message(
        course_id=COURSE_ID, user_id=USER_ID, content=content, **kwargs
    )
    return services.chat.prepare_turn(session)


def _assistant_messages(services, session_id: str):
    return [m for m in services.store.list_messages(session_id) if m.role is MessageRole.ASSISTANT]


def test_successful_stream_persists_exactly_one_reply(services, provider) -> None:
    turn = _turn(services)

    events = _collect(services.engine.stream(turn))

    assert [event.delta for event in events[:-1]] == provider.pieces
    terminal = events[-1]
    assert terminal.done and terminal.finish_reason == "stop" and terminal.error is None
    replies = _assistant_messages(services, turn.session.id)
    assert len(replies) == 1
    assert replies[0].content == "".join(provider.pieces)
    assert replies[0].token_count == -(-len(replies[0].content) // 4)
    assert terminal.message_id == replies[0].id
    assert provider.closed == 1


def test_prompt_has_persona_context_history_and_new_message(services, provider) -> None:
    document = services.store.add_document(
        Document(
            id=new_id(),
            user_id=USER_ID,
            original_name="chapter1.pdf",
            mime_type="application/pdf",
            size=10,
            storage_url="file:///nowhere",
            course_id=COURSE_ID,
            status=DocumentStatus.COMPLETED,
        )
    )
    services.store.replace_chunks(
        document.id,
        [DocumentChunk(id=new_id(), document_id=document.id, chunk_index=0, content="Chlorophyll absorbs light.")],
    )
    session, _ = services.chat.post_user_message(
        course_id=COURSE_ID, user_id=USER_ID, content="first question"
    )
    for index in range(12):
        role_content = f"history {index}"
        services.chat.post_user_message(
            course_id=COURSE_ID, user_id=USER_ID, content=role_content, session_id=session.id
        )
    services.chat.post_user_message(
        course_id=COURSE_ID,
        user_id=USER_ID,
        content="Why are leaves green?",
        session_id=session.id,
        document_ids=[document.id],
    )
    turn = services.chat.prepare_turn(session, regenerate=False, history_limit=50)

    _collect(services.engine.stream(turn))

    prompt = provider.prompts[0]
    assert prompt[0]["role"] == "system"
    assert 'course "Introduction to Biology" (BIO101)' in prompt[0]["content"]
    assert "=== chapter1.pdf ===\n\nChlorophyll absorbs light." in prompt[0]["content"]
    assert len(prompt) == 1 + 10 + 1
    assert [m["content"] for m in prompt[1:-1]] == [f"history {i}" for i in range(2, 12)]
    assert prompt[-1] == {"role": "user", "content": "Why are leaves green?"}
    assert [m.document_ids for m in _assistant_messages(services, session.id)] == [[document.id]]


def test_upstream_failure_emits_error_and_persists_nothing(services, provider) -> None:
    provider.fail_after = 1
    turn = _turn(services)

    events = _collect(services.engine.stream(turn))

    assert events[0].delta == provider.pieces[0]
    assert events[-1].done and events[-1].error.startswith("Completion request failed")
    assert json.loads(events[-1].to_sse()[len("data: "):]) == {"delta": "", "done": True, "error": events[-1].error}
    assert _assistant_messages(services, turn.session.id) == []


def test_abandoned_stream_closes_upstream_and_persists_nothing(services, provider) -> None:
    turn = _turn(services)

    async def _consume_one() -> StreamEvent:
        agen = services.engine.stream(turn)
        first = await agen.__anext__()
        await agen.aclose()
        return first

    first = asyncio.run(_consume_one())

    assert first.delta == provider.pieces[0]
    assert provider.closed == 1
    assert _assistant_messages(services, turn.session.id) == []


def test_disconnected_client_stops_stream(services, provider) -> None:
    turn = _turn(services)
    calls = []

    async def disconnected() -> bool:
        calls.append(True)
        return len(calls) > 1

    events = _collect(services.engine.stream(turn, is_disconnected=disconnected))

    assert [event.delta for event in events] == provider.pieces[:1]
    assert provider.closed == 1
    assert _assistant_messages(services, turn.session.id) == []


def test_regenerate_replaces_previous_reply(services, provider) -> None:
    turn = _turn(services)
    _collect(services.engine.stream(turn))
    first_reply = _assistant_messages(services, turn.session.id)[0]

    with pytest.raises(InvalidStateError):
        services.chat.prepare_turn(turn.session)

    provider.pieces = ["A better ", "answer."]
    regenerate = services.chat.prepare_turn(turn.session, regenerate=True)
    assert regenerate.superseded_ids == [first_reply.id]
    _collect(services.engine.stream(regenerate))

    replies = _assistant_messages(services, turn.session.id)
    assert [reply.content for reply in replies] == ["A better answer."]
    assert provider.prompts[1][-1]["content"] == "What does photosynthesis do?"


def test_failed_regenerate_keeps_previous_reply(services, provider) -> None:
    turn = _turn(services)
    _collect(services.engine.stream(turn))

    provider.fail_after = 0
    events = _collect(services.engine.stream(services.chat.prepare_turn(turn.session, regenerate=True)))

    assert events[-1].error is not None
    assert len(_assistant_messages(services, turn.session.id)) == 1


def test_course_overrides_reach_completion_options(services, provider, store) -> None:
    store.upsert_course(
        Course(
            id=COURSE_ID,
            title="Introduction to Biology",
            system_prompt="Always answer with one analogy.",
            model="o3-mini",
            temperature=0.2,
            reasoning_level="HIGH",
        )
    )
    turn = _turn(services)

    _collect(services.engine.stream(turn))

    options = provider.options[-1]
    assert (options.model, options.temperature, options.reasoning_effort) == ("o3-mini", 0.2, "high")
    assert provider.prompts[-1][0]["content"].endswith("Always answer with one analogy.")


def test_session_without_user_message_cannot_be_answered(services) -> None:
    session, _ = services.chat.post_user_message(course_id=COURSE_ID, user_id=USER_ID, content="hi")
    services.store.delete_session(session.id)
    services.store.create_session(session)

    with pytest.raises(InvalidStateError):
        services.chat.prepare_turn(session)


def test_sse_frames_round_trip_through_parser() -> None:
    delta = StreamEvent(delta="Hel")
    terminal = StreamEvent(done=True, finish_reason="stop", message_id="m1")

    assert delta.to_sse() == 'data: {"delta": "Hel", "done": false}\n\n'
    assert parse_sse_line(terminal.to_sse().strip()) == terminal
    assert parse_sse_line(": keep-alive") is None
