"""Streams grounded completions and persists finished replies."""
from __future__ import annotations

import logging
import time
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable, Optional

from ..config import Settings
from ..context import ContextAssembler
from ..errors import CourseAssistantError
from ..ingest.chunking import estimate_tokens
from ..llm.base import CompletionProvider
from ..logging_config import CHAT_AUDIT_LOGGER
from ..models import Message, MessageRole, new_id
from ..store import Store
from .events import StreamEvent
from .prompt import build_messages, build_system_prompt, resolve_completion_options
from .service import ChatTurn

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(CHAT_AUDIT_LOGGER)

DisconnectCheck = Callable[[], Awaitable[bool]]


class StreamingChatEngine:
    """Turns a prepared :class:`ChatTurn` into a stream of :class:`StreamEvent`.

    The assistant reply is written to the store only after the provider
    finishes. A stream that errors, or that the consumer abandons, leaves the
    session exactly as it was.
    """

    def __init__(
        self,
        store: Store,
        assembler: ContextAssembler,
        provider: CompletionProvider,
        settings: Settings,
    ) -> None:
        self._store = store
        self._assembler = assembler
        self._provider = provider
        self._settings = settings

    def build_prompt(self, turn: ChatTurn) -> list[dict[str, str]]:
        context = self._assembler.assemble(
            turn.document_ids,
            course_id=turn.session.course_id,
            user_id=turn.session.user_id,
        )
        if context.documents:
            LOGGER.info(
                "Grounding reply on %d document(s), %d chunk(s)",
                len(context.documents),
                context.total_chunks,
            )
        return build_messages(
            build_system_prompt(turn.course, context),
            turn.history,
            turn.new_message,
            self._settings.history_limit,
        )

    async def stream(
        self, turn: ChatTurn, *, is_disconnected: Optional[DisconnectCheck] = None
    ) -> AsyncIterator[StreamEvent]:
        started = time.perf_counter()
        messages = self.build_prompt(turn)
        options = resolve_completion_options(turn.course, self._settings)

        pieces: list[str] = []
        finish_reason: Optional[str] = None
        try:
            async with aclosing(self._provider.stream(messages, options)) as upstream:
                async for chunk in upstream:
                    if is_disconnected is not None and await is_disconnected():
                        LOGGER.info("Client left session %s mid-stream", turn.session.id)
                        self._audit(turn, "cancelled", started)
                        return
                    if chunk.delta:
                        pieces.append(chunk.delta)
                        yield StreamEvent(delta=chunk.delta)
                    if chunk.finish_reason:
                        finish_reason = chunk.finish_reason
                        break
        except CourseAssistantError as error:
            LOGGER.warning("Completion failed for session %s: %s", turn.session.id, error)
            self._audit(turn, "error", started, error=str(error))
            yield StreamEvent(done=True, error=error.message)
            return
        except Exception:
            LOGGER.exception("Unexpected completion failure for session %s", turn.session.id)
            self._audit(turn, "error", started, error="internal")
            yield StreamEvent(done=True, error="Failed to generate response")
            return

        content = "".join(pieces)
        reply = self._store.commit_assistant_message(
            Message(
                id=new_id(),
                session_id=turn.session.id,
                user_id=turn.session.user_id,
                role=MessageRole.ASSISTANT,
                content=content,
                token_count=estimate_tokens(content),
                document_ids=list(turn.document_ids),
            ),
            superseded_ids=turn.superseded_ids,
        )
        self._audit(turn, "completed", started, message_id=reply.id, characters=len(content))
        yield StreamEvent(done=True, finish_reason=finish_reason or "stop", message_id=reply.id)

    def _audit(self, turn: ChatTurn, outcome: str, started: float, **extra: object) -> None:
        AUDIT_LOGGER.info(
            {
                "event": "reply",
                "outcome": outcome,
                "session_id": turn.session.id,
                "user_message_id": turn.new_message.id,
                "regenerate": bool(turn.superseded_ids),
                "duration_ms": int((time.perf_counter() - started) * 1000),
                **extra,
            }
        )
