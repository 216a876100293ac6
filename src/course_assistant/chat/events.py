"""Server-sent event frames exchanged between the chat endpoint and clients."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(slots=True)
class StreamEvent:
    """One frame of a streamed reply.

    Content frames carry ``delta`` with ``done`` false. Exactly one terminal
    frame ends a stream: either ``finish_reason`` or ``error`` is set.
    """

    delta: str = ""
    done: bool = False
    finish_reason: Optional[str] = None
    error: Optional[str] = None
    message_id: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        if self.error is not None:
            return {"delta": "", "done": True, "error": self.error}
        payload: dict[str, Any] = {"delta": self.delta, "done": self.done}
        if self.done:
            payload["finishReason"] = self.finish_reason
            if self.message_id is not None:
                payload["messageId"] = self.message_id
        return payload

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_payload(), ensure_ascii=False)}\n\n"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "StreamEvent":
        error = payload.get("error")
        return cls(
            delta=payload.get("delta") or "",
            done=bool(payload.get("done")) or error is not None,
            finish_reason=payload.get("finishReason"),
            error=error,
            message_id=payload.get("messageId"),
        )


def parse_sse_line(line: str) -> Optional[StreamEvent]:
    """Decode one ``data:`` line. Comments, blank lines and other fields yield ``None``."""

    if not line.startswith("data:"):
        return None
    body = line[5:].strip()
    if not body:
        return None
    return StreamEvent.from_payload(json.loads(body))
