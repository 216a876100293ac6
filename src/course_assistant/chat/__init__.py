"""Course chat: sessions, prompt assembly and reply streaming."""

from .engine import StreamingChatEngine
from .events import StreamEvent, parse_sse_line
from .service import ChatService, ChatTurn, SessionSummary

__all__ = [
    "ChatService",
    "ChatTurn",
    "SessionSummary",
    "StreamEvent",
    "StreamingChatEngine",
    "parse_sse_line",
]
