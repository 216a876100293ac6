"""Client for conversing with the course chat API."""

from .conversation import ClientMessage, ConversationClient, MessageState, TurnPhase
from .transport import ChatTransport, HttpChatTransport, SendAck

__all__ = [
    "ChatTransport",
    "ClientMessage",
    "ConversationClient",
    "HttpChatTransport",
    "MessageState",
    "SendAck",
    "TurnPhase",
]
