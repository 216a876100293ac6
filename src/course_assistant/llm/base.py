"""Completion provider interface shared by chat streaming and image OCR."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Sequence

ChatPayload = Sequence[dict[str, Any]]

DEFAULT_STUB_RESPONSE = (
    "The assistant model is not configured right now. Please try again later."
)


@dataclass(slots=True)
class CompletionOptions:
    model: str
    temperature: float = 0.7
    max_tokens: int = 2000
    reasoning_effort: Optional[str] = None


@dataclass(slots=True)
class CompletionChunk:
    """One increment of a streamed completion."""

    delta: str = ""
    finish_reason: Optional[str] = None


@dataclass(slots=True)
class ProviderStatus:
    """Structured status information about the configured completion backend."""

    ready: bool
    provider: str
    error: Optional[str] = None


class CompletionProvider(ABC):
    """Common interface exposed by completion backends."""

    name = "base"

    @abstractmethod
    def complete(self, messages: ChatPayload, options: CompletionOptions) -> str:
        """Return the full completion for ``messages``. Blocking."""

    @abstractmethod
    def stream(
        self, messages: ChatPayload, options: CompletionOptions
    ) -> AsyncIterator[CompletionChunk]:
        """Yield completion increments. Closing the iterator aborts the request."""

    def status(self) -> ProviderStatus:
        return ProviderStatus(ready=True, provider=self.name)


class StubCompletionProvider(CompletionProvider):
    """Fallback provider replaying a fixed reply in small pieces."""

    name = "stub"

    def __init__(
        self,
        message: str = DEFAULT_STUB_RESPONSE,
        *,
        piece_size: int = 16,
        reason: str | None = None,
    ) -> None:
        self._message = message
        self._piece_size = max(1, piece_size)
        self._reason = reason or "Completion stub is active (provider not configured)."

    def complete(self, messages: ChatPayload, options: CompletionOptions) -> str:
        return self._message

    async def stream(
        self, messages: ChatPayload, options: CompletionOptions
    ) -> AsyncIterator[CompletionChunk]:
        for start in range(0, len(self._message), self._piece_size):
            await asyncio.sleep(0)
            yield CompletionChunk(delta=self._message[start : start + self._piece_size])
        yield CompletionChunk(finish_reason="stop")

    def status(self) -> ProviderStatus:
        return ProviderStatus(ready=False, provider=self.name, error=self._reason)

    def update_reason(self, reason: str) -> None:
        self._reason = reason
