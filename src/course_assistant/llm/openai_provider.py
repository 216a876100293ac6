"""OpenAI chat completions backend."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

from openai import AsyncOpenAI, OpenAI, OpenAIError

from ..errors import UpstreamCompletionError
from .base import ChatPayload, CompletionChunk, CompletionOptions, CompletionProvider

LOGGER = logging.getLogger(__name__)

REASONING_MODEL_PREFIXES = ("o1", "o3", "o4", "gpt-5")


def supports_reasoning_effort(model: str) -> bool:
    return model.lower().startswith(REASONING_MODEL_PREFIXES)


class OpenAICompletionProvider(CompletionProvider):
    """Blocking and streaming completions through the OpenAI API."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[OpenAI] = None,
        async_client: Optional[AsyncOpenAI] = None,
    ) -> None:
        client_kwargs: dict[str, Any] = {"api_key": api_key, "base_url": base_url}
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        self._client = client or OpenAI(**client_kwargs)
        self._async_client = async_client or AsyncOpenAI(**client_kwargs)

    def _request_kwargs(self, messages: ChatPayload, options: CompletionOptions) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": options.model, "messages": list(messages)}
        if supports_reasoning_effort(options.model):
            # reasoning models reject temperature and max_tokens
            kwargs["max_completion_tokens"] = options.max_tokens
            if options.reasoning_effort:
                kwargs["reasoning_effort"] = options.reasoning_effort
        else:
            kwargs["temperature"] = options.temperature
            kwargs["max_tokens"] = options.max_tokens
        return kwargs

    def complete(self, messages: ChatPayload, options: CompletionOptions) -> str:
        try:
            response = self._client.chat.completions.create(
                **self._request_kwargs(messages, options)
            )
        except OpenAIError as error:
            LOGGER.error("OpenAI completion failed: %s", error)
            raise UpstreamCompletionError(f"Completion request failed: {error}", cause=error)
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def stream(
        self, messages: ChatPayload, options: CompletionOptions
    ) -> AsyncIterator[CompletionChunk]:
        try:
            stream = await self._async_client.chat.completions.create(
                **self._request_kwargs(messages, options), stream=True
            )
        except OpenAIError as error:
            LOGGER.error("OpenAI streaming request failed: %s", error)
            raise UpstreamCompletionError(f"Completion request failed: {error}", cause=error)

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta.content if choice.delta is not None else None
                if delta or choice.finish_reason:
                    yield CompletionChunk(delta=delta or "", finish_reason=choice.finish_reason)
        except OpenAIError as error:
            LOGGER.error("OpenAI stream interrupted: %s", error)
            raise UpstreamCompletionError(f"Completion stream failed: {error}", cause=error)
        finally:
            await stream.close()
