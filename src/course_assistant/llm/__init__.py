"""Completion provider selection."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import Settings, get_settings
from .base import (
    CompletionChunk,
    CompletionOptions,
    CompletionProvider,
    ProviderStatus,
    StubCompletionProvider,
)
from .openai_provider import OpenAICompletionProvider

LOGGER = logging.getLogger(__name__)

_GLOBAL_PROVIDER: Optional[CompletionProvider] = None

__all__ = [
    "CompletionChunk",
    "CompletionOptions",
    "CompletionProvider",
    "OpenAICompletionProvider",
    "ProviderStatus",
    "StubCompletionProvider",
    "build_completion_provider",
    "get_completion_provider",
    "reset_completion_provider",
]


def build_completion_provider(settings: Settings) -> CompletionProvider:
    """Return the OpenAI provider, or a stub when it is disabled or unconfigured."""

    if settings.llm_stub:
        LOGGER.warning("LLM_STUB flag enabled; using stub responses only.")
        return StubCompletionProvider(reason="LLM_STUB flag enabled; provider disabled.")

    if not settings.openai_api_key:
        LOGGER.warning("OPENAI_API_KEY is not configured; using stub responses.")
        return StubCompletionProvider(reason="OPENAI_API_KEY is not configured.")

    return OpenAICompletionProvider(
        settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout,
    )


def get_completion_provider() -> CompletionProvider:
    """Return a lazily initialised process-wide provider."""

    global _GLOBAL_PROVIDER

    if _GLOBAL_PROVIDER is None:
        _GLOBAL_PROVIDER = build_completion_provider(get_settings())
    return _GLOBAL_PROVIDER


def reset_completion_provider() -> None:
    global _GLOBAL_PROVIDER
    _GLOBAL_PROVIDER = None
