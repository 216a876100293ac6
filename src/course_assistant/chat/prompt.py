"""Utilities for constructing completion prompts for a course chat turn."""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

from ..config import Settings
from ..context import AssembledContext
from ..llm.base import CompletionOptions
from ..models import Course, Message, MessageRole

_PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"


def _load_template(name: str) -> str:
    """Read and trim the contents of a template file."""
    return (_PROMPTS_DIR / name).read_text(encoding="utf-8").strip()


_PERSONA_TEMPLATE = _load_template("persona.txt")
_DEFAULT_PERSONA = _load_template("default_persona.txt")
_CONTEXT_TEMPLATE = _load_template("context.txt")

_ROLE_NAMES = {
    MessageRole.USER: "user",
    MessageRole.ASSISTANT: "assistant",
    MessageRole.SYSTEM: "system",
}


def build_persona(course: Optional[Course]) -> str:
    if course is None:
        return _DEFAULT_PERSONA
    persona = _PERSONA_TEMPLATE.format(
        title=course.title,
        code_suffix=f" ({course.code})" if course.code else "",
        description=course.description or "No description provided",
    )
    if course.system_prompt and course.system_prompt.strip():
        persona = f"{persona}\n\nAdditional instructions from the instructor:\n{course.system_prompt.strip()}"
    return persona


def build_system_prompt(course: Optional[Course], context: Optional[AssembledContext]) -> str:
    persona = build_persona(course)
    if context is None or context.is_empty:
        return persona
    return f"{persona}\n\n{_CONTEXT_TEMPLATE.format(context=context.text)}"


def build_messages(
    system_prompt: str,
    history: Sequence[Message],
    new_message: Message,
    history_limit: int = 10,
) -> list[dict[str, str]]:
    """Return ``[system, *recent history, new message]`` in chat completion format."""

    recent = list(history)[-history_limit:] if history_limit > 0 else []
    messages = [{"role": "system", "content": system_prompt}]
    messages.extend(
        {"role": _ROLE_NAMES[message.role], "content": message.content} for message in recent
    )
    messages.append({"role": _ROLE_NAMES[new_message.role], "content": new_message.content})
    return messages


def resolve_completion_options(course: Optional[Course], settings: Settings) -> CompletionOptions:
    """Course overrides win over the service defaults."""

    options = CompletionOptions(
        model=settings.chat_model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
    if course is not None:
        if course.model:
            options.model = course.model
        if course.temperature is not None:
            options.temperature = course.temperature
        if course.reasoning_level:
            options.reasoning_effort = course.reasoning_level.lower()
    return options


__all__ = [
    "build_messages",
    "build_persona",
    "build_system_prompt",
    "resolve_completion_options",
]
