"""Domain records shared by the store, the ingestion pipeline and chat."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM = "SYSTEM"


@dataclass(slots=True)
class Course:
    """Course configuration consumed by the prompt builder."""

    id: str
    title: str
    code: str = ""
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    reasoning_level: Optional[str] = None


@dataclass(slots=True)
class Document:
    id: str
    user_id: str
    original_name: str
    mime_type: str
    size: int
    storage_url: str
    course_id: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PENDING
    extracted_text: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None


@dataclass(slots=True)
class DocumentChunk:
    id: str
    document_id: str
    chunk_index: int
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ChatSession:
    id: str
    course_id: str
    user_id: str
    title: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Message:
    id: str
    session_id: str
    user_id: str
    role: MessageRole
    content: str
    token_count: Optional[int] = None
    document_ids: list[str] = field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    sequence: int = 0
