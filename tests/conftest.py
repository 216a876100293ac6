"""Shared fixtures: a scripted completion provider, sample files and an app client."""
from __future__ import annotations

import asyncio
import io
from typing import Any, AsyncIterator, Callable, Iterator, Optional, Sequence

import pytest
from fastapi.testclient import TestClient

from course_assistant.config import Settings
from course_assistant.errors import UpstreamCompletionError
from course_assistant.llm.base import CompletionChunk, CompletionOptions, CompletionProvider
from course_assistant.main import app
from course_assistant.models import Course
from course_assistant.rate_limit import RateLimiter
from course_assistant.services import ServiceContainer, build_services, get_services
from course_assistant.store import InMemoryStore

COURSE_ID = "course-101"
USER_ID = "student-1"


class ScriptedProvider(CompletionProvider):
    """Replays ``pieces`` and records every prompt it receives."""

    name = "scripted"

    def __init__(
        self,
        pieces: Sequence[str] = ("Photosynthesis ", "turns light ", "into sugar."),
        *,
        fail_after: Optional[int] = None,
        finish_reason: str = "stop",
        vision_text: str = "Mitochondria are the powerhouse of the cell.",
    ) -> None:
        self.pieces = list(pieces)
        self.fail_after = fail_after
        self.finish_reason = finish_reason
        self.vision_text = vision_text
        self.prompts: list[list[dict[str, Any]]] = []
        self.options: list[CompletionOptions] = []
        self.vision_requests: list[list[dict[str, Any]]] = []
        self.closed = 0
        self.gate: Optional[asyncio.Event] = None

    def complete(self, messages, options: CompletionOptions) -> str:
        self.vision_requests.append(list(messages))
        self.options.append(options)
        return self.vision_text

    async def stream(self, messages, options: CompletionOptions) -> AsyncIterator[CompletionChunk]:
        self.prompts.append(list(messages))
        self.options.append(options)
        try:
            for index, piece in enumerate(self.pieces):
                if self.fail_after is not None and index >= self.fail_after:
                    raise UpstreamCompletionError("Completion request failed: upstream exploded")
                if index == 1 and self.gate is not None:
                    await self.gate.wait()
                await asyncio.sleep(0)
                yield CompletionChunk(delta=piece)
            if self.fail_after is not None and self.fail_after >= len(self.pieces):
                raise UpstreamCompletionError("Completion request failed: upstream exploded")
            yield CompletionChunk(finish_reason=self.finish_reason)
        finally:
            self.closed += 1


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _escape_pdf_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(pages: Sequence[str]) -> bytes:
    """Return a valid PDF with one Helvetica text line per entry in ``pages``."""

    page_count = len(pages)
    font_id = 3 + 2 * page_count
    objects: list[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        (
            "<< /Type /Pages /Kids ["
            + " ".join(f"{3 + 2 * index} 0 R" for index in range(page_count))
            + f"] /Count {page_count} >>"
        ).encode("ascii"),
    ]
    for index, text in enumerate(pages):
        content_id = 4 + 2 * index
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Contents {content_id} 0 R /Resources << /Font << /F1 {font_id} 0 R >> >> >>"
            ).encode("ascii")
        )
        stream = f"BT /F1 12 Tf 72 720 Td ({_escape_pdf_text(text)}) Tj ET".encode("latin-1")
        objects.append(
            b"<< /Length " + str(len(stream)).encode("ascii") + b" >>\nstream\n" + stream + b"\nendstream"
        )
    objects.append(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")

    buffer = io.BytesIO()
    buffer.write(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(buffer.tell())
        buffer.write(f"{number} 0 obj\n".encode("ascii") + body + b"\nendobj\n")
    xref_offset = buffer.tell()
    buffer.write(f"xref\n0 {len(objects) + 1}\n".encode("ascii"))
    buffer.write(b"0000000000 65535 f \n")
    for offset in offsets:
        buffer.write(f"{offset:010d} 00000 n \n".encode("ascii"))
    buffer.write(
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_offset}\n%%EOF\n".encode(
            "ascii"
        )
    )
    return buffer.getvalue()


def build_docx(paragraphs: Sequence[str]) -> bytes:
    from docx import Document

    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_pdf() -> Callable[[Sequence[str]], bytes]:
    return build_pdf


@pytest.fixture
def make_docx() -> Callable[[Sequence[str]], bytes]:
    return build_docx


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        storage_dir=str(tmp_path / "data"),
        log_dir=str(tmp_path / "logs"),
        ingest_workers=2,
        chat_model="gpt-4o-mini",
    )


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.upsert_course(
        Course(
            id=COURSE_ID,
            title="Introduction to Biology",
            code="BIO101",
            description="Cells, energy and life.",
        )
    )
    return store


@pytest.fixture
def services(settings, store, provider, clock) -> Iterator[ServiceContainer]:
    container = build_services(
        settings, store=store, provider=provider, rate_limiter=RateLimiter(clock=clock)
    )
    yield container
    container.worker.shutdown(wait=True)


@pytest.fixture
def client(services) -> Iterator[TestClient]:
    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app, headers={"X-User-Id": USER_ID})
    finally:
        app.dependency_overrides.clear()
