"""Wiring of the store, ingestion, chat and rate limiting components."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .chat.engine import StreamingChatEngine
from .chat.service import ChatService
from .config import Settings, get_settings
from .context import ContextAssembler
from .ingest.extractors import ImageExtractor
from .ingest.orchestrator import IngestionOrchestrator
from .ingest.parser import DocumentParser
from .ingest.pipeline import IngestPipeline
from .ingest.worker import IngestionWorker
from .llm import CompletionProvider, build_completion_provider
from .rate_limit import RateLimiter
from .storage import LocalBlobStorage
from .store import InMemoryStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceContainer:
    settings: Settings
    store: InMemoryStore
    storage: LocalBlobStorage
    worker: IngestionWorker
    orchestrator: IngestionOrchestrator
    assembler: ContextAssembler
    provider: CompletionProvider
    chat: ChatService
    engine: StreamingChatEngine
    rate_limiter: RateLimiter

    async def startup(self) -> None:
        self.rate_limiter.start()

    async def shutdown(self) -> None:
        await self.rate_limiter.stop()
        self.worker.shutdown(wait=True)


def build_services(
    settings: Optional[Settings] = None,
    *,
    store: Optional[InMemoryStore] = None,
    provider: Optional[CompletionProvider] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> ServiceContainer:
    settings = settings or get_settings()
    store = store or InMemoryStore()
    provider = provider or build_completion_provider(settings)

    if settings.courses_file:
        store.load_courses(settings.courses_file)

    storage = LocalBlobStorage(settings.storage_dir)
    worker = IngestionWorker(max_workers=settings.ingest_workers)
    parser = DocumentParser(
        image_extractor=ImageExtractor(provider, vision_model=settings.vision_model)
    )
    orchestrator = IngestionOrchestrator(
        store, storage, worker, settings, pipeline=IngestPipeline(parser)
    )
    assembler = ContextAssembler(store)
    return ServiceContainer(
        settings=settings,
        store=store,
        storage=storage,
        worker=worker,
        orchestrator=orchestrator,
        assembler=assembler,
        provider=provider,
        chat=ChatService(store),
        engine=StreamingChatEngine(store, assembler, provider, settings),
        rate_limiter=rate_limiter
        or RateLimiter(cleanup_interval=settings.rate_limit_cleanup_seconds),
    )


_SERVICES: Optional[ServiceContainer] = None


def get_services() -> ServiceContainer:
    """Return the lazily built process-wide container."""

    global _SERVICES

    if _SERVICES is None:
        _SERVICES = build_services()
        LOGGER.info("Service container initialised (provider=%s)", _SERVICES.provider.name)
    return _SERVICES


async def shutdown_services() -> None:
    global _SERVICES

    services, _SERVICES = _SERVICES, None
    if services is not None:
        await services.shutdown()
