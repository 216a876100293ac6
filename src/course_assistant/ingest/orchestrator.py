"""Document lifecycle: upload validation, background processing and reprocessing."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import Settings
from ..errors import (
    AccessDeniedError,
    CorruptInputError,
    CourseAssistantError,
    InvalidStateError,
    NotFoundError,
    OversizeInputError,
    UnsupportedFormatError,
)
from ..logging_config import INGEST_AUDIT_LOGGER
from ..models import Document, DocumentChunk, DocumentStatus, new_id, utcnow
from ..storage import BlobNotFoundError, LocalBlobStorage
from ..store import Store
from .format_detection import SUPPORTED_MIME_TYPES, DocumentFormatDetector
from .models import ParserOptions
from .pipeline import IngestPipeline
from .worker import IngestionWorker

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(INGEST_AUDIT_LOGGER)


@dataclass(slots=True)
class ProcessingResult:
    document_id: str
    success: bool
    chunks_created: int = 0
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


class IngestionOrchestrator:
    """Drives documents from PENDING through PROCESSING to COMPLETED or FAILED."""

    def __init__(
        self,
        store: Store,
        storage: LocalBlobStorage,
        worker: IngestionWorker,
        settings: Settings,
        *,
        pipeline: Optional[IngestPipeline] = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.worker = worker
        self.settings = settings
        self.pipeline = pipeline or IngestPipeline()

    @property
    def parser_options(self) -> ParserOptions:
        return ParserOptions(
            enable_ocr=self.settings.enable_ocr,
            ocr_engine=self.settings.ocr_engine,
            ocr_language=self.settings.ocr_language,
            max_text_length=self.settings.max_text_length,
        )

    def validate_upload(self, mime_type: Optional[str], size: int) -> None:
        if not DocumentFormatDetector.is_supported(mime_type):
            raise UnsupportedFormatError(
                f"Unsupported file type: {mime_type or 'unknown'}. "
                f"Supported types: {', '.join(SUPPORTED_MIME_TYPES)}"
            )
        if size > self.settings.max_upload_bytes:
            limit_mb = self.settings.max_upload_bytes / (1024 * 1024)
            raise OversizeInputError(f"File too large. Maximum size is {limit_mb:g}MB")
        if size == 0:
            raise CorruptInputError("Uploaded file is empty")

    def accept_upload(
        self,
        *,
        user_id: str,
        filename: str,
        mime_type: Optional[str],
        data: bytes,
        course_id: Optional[str] = None,
    ) -> Document:
        """Validate, store and register an upload, then queue it for processing."""

        mime_type = DocumentFormatDetector.resolve_mime(filename, mime_type)
        self.validate_upload(mime_type, len(data))

        storage_url = self.storage.put(filename, data, namespace=user_id)
        document = self.store.add_document(
            Document(
                id=new_id(),
                user_id=user_id,
                course_id=course_id,
                original_name=filename,
                mime_type=mime_type,
                size=len(data),
                storage_url=storage_url,
            )
        )
        AUDIT_LOGGER.info(
            {
                "event": "upload",
                "document_id": document.id,
                "user_id": user_id,
                "file_name": filename,
                "mime_type": mime_type,
                "size": len(data),
            }
        )
        return self._queue(document.id, data)

    def reprocess(self, document_id: str, *, user_id: str, force: bool = False) -> Document:
        document = self.get_document(document_id, user_id=user_id)
        if document.status in (DocumentStatus.PENDING, DocumentStatus.PROCESSING):
            raise InvalidStateError("Document is already queued for processing")
        if document.status is not DocumentStatus.FAILED and not force:
            raise InvalidStateError(
                f"Document is {document.status.value}; pass force=true to reprocess it"
            )
        AUDIT_LOGGER.info({"event": "reprocess", "document_id": document_id, "force": force})
        return self._queue(document_id, None)

    def _queue(self, document_id: str, data: Optional[bytes]) -> Document:
        """Mark the document PROCESSING and hand it to the worker."""

        document = self.store.update_document(
            document_id,
            status=DocumentStatus.PROCESSING,
            processing_started_at=utcnow(),
            error_message=None,
        )
        self.worker.submit(
            self.process,
            document_id,
            data,
            job_name=f"ingest:{document_id}",
            on_error=lambda error: self._mark_failed(document_id, error),
        )
        return document

    def process(self, document_id: str, data: Optional[bytes] = None) -> ProcessingResult:
        """Run the pipeline for one document and record its terminal state.

        When ``data`` is omitted the bytes are read back from storage. New
        chunks replace the previous set only when the run succeeds.
        """

        started = time.perf_counter()
        try:
            document = self.store.update_document(
                document_id,
                status=DocumentStatus.PROCESSING,
                processing_started_at=utcnow(),
                error_message=None,
            )
        except NotFoundError:
            LOGGER.info("Document %s was deleted before processing started", document_id)
            return ProcessingResult(document_id, success=False, error="Document not found")

        try:
            if data is None:
                data = self._load_bytes(document)
            result = self.pipeline.run(data, document.mime_type, self.parser_options)
        except Exception as error:
            if not isinstance(error, CourseAssistantError):
                LOGGER.exception("Unexpected failure processing document %s", document_id)
            self._mark_failed(document_id, error)
            return ProcessingResult(document_id, success=False, error=str(error))

        duration_ms = int((time.perf_counter() - started) * 1000)
        chunk_metadata = {
            key: value
            for key, value in result.parsed.metadata.items()
            if key in ("format", "language", "processing_method", "page_count")
        }
        records = [
            DocumentChunk(
                id=new_id(),
                document_id=document_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                metadata={
                    **chunk_metadata,
                    "char_start": chunk.char_start,
                    "char_end": chunk.char_end,
                },
            )
            for chunk in result.chunks
        ]
        metadata = {
            **result.parsed.metadata,
            "chunk_statistics": result.statistics.as_dict(),
            "chunk_size": result.chunking.chunk_size,
            "chunk_overlap": result.chunking.chunk_overlap,
            "processing_duration_ms": duration_ms,
        }
        try:
            self.store.replace_chunks(
                document_id,
                records,
                document_changes={
                    "status": DocumentStatus.COMPLETED,
                    "extracted_text": result.text,
                    "metadata": metadata,
                    "error_message": None,
                    "processing_completed_at": utcnow(),
                },
            )
        except NotFoundError:
            LOGGER.info("Document %s was deleted during processing", document_id)
            return ProcessingResult(document_id, success=False, error="Document not found")

        LOGGER.info(
            "Processed document %s into %s chunks in %sms", document_id, len(records), duration_ms
        )
        AUDIT_LOGGER.info(
            {
                "event": "processed",
                "document_id": document_id,
                "chunk_count": len(records),
                "duration_ms": duration_ms,
            }
        )
        return ProcessingResult(
            document_id, success=True, chunks_created=len(records), metadata=metadata
        )

    def _load_bytes(self, document: Document) -> bytes:
        try:
            return self.storage.get(document.storage_url)
        except BlobNotFoundError as error:
            raise CorruptInputError(
                f"Stored file for document {document.id} is missing", cause=error
            )

    def _mark_failed(self, document_id: str, error: BaseException) -> None:
        message = str(error) or error.__class__.__name__
        try:
            self.store.update_document(
                document_id,
                status=DocumentStatus.FAILED,
                error_message=message,
                processing_completed_at=utcnow(),
            )
        except NotFoundError:
            LOGGER.info("Document %s was deleted before its failure was recorded", document_id)
            return
        LOGGER.warning("Processing failed for document %s: %s", document_id, message)
        AUDIT_LOGGER.info({"event": "failed", "document_id": document_id, "error": message})

    def get_document(self, document_id: str, *, user_id: str) -> Document:
        document = self.store.get_document(document_id)
        if document is None:
            raise NotFoundError("Document not found")
        if document.user_id != user_id:
            raise AccessDeniedError("You do not have access to this document")
        return document

    def delete_document(self, document_id: str, *, user_id: str) -> None:
        document = self.get_document(document_id, user_id=user_id)
        self.store.delete_document(document_id)
        try:
            self.storage.delete(document.storage_url)
        except (BlobNotFoundError, OSError) as error:
            LOGGER.warning("Could not remove stored file for %s: %s", document_id, error)
        AUDIT_LOGGER.info({"event": "delete", "document_id": document_id, "user_id": user_id})
