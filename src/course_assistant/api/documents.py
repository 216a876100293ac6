"""API router for uploading and managing course documents."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from pydantic import BaseModel, Field

from ..models import Document, DocumentStatus
from ..rate_limit import FILE_UPLOAD
from ..services import ServiceContainer, get_services
from .deps import get_current_user_id

router = APIRouter(prefix="/documents", tags=["documents"])


class DocumentResponse(BaseModel):
    id: str
    original_name: str
    mime_type: str
    size: int
    status: DocumentStatus
    course_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None


class ChunkResponse(BaseModel):
    id: str
    chunk_index: int
    content: str
    metadata: dict[str, Any]


class DocumentDetailResponse(DocumentResponse):
    extracted_text: Optional[str] = None
    chunk_count: int = 0
    chunks: Optional[list[ChunkResponse]] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class DocumentListResponse(BaseModel):
    documents: list[DocumentResponse]
    pagination: Pagination


class SearchMatch(BaseModel):
    document_id: str
    document_name: str
    chunk: ChunkResponse


class SearchResponse(BaseModel):
    query: str
    matches: list[SearchMatch]


def _serialise(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        original_name=document.original_name,
        mime_type=document.mime_type,
        size=document.size,
        status=document.status,
        course_id=document.course_id,
        error_message=document.error_message,
        metadata=document.metadata,
        created_at=document.created_at,
        updated_at=document.updated_at,
        processing_started_at=document.processing_started_at,
        processing_completed_at=document.processing_completed_at,
    )


@router.post("", response_model=DocumentResponse, status_code=201)
async def upload_document(
    response: Response,
    file: UploadFile = File(...),
    course_id: Optional[str] = Form(None),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> DocumentResponse:
    """Store an upload and queue it for background processing."""

    limit = services.rate_limiter.enforce(user_id, FILE_UPLOAD)
    response.headers.update(limit.headers())

    data = await file.read()
    document = services.orchestrator.accept_upload(
        user_id=user_id,
        filename=file.filename or "upload",
        mime_type=file.content_type,
        data=data,
        course_id=course_id,
    )
    return _serialise(document)


@router.get("", response_model=DocumentListResponse)
def list_documents(
    course_id: Optional[str] = None,
    status: Optional[DocumentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> DocumentListResponse:
    documents, total = services.store.list_documents(
        user_id=user_id,
        course_id=course_id,
        status=status,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return DocumentListResponse(
        documents=[_serialise(document) for document in documents],
        pagination=Pagination(page=page, limit=limit, total=total, pages=-(-total // limit)),
    )


@router.get("/search", response_model=SearchResponse)
def search_documents(
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> SearchResponse:
    matches = services.assembler.search_chunks(q, user_id=user_id, limit=limit)
    return SearchResponse(
        query=q,
        matches=[
            SearchMatch(
                document_id=match.document.id,
                document_name=match.document.original_name,
                chunk=ChunkResponse(
                    id=match.chunk.id,
                    chunk_index=match.chunk.chunk_index,
                    content=match.chunk.content,
                    metadata=match.chunk.metadata,
                ),
            )
            for match in matches
        ],
    )


@router.get("/{document_id}", response_model=DocumentDetailResponse)
def get_document(
    document_id: str,
    include_chunks: bool = False,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> DocumentDetailResponse:
    document = services.orchestrator.get_document(document_id, user_id=user_id)
    chunks = services.store.get_chunks(document_id)
    return DocumentDetailResponse(
        **_serialise(document).model_dump(),
        extracted_text=document.extracted_text,
        chunk_count=len(chunks),
        chunks=[
            ChunkResponse(
                id=chunk.id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                metadata=chunk.metadata,
            )
            for chunk in chunks
        ]
        if include_chunks
        else None,
    )


@router.delete("/{document_id}", status_code=204)
def delete_document(
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> Response:
    services.orchestrator.delete_document(document_id, user_id=user_id)
    return Response(status_code=204)


@router.post("/{document_id}/reprocess", response_model=DocumentResponse, status_code=202)
def reprocess_document(
    document_id: str,
    force: bool = False,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> DocumentResponse:
    document = services.orchestrator.reprocess(document_id, user_id=user_id, force=force)
    return _serialise(document)
