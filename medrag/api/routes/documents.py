"""Document ingestion and inspection endpoints."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from ...config.settings import Settings
from ...errors import NotFoundError, UnsupportedSourceError
from ...ingest import IngestionPipeline, IngestResult
from ...schemas.document import DocumentRecord, ExtractedSource
from ...schemas.table import ExtractedTable
from ...sources import source_from_pages, source_from_text
from ...store.base import DocumentStore
from ..deps import get_app_settings, get_pipeline, get_store

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/documents", tags=["documents"])


# =============================================================================
# Request/Response Models
# =============================================================================


class IngestDocumentRequest(BaseModel):
    """Request to ingest already-extracted document text."""

    user_id: str = Field(..., description="Owner of the document")
    filename: str = Field(..., description="Original file name")
    text: str = Field(default="", description="Extracted text (may contain page markers)")
    pages: Optional[list[str]] = Field(
        default=None,
        description="Per-page texts; takes precedence over text",
    )
    tables: list[ExtractedTable] = Field(
        default_factory=list,
        description="Tables extracted by the caller",
    )
    file_type: str = Field(default="text", description="Source format")
    file_size: Optional[int] = Field(default=None, ge=0, description="Original size in bytes")
    document_id: Optional[str] = Field(
        default=None,
        description="Client-chosen id used to follow progress events",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_id": "user_123",
                "filename": "labs.txt",
                "text": "--- Page 1 ---\nTest | Result | Normal Range\nGlucose | 95 | 70-99",
            }
        },
    )

    def to_source(self) -> ExtractedSource:
        if self.pages:
            return source_from_pages(self.pages, tables=self.tables, file_type=self.file_type)
        source = source_from_text(self.text, file_type=self.file_type)
        return source.model_copy(update={"tables": self.tables})


class DeleteDocumentResponse(BaseModel):
    document_id: str
    deleted: bool


# =============================================================================
# Endpoints
# =============================================================================


async def _require_document(store: DocumentStore, document_id: str) -> DocumentRecord:
    record = await store.get_document(document_id)
    if record is None:
        raise NotFoundError(f"Document not found: {document_id}")
    return record


@router.post("", response_model=IngestResult)
async def ingest_document(
    request: IngestDocumentRequest,
    pipeline: IngestionPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_app_settings),
):
    """
    Ingest a document synchronously.

    Returns the existing document with ``duplicate=True`` when the same
    file or the same content was already ingested for this user.
    """
    source = request.to_source()
    size = request.file_size if request.file_size is not None else len(source.text.encode("utf-8"))
    if size > settings.max_file_size:
        raise UnsupportedSourceError(
            f"File too large: {size} bytes exceeds the {settings.max_file_size} byte limit"
        )

    return await pipeline.ingest(
        user_id=request.user_id,
        filename=request.filename,
        source=source,
        file_size=size,
        document_id=request.document_id,
    )


@router.get("", response_model=list[DocumentRecord])
async def list_documents(
    user_id: str = Query(..., description="Owner of the documents"),
    store: DocumentStore = Depends(get_store),
):
    """List a user's documents, newest first."""
    return await store.list_documents(user_id)


@router.get("/{document_id}", response_model=DocumentRecord)
async def get_document(document_id: str, store: DocumentStore = Depends(get_store)):
    """Get one document record."""
    return await _require_document(store, document_id)


@router.get("/{document_id}/chunks")
async def get_document_chunks(
    document_id: str,
    include_embeddings: bool = Query(False),
    store: DocumentStore = Depends(get_store),
) -> list[dict[str, Any]]:
    """Chunks of a document in order."""
    await _require_document(store, document_id)
    exclude = None if include_embeddings else {"embedding"}
    return [
        chunk.model_dump(mode="json", exclude=exclude)
        for chunk in await store.get_chunks(document_id)
    ]


@router.get("/{document_id}/tables")
async def get_document_tables(
    document_id: str,
    store: DocumentStore = Depends(get_store),
) -> list[dict[str, Any]]:
    """Classified tables of a document."""
    await _require_document(store, document_id)
    return [
        table.model_dump(mode="json", exclude={"embedding"})
        for table in await store.get_tables(document_id)
    ]


@router.delete("/{document_id}", response_model=DeleteDocumentResponse)
async def delete_document(document_id: str, store: DocumentStore = Depends(get_store)):
    """Delete a document with its chunks and tables."""
    if not await store.delete_document(document_id):
        raise NotFoundError(f"Document not found: {document_id}")
    await store.flush()
    return DeleteDocumentResponse(document_id=document_id, deleted=True)
