"""
Document records and extracted sources.

A document owns its chunks and tables; deleting it cascades. Only
``completed`` documents are visible to retrieval.
"""

import hashlib
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .chunk import PageSpan
from .table import ExtractedTable


class DocumentStatus(str, Enum):
    """Persisted document lifecycle status."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def compute_content_hash(text: str) -> str:
    """SHA-256 digest of the full extracted text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def new_document_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentRecord(BaseModel):
    """A stored document and its processing outcome."""

    document_id: str = Field(default_factory=new_document_id)
    user_id: str
    filename: str
    file_size: int = Field(0, ge=0)
    file_type: str = "text"
    text_length: int = Field(0, ge=0)
    chunks_count: int = Field(0, ge=0)
    status: DocumentStatus = DocumentStatus.PROCESSING
    content_hash: str
    uploaded_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExtractedSource(BaseModel):
    """
    Output of raw format extraction: text plus optional structure hints.

    Page spans index into ``text``.
    """

    text: str
    tables: list[ExtractedTable] = Field(default_factory=list)
    page_map: Optional[list[PageSpan]] = None
    file_type: str = "text"

    @property
    def page_count(self) -> Optional[int]:
        if not self.page_map:
            return None
        return max(span.page for span in self.page_map)
