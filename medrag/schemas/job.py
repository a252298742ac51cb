"""Processing job states and progress events."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .document import utcnow


class ProcessingStatus(str, Enum):
    """Ingestion job state, in pipeline order."""

    QUEUED = "queued"
    EXTRACTING_TEXT = "extracting_text"
    CHUNKING = "chunking"
    GENERATING_EMBEDDINGS = "generating_embeddings"
    STORING_CHUNKS = "storing_chunks"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


# Position of each non-failed state along the linear pipeline
STATUS_ORDER: dict[ProcessingStatus, int] = {
    ProcessingStatus.QUEUED: 0,
    ProcessingStatus.EXTRACTING_TEXT: 1,
    ProcessingStatus.CHUNKING: 2,
    ProcessingStatus.GENERATING_EMBEDDINGS: 3,
    ProcessingStatus.STORING_CHUNKS: 4,
    ProcessingStatus.COMPLETED: 5,
}


class ProcessingUpdate(BaseModel):
    """Event delivered to the progress sink."""

    document_id: str
    user_id: str
    filename: Optional[str] = None
    status: ProcessingStatus
    progress: int = Field(..., ge=0, le=100)
    message: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
