"""Pydantic schemas for the document layer."""

from .chunk import Chunk, ChunkResult, PageSpan, Span
from .document import (
    DocumentRecord,
    DocumentStatus,
    ExtractedSource,
    compute_content_hash,
)
from .job import STATUS_ORDER, ProcessingStatus, ProcessingUpdate
from .search import (
    MODE_ALIASES,
    HybridWeighting,
    ScoredRow,
    SearchDetails,
    SearchMode,
    SearchOptions,
    SearchResponse,
    SearchResult,
    WeightSelection,
)
from .table import ExtractedTable, Table, TableCategory

__all__ = [
    "Chunk",
    "ChunkResult",
    "PageSpan",
    "Span",
    "DocumentRecord",
    "DocumentStatus",
    "ExtractedSource",
    "compute_content_hash",
    "STATUS_ORDER",
    "ProcessingStatus",
    "ProcessingUpdate",
    "MODE_ALIASES",
    "HybridWeighting",
    "ScoredRow",
    "SearchDetails",
    "SearchMode",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "WeightSelection",
    "ExtractedTable",
    "Table",
    "TableCategory",
]
