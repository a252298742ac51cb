"""
Chunk schema for retrieval units.

Chunks are the atomic units for lexical and vector search. Every chunk
carries its page list and table flag so search results can always be
traced back to the source pages, even when a chunk spans several pages.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Span(BaseModel):
    """Half-open character range ``[start, end)`` within a document's text."""

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "Span":
        if self.end < self.start:
            raise ValueError(f"span end ({self.end}) is before start ({self.start})")
        return self

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, start: int, end: int) -> bool:
        """True if ``[start, end)`` shares at least one character with this span."""
        return start < self.end and self.start < end


class PageSpan(Span):
    """Character range covered by one 1-indexed page."""

    page: int = Field(..., ge=1, description="1-indexed page number")


class ChunkResult(BaseModel):
    """Chunker output, before the chunk is bound to a stored document."""

    index: int = Field(..., ge=0, description="Position of the chunk within the document")
    text: str
    start: int = Field(..., ge=0, description="Offset of the chunk in the source text")
    end: int = Field(..., ge=0)
    pages: list[int] = Field(
        default_factory=list,
        description="Sorted, deduplicated pages overlapped by the chunk; empty without a page map",
    )
    is_table: bool = False

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    @property
    def char_count(self) -> int:
        return len(self.text)


class Chunk(BaseModel):
    """
    A persisted retrieval unit.

    Immutable after ingestion except for late embedding attachment.
    """

    chunk_id: str = Field(
        ...,
        description="Unique identifier: {document_id}_chunk_{index}",
        examples=["3f2c9a_chunk_0", "3f2c9a_chunk_42"],
    )
    document_id: str = Field(..., description="Parent document identifier")
    chunk_index: int = Field(..., ge=0)
    text: str = Field(..., description="Chunk text content (for indexing)")
    word_count: int = Field(..., ge=0)
    char_count: int = Field(..., ge=0)
    pages: list[int] = Field(default_factory=list)
    is_table: bool = False
    embedding: Optional[list[float]] = Field(
        None,
        description="Embedding vector; chunks without one are invisible to semantic search",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form metadata; always carries the full page list and table flag",
    )

    @property
    def primary_page(self) -> Optional[int]:
        """Single page for simple consumers (lossy for multi-page chunks)."""
        return self.pages[0] if self.pages else None

    @classmethod
    def from_result(
        cls,
        result: ChunkResult,
        document_id: str,
        embedding: Optional[list[float]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> "Chunk":
        """Bind a chunker result to a stored document."""
        meta = dict(metadata or {})
        meta["pages"] = list(result.pages)
        meta["is_table"] = result.is_table
        return cls(
            chunk_id=f"{document_id}_chunk_{result.index}",
            document_id=document_id,
            chunk_index=result.index,
            text=result.text,
            word_count=result.word_count,
            char_count=result.char_count,
            pages=list(result.pages),
            is_table=result.is_table,
            embedding=embedding,
            metadata=meta,
        )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "chunk_id": "3f2c9a_chunk_4",
                "document_id": "3f2c9a",
                "chunk_index": 4,
                "text": "| Test | Result | Range |\n| Glucose | 95 | 70-99 |",
                "word_count": 12,
                "char_count": 51,
                "pages": [2, 3],
                "is_table": True,
                "metadata": {"pages": [2, 3], "is_table": True, "primary_page": 2},
            }
        },
    )
