"""
Table schema for structured table extraction.

Extracted tables arrive as ``ExtractedTable`` payloads validated at the
ingestion boundary. Tables that pass the medical pre-filter become
persisted ``Table`` records with a category, entities, and an embedding of
their searchable text projection.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TableCategory(str, Enum):
    """Domain category assigned by the table classifier."""

    LAB_RESULTS = "lab_results"
    VITAL_SIGNS = "vital_signs"
    MEDICATION = "medication"
    GENERAL = "general"


class ExtractedTable(BaseModel):
    """
    A table as produced by a format extractor or the text boundary detector.

    Rows are normalized to the header width so downstream row/column counts
    always agree with the data.
    """

    headers: list[str] = Field(..., min_length=1)
    rows: list[list[str]] = Field(default_factory=list)
    page_number: Optional[int] = Field(None, ge=1)
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    source: str = Field("text", description="Where the table came from: text, html, json, pdf")

    @field_validator("headers", mode="before")
    @classmethod
    def _stringify_headers(cls, value):
        return [str(h).strip() if h is not None else "" for h in value]

    @field_validator("rows", mode="before")
    @classmethod
    def _stringify_cells(cls, value):
        return [[str(c).strip() if c is not None else "" for c in row] for row in value]

    @model_validator(mode="after")
    def _pad_rows(self) -> "ExtractedTable":
        width = len(self.headers)
        self.rows = [
            (list(row) + [""] * (width - len(row)))[:width]
            for row in self.rows
        ]
        return self


class Table(BaseModel):
    """
    A classified table stored alongside a document's chunks.

    Immutable after creation; deleted with its parent document.
    """

    table_id: str = Field(
        ...,
        description="Unique identifier: {document_id}_t{index}",
        examples=["3f2c9a_t0"],
    )
    document_id: str = Field(..., description="Parent document identifier")
    table_index: int = Field(..., ge=0)
    headers: list[str]
    rows: list[list[str]]
    row_count: int = Field(..., ge=0)
    col_count: int = Field(..., ge=0)
    page_number: Optional[int] = Field(None, ge=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    category: TableCategory = TableCategory.GENERAL
    entities: list[str] = Field(default_factory=list)
    searchable_text: str
    embedding: Optional[list[float]] = None

    @model_validator(mode="after")
    def _check_counts(self) -> "Table":
        if self.row_count != len(self.rows):
            raise ValueError(f"row_count {self.row_count} != {len(self.rows)} rows")
        if self.col_count != len(self.headers):
            raise ValueError(f"col_count {self.col_count} != {len(self.headers)} headers")
        return self

    def to_markdown(self) -> str:
        """Convert table to markdown format for display."""
        lines = []

        lines.append("| " + " | ".join(self.headers) + " |")
        lines.append("| " + " | ".join("---" for _ in self.headers) + " |")

        for row in self.rows:
            padded = list(row) + [""] * (len(self.headers) - len(row))
            lines.append("| " + " | ".join(padded[:len(self.headers)]) + " |")

        return "\n".join(lines)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "table_id": "3f2c9a_t0",
                "document_id": "3f2c9a",
                "table_index": 0,
                "headers": ["Test", "Result", "Reference Range"],
                "rows": [["Glucose", "95 mg/dL", "70-99"], ["HbA1c", "5.4%", "<5.7"]],
                "row_count": 2,
                "col_count": 3,
                "page_number": 2,
                "confidence": 0.95,
                "category": "lab_results",
                "entities": ["glucose", "hba1c", "mg/dl", "reference range", "test", "result"],
                "searchable_text": "Headers: Test, Result, Reference Range\nRow 1: Glucose, 95 mg/dL, 70-99",
            }
        },
    )
