"""
Search modes, datastore rows, and ranked results.

The hybrid weighting policy lives here as data so that it can be tuned
from configuration and inspected in search responses.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .table import TableCategory


class SearchMode(str, Enum):
    """Closed set of retrieval modes."""

    SEMANTIC = "semantic"
    LEXICAL = "lexical"
    HYBRID = "hybrid"
    STRUCTURED = "structured"


# Older clients still send the legacy mode names
MODE_ALIASES: dict[str, SearchMode] = {
    "keyword": SearchMode.LEXICAL,
    "medical_tables": SearchMode.STRUCTURED,
}


class SearchOptions(BaseModel):
    """Per-query tuning."""

    threshold: float = Field(0.3, ge=0.0, le=1.0, description="Minimum semantic similarity")
    max_results: int = Field(5, ge=1, le=100)
    category: Optional[TableCategory] = Field(
        None, description="Table category filter (structured mode only)"
    )


class ScoredRow(BaseModel):
    """A single row returned by a datastore vector or lexical query."""

    id: str
    document_id: str
    text: str
    score: float
    filename: Optional[str] = None
    chunk_index: Optional[int] = None
    pages: list[int] = Field(default_factory=list)
    is_table: bool = False
    category: Optional[TableCategory] = None


class SearchResult(BaseModel):
    """A ranked result with its per-source score components."""

    id: str
    document_id: str
    text: str
    semantic_score: Optional[float] = None
    lexical_score: Optional[float] = None
    combined_score: float
    source_mode: SearchMode
    cross_source: bool = Field(
        False, description="Matched by both the semantic and the lexical sub-query"
    )
    filename: Optional[str] = None
    chunk_index: Optional[int] = None
    pages: list[int] = Field(default_factory=list)
    is_table: bool = False
    category: Optional[TableCategory] = None


class WeightSelection(BaseModel):
    """Weights and threshold chosen for one hybrid merge."""

    semantic_weight: float
    lexical_weight: float
    threshold: float
    good_quality: bool


class HybridWeighting(BaseModel):
    """
    Adaptive weighting policy for hybrid merges.

    Semantic results are judged "good" when any score exceeds
    ``quality_threshold``; the semantic weight then leans toward the
    semantic side, otherwise toward the lexical side. Lexical weight is
    always ``1 - semantic_weight``.
    """

    quality_threshold: float = Field(0.4, ge=0.0, le=1.0)
    semantic_weight_good: float = Field(0.8, ge=0.0, le=1.0)
    semantic_weight_poor: float = Field(0.4, ge=0.0, le=1.0)
    threshold_good: float = Field(0.25, ge=0.0, le=1.0)
    threshold_poor: float = Field(0.2, ge=0.0, le=1.0)

    @classmethod
    def from_settings(cls, settings) -> "HybridWeighting":
        return cls(
            quality_threshold=settings.hybrid_quality_threshold,
            semantic_weight_good=settings.hybrid_semantic_weight_good,
            semantic_weight_poor=settings.hybrid_semantic_weight_poor,
            threshold_good=settings.hybrid_threshold_good,
            threshold_poor=settings.hybrid_threshold_poor,
        )

    def is_good_quality(self, semantic_rows: list[ScoredRow]) -> bool:
        return any(row.score > self.quality_threshold for row in semantic_rows)

    def select(self, semantic_rows: list[ScoredRow]) -> WeightSelection:
        """Pick weights and threshold from the observed semantic results."""
        good = self.is_good_quality(semantic_rows)
        semantic_weight = self.semantic_weight_good if good else self.semantic_weight_poor
        return WeightSelection(
            semantic_weight=semantic_weight,
            lexical_weight=round(1.0 - semantic_weight, 10),
            threshold=self.threshold_good if good else self.threshold_poor,
            good_quality=good,
        )


class SearchDetails(BaseModel):
    """Diagnostics returned alongside results."""

    semantic_count: int = 0
    lexical_count: int = 0
    merged_count: int = 0
    keywords: list[str] = Field(default_factory=list)
    weights: Optional[WeightSelection] = None


class SearchResponse(BaseModel):
    query: str
    mode: SearchMode
    results: list[SearchResult]
    details: SearchDetails = Field(default_factory=SearchDetails)
