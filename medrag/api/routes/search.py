"""Search endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from ...config.settings import Settings
from ...retrieval import RetrievalEngine
from ...schemas.search import SearchMode, SearchOptions, SearchResponse
from ...schemas.table import TableCategory
from ..deps import get_app_settings, get_engine


router = APIRouter(prefix="/search", tags=["search"])


class SearchRequest(BaseModel):
    """Search request. Query and mode are validated by the engine."""

    query: str = Field(default="", description="Free-text query")
    user_id: str = Field(default="", description="Only this user's documents are searched")
    mode: str = Field(
        default="hybrid",
        description="semantic, lexical (keyword), hybrid, or structured (medical_tables)",
    )
    max_results: Optional[int] = Field(default=None, ge=1, le=100)
    similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    category: Optional[TableCategory] = Field(
        default=None,
        description="Table category filter (structured mode only)",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "query": "glucose level",
                "user_id": "user_123",
                "mode": "hybrid",
                "max_results": 5,
            }
        },
    )

    def to_options(self, settings: Settings) -> SearchOptions:
        return SearchOptions(
            threshold=(
                self.similarity_threshold
                if self.similarity_threshold is not None
                else settings.similarity_threshold
            ),
            max_results=self.max_results or settings.max_search_results,
            category=self.category,
        )


@router.post("", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    engine: RetrievalEngine = Depends(get_engine),
    settings: Settings = Depends(get_app_settings),
):
    """Search a user's completed documents."""
    return await engine.search_detailed(
        request.query,
        request.user_id,
        request.mode,
        request.to_options(settings),
    )


@router.post("/tables", response_model=SearchResponse)
async def search_tables(
    request: SearchRequest,
    engine: RetrievalEngine = Depends(get_engine),
    settings: Settings = Depends(get_app_settings),
):
    """Structured search over classified medical tables."""
    return await engine.search_detailed(
        request.query,
        request.user_id,
        SearchMode.STRUCTURED,
        request.to_options(settings),
    )
