"""
Application settings with environment variable support.

Configuration is loaded from environment variables with optional .env file.
Chunking, embedding, and hybrid-weighting knobs all live here so that the
adaptive retrieval policy is tunable without code changes.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Embedding provider settings
    embedding_provider: str = Field(
        default="openai", alias="EMBEDDING_PROVIDER"
    )
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_embedding_model: str = Field(
        default="text-embedding-3-small", alias="OPENAI_EMBEDDING_MODEL"
    )
    embedding_dimensions: int = Field(
        default=1536, ge=1, alias="EMBEDDING_DIMENSIONS"
    )
    sentence_transformer_model: str = Field(
        default="all-MiniLM-L6-v2", alias="SENTENCE_TRANSFORMER_MODEL"
    )
    embedding_max_batch_size: int = Field(
        default=100, ge=1, alias="EMBEDDING_MAX_BATCH_SIZE"
    )
    embedding_max_batch_tokens: int = Field(
        default=250_000, ge=1, alias="EMBEDDING_MAX_BATCH_TOKENS"
    )
    embedding_batch_delay: float = Field(
        default=1.0, ge=0.0, alias="EMBEDDING_BATCH_DELAY"
    )
    embedding_max_retries: int = Field(
        default=3, ge=1, alias="EMBEDDING_MAX_RETRIES"
    )
    embedding_timeout: float = Field(
        default=60.0, gt=0.0, alias="EMBEDDING_TIMEOUT"
    )

    # Chunking settings
    chunk_size: int = Field(default=1000, ge=1, alias="RAG_CHUNK_SIZE")
    chunk_overlap: int = Field(default=200, ge=0, alias="RAG_CHUNK_OVERLAP")
    max_chunk_size_for_tables: int = Field(
        default=3000, ge=1, alias="RAG_MAX_CHUNK_SIZE_FOR_TABLES"
    )
    page_aware_chunking: bool = Field(
        default=True, alias="RAG_PAGE_AWARE_CHUNKING"
    )
    preserve_page_boundaries: bool = Field(
        default=False, alias="RAG_PRESERVE_PAGE_BOUNDARIES"
    )
    table_detection_enabled: bool = Field(
        default=True, alias="RAG_TABLE_DETECTION_ENABLED"
    )

    # Search settings
    similarity_threshold: float = Field(
        default=0.3, ge=0.0, le=1.0, alias="RAG_SIMILARITY_THRESHOLD"
    )
    max_search_results: int = Field(
        default=5, ge=1, alias="RAG_MAX_SEARCH_RESULTS"
    )
    max_query_keywords: int = Field(
        default=10, ge=1, alias="RAG_MAX_QUERY_KEYWORDS"
    )

    # Hybrid weighting (lexical weight is always 1 - semantic weight)
    hybrid_quality_threshold: float = Field(
        default=0.4, ge=0.0, le=1.0, alias="HYBRID_QUALITY_THRESHOLD"
    )
    hybrid_semantic_weight_good: float = Field(
        default=0.8, ge=0.0, le=1.0, alias="HYBRID_SEMANTIC_WEIGHT_GOOD"
    )
    hybrid_semantic_weight_poor: float = Field(
        default=0.4, ge=0.0, le=1.0, alias="HYBRID_SEMANTIC_WEIGHT_POOR"
    )
    hybrid_threshold_good: float = Field(
        default=0.25, ge=0.0, le=1.0, alias="HYBRID_THRESHOLD_GOOD"
    )
    hybrid_threshold_poor: float = Field(
        default=0.2, ge=0.0, le=1.0, alias="HYBRID_THRESHOLD_POOR"
    )

    # Upload / storage settings
    max_file_size: int = Field(
        default=10 * 1024 * 1024, ge=1, alias="RAG_MAX_FILE_SIZE"
    )
    data_dir: str = Field(default="data", alias="RAG_DATA_DIR")

    # Progress events
    event_queue_size: int = Field(default=100, ge=1, alias="RAG_EVENT_QUEUE_SIZE")
    tracker_history_size: int = Field(
        default=1024, ge=1, alias="RAG_TRACKER_HISTORY_SIZE"
    )

    # LangSmith settings
    langchain_api_key: Optional[str] = Field(default=None, alias="LANGCHAIN_API_KEY")
    langchain_project: str = Field(default="medrag", alias="LANGCHAIN_PROJECT")
    langchain_tracing_v2: bool = Field(default=True, alias="LANGCHAIN_TRACING_V2")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _check_chunk_overlap(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be less than "
                f"chunk_size ({self.chunk_size})"
            )
        if self.chunk_overlap >= self.max_chunk_size_for_tables:
            raise ValueError(
                "chunk_overlap must be less than max_chunk_size_for_tables"
            )
        return self

    def is_openai_configured(self) -> bool:
        """Check if the OpenAI embedding provider can be used."""
        return self.openai_api_key is not None

    def is_langsmith_configured(self) -> bool:
        """Check if LangSmith is configured."""
        return self.langchain_api_key is not None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for the API server and CLI entry points."""
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
