"""Health check endpoints."""

from fastapi import APIRouter, Depends

from ...config.settings import Settings
from ..deps import get_app_settings


router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check():
    """Basic health check."""
    return {"status": "healthy", "service": "medrag"}


@router.get("/ready")
async def readiness_check(settings: Settings = Depends(get_app_settings)):
    """
    Readiness check - verifies all dependencies are available.
    """
    uses_openai = settings.embedding_provider.lower() == "openai"

    checks = {
        "embeddings_configured": settings.is_openai_configured() if uses_openai else True,
        "langsmith_configured": settings.is_langsmith_configured(),
    }

    # Tracing is optional
    all_ready = checks["embeddings_configured"]

    return {
        "status": "ready" if all_ready else "degraded",
        "checks": checks,
    }


@router.get("/config")
async def config_info(settings: Settings = Depends(get_app_settings)):
    """
    Configuration info (non-sensitive).
    """
    return {
        "embedding_provider": settings.embedding_provider,
        "embedding_model": (
            settings.openai_embedding_model
            if settings.embedding_provider.lower() == "openai"
            else settings.sentence_transformer_model
        ),
        "chunk_size": settings.chunk_size,
        "chunk_overlap": settings.chunk_overlap,
        "max_chunk_size_for_tables": settings.max_chunk_size_for_tables,
        "page_aware_chunking": settings.page_aware_chunking,
        "similarity_threshold": settings.similarity_threshold,
        "max_search_results": settings.max_search_results,
        "langsmith_project": settings.langchain_project if settings.is_langsmith_configured() else None,
        "langsmith_enabled": settings.is_langsmith_configured(),
    }
