"""
FastAPI application for the medical document layer.

Provides REST endpoints for:
- Ingesting documents and inspecting their chunks and tables
- Semantic, lexical, hybrid, and structured (table) search
- Processing job status and live progress events
- Store statistics and health checks
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config.settings import Settings, configure_logging, get_settings
from ..embeddings import EmbeddingProvider, get_embedding_provider
from ..errors import RagError
from ..ingest import IngestionPipeline
from ..observability.tracing import configure_langsmith, get_tracer
from ..retrieval import RetrievalEngine
from ..store.base import DocumentStore
from ..store.local import LocalDocumentStore
from ..tracker import EventBus, ProcessingTracker
from .routes import documents_router, health_router, jobs_router, search_router, stats_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    configure_logging(app.state.settings.log_level)
    configure_langsmith()
    yield
    # Shutdown
    await app.state.store.flush()


async def rag_error_handler(request: Request, exc: RagError) -> JSONResponse:
    """Map document-layer errors onto HTTP responses."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
        detail = "Internal error while processing the request"
    else:
        detail = exc.message

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail, "error": type(exc).__name__},
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    embedder: Optional[EmbeddingProvider] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings override (default: environment settings)
        store: Document store (default: local store under ``data_dir``)
        embedder: Embedding provider (default: configured provider)
    """
    settings = settings or get_settings()
    store = store or LocalDocumentStore(settings.data_dir)
    embedder = embedder or get_embedding_provider(settings)
    tracer = get_tracer()

    events = EventBus(maxsize=settings.event_queue_size)
    tracker = ProcessingTracker(
        sink=events,
        history_size=settings.tracker_history_size,
        tracer=tracer,
    )

    app = FastAPI(
        title="MedRAG Document API",
        description="Medical document ingestion and hybrid retrieval",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.embedder = embedder
    app.state.events = events
    app.state.tracker = tracker
    app.state.pipeline = IngestionPipeline.from_settings(store, embedder, tracker, settings)
    app.state.engine = RetrievalEngine.from_settings(store, embedder, settings, tracer=tracer)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RagError, rag_error_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(documents_router)
    app.include_router(search_router)
    app.include_router(jobs_router)
    app.include_router(stats_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "medrag",
            "version": __version__,
            "docs": "/docs",
        }

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "medrag.api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
