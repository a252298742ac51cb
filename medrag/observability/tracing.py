"""
LangSmith integration for observability and tracing.

Provides:
- Trace configuration from settings
- A tracer for search and ingestion events
- A decorator for tracing functions

Every method is a no-op unless LANGCHAIN_API_KEY is configured.
"""

import asyncio
import logging
import os
from contextlib import contextmanager
from functools import lru_cache, wraps
from typing import Any, Callable, Optional, TypeVar

from langsmith import Client
from langsmith.run_trees import RunTree

from ..config.settings import get_settings

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def configure_langsmith() -> Optional[Client]:
    """
    Configure LangSmith from settings.

    Required env vars:
    - LANGCHAIN_API_KEY: LangSmith API key
    - LANGCHAIN_PROJECT: Project name (default: "medrag")
    - LANGCHAIN_TRACING_V2: Enable tracing (default: true)

    Returns:
        LangSmith client if configured, None otherwise
    """
    settings = get_settings()

    if not settings.is_langsmith_configured():
        return None

    os.environ["LANGCHAIN_TRACING_V2"] = str(settings.langchain_tracing_v2).lower()
    os.environ["LANGCHAIN_PROJECT"] = settings.langchain_project
    os.environ["LANGCHAIN_API_KEY"] = settings.langchain_api_key

    return Client()


class RagTracer:
    """
    Tracer for document-layer observability.

    Records:
    - Searches (mode, result counts, hybrid weights)
    - Ingestion job transitions
    - Errors
    """

    def __init__(self):
        self._client: Optional[Client] = None
        self._configured = False
        self._project: str = get_settings().langchain_project

    @property
    def client(self) -> Optional[Client]:
        """Lazy-load LangSmith client."""
        if not self._configured:
            self._client = configure_langsmith()
            self._configured = True
        return self._client

    @property
    def is_enabled(self) -> bool:
        return self.client is not None

    @contextmanager
    def span(self, name: str, run_type: str = "chain", **metadata):
        """
        Create a trace span with metadata.

        Args:
            name: Span name
            run_type: LangSmith run type (chain, tool, retriever, etc.)
            **metadata: Additional metadata to attach

        Yields:
            RunTree object for the span, or None when tracing is off
        """
        if not self.is_enabled:
            yield None
            return

        run = RunTree(
            name=name,
            run_type=run_type,
            extra=metadata,
            project_name=self._project,
        )

        try:
            yield run
            run.end()
            run.post()
        except Exception as e:
            run.end(error=str(e))
            run.post()
            raise

    def log_search(
        self,
        query: str,
        mode: str,
        user_id: str,
        num_results: int,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Log a search for debugging and relevance evals.

        Args:
            query: Search query
            mode: Search mode used
            user_id: Scope the search ran in
            num_results: Number of results returned
            details: Sub-query counts and hybrid weights
        """
        if not self.is_enabled:
            return

        self.client.create_run(
            name=f"search_{mode}",
            run_type="retriever",
            project_name=self._project,
            inputs={"query": query, "user_id": user_id},
            outputs={"num_results": num_results, "details": details or {}},
        )

    def log_job_transition(
        self,
        document_id: str,
        from_status: Optional[str],
        to_status: str,
        progress: int,
    ) -> None:
        """Log an ingestion job status transition."""
        if not self.is_enabled:
            return

        self.client.create_run(
            name="ingestion_transition",
            run_type="chain",
            project_name=self._project,
            inputs={"document_id": document_id, "from_status": from_status},
            outputs={"to_status": to_status, "progress": progress},
        )

    def log_error(self, error: Exception, context: dict[str, Any]) -> None:
        """Log an error with context."""
        if not self.is_enabled:
            return

        self.client.create_run(
            name="error",
            run_type="chain",
            project_name=self._project,
            inputs=context,
            outputs={
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
            error=str(error),
        )


@lru_cache()
def get_tracer() -> RagTracer:
    """Get singleton tracer instance."""
    return RagTracer()


def traced(name: Optional[str] = None, run_type: str = "chain"):
    """
    Decorator for tracing functions.

    Example:
        @traced("ingest_document")
        async def ingest(...):
            ...
    """
    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            with get_tracer().span(name or func.__name__, run_type=run_type):
                return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with get_tracer().span(name or func.__name__, run_type=run_type):
                return func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore
        return sync_wrapper  # type: ignore

    return decorator
