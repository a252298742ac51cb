"""Observability: LangSmith tracing for searches and ingestion jobs."""

from .tracing import RagTracer, configure_langsmith, get_tracer, traced

__all__ = [
    "RagTracer",
    "configure_langsmith",
    "get_tracer",
    "traced",
]
