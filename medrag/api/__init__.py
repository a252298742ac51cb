"""HTTP API for document ingestion and search."""

from .main import create_app

__all__ = ["create_app"]
