"""Datastore contract and the local FAISS/BM25 implementation."""

from .base import DocumentStore
from .local import LocalDocumentStore

__all__ = ["DocumentStore", "LocalDocumentStore"]
