"""Shared fixtures: a deterministic offline embedder and an in-memory store."""

import os
from unittest.mock import patch

import pytest

from medrag.config.settings import get_settings
from medrag.embeddings import BatchEmbeddingResult, EmbeddingProvider
from medrag.observability.tracing import get_tracer
from medrag.store.local import LocalDocumentStore


VOCABULARY = (
    "glucose", "hemoglobin", "cholesterol", "blood", "pressure", "heart",
    "rate", "medication", "aspirin", "dose", "patient", "lorem", "ipsum",
    "result", "test", "normal",
)


class KeywordEmbeddingProvider(EmbeddingProvider):
    """Bag-of-words vectors over a small vocabulary, plus a small bias term."""

    name = "keyword"

    def __init__(self, vocabulary=VOCABULARY, max_batch_size: int = 100):
        super().__init__(dimensions=len(vocabulary) + 1, max_batch_size=max_batch_size)
        self.vocabulary = vocabulary
        self.calls: list[list[str]] = []

    def vector_for(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.vocabulary] + [0.1]

    async def _embed_texts(self, texts: list[str]) -> BatchEmbeddingResult:
        self.calls.append(list(texts))
        return BatchEmbeddingResult(
            vectors=[self.vector_for(t) for t in texts],
            tokens_used=sum(self.count_tokens(t) for t in texts),
        )


@pytest.fixture(autouse=True)
def isolated_settings():
    """Run every test against default settings with tracing off."""
    with patch.dict(os.environ, {}, clear=True):
        get_settings.cache_clear()
        get_tracer.cache_clear()
        yield
    get_settings.cache_clear()
    get_tracer.cache_clear()


@pytest.fixture
def embedder() -> KeywordEmbeddingProvider:
    return KeywordEmbeddingProvider()


@pytest.fixture
def store() -> LocalDocumentStore:
    return LocalDocumentStore()
