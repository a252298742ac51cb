"""
Embedding providers.

Providers map text to fixed-length vectors plus token-usage accounting:
- OpenAIEmbeddingProvider: text-embedding-3-small via the OpenAI API,
  with tenacity retries on rate limits and transient network errors
- SentenceTransformerEmbeddingProvider: local sentence-transformers model

Invalid input, auth failures, and rate-limit rejections surface as
``EmbeddingError`` so callers can fail the enclosing operation.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Callable, Optional

import numpy as np
import openai
import tiktoken
from openai import AsyncOpenAI
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config.settings import Settings, get_settings
from .errors import EmbeddingError, EmbeddingRateLimitError
from .utils.parallel import process_in_batches

logger = logging.getLogger(__name__)


RETRYABLE_OPENAI_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
)


class EmbeddingResult(BaseModel):
    vector: list[float]
    tokens_used: int = Field(0, ge=0)


class BatchEmbeddingResult(BaseModel):
    vectors: list[list[float]]
    tokens_used: int = Field(0, ge=0)


class EmbeddingProvider(ABC):
    """Base class for embedding providers."""

    name: str = "base"

    def __init__(self, dimensions: int, max_batch_size: int = 100):
        self.dimensions = dimensions
        self.max_batch_size = max_batch_size

    @abstractmethod
    async def _embed_texts(self, texts: list[str]) -> BatchEmbeddingResult:
        """Embed already-validated texts."""
        pass

    def count_tokens(self, text: str) -> int:
        """Approximate token count (about four characters per token)."""
        return max(1, len(text) // 4)

    def _validate(self, texts: list[str]) -> None:
        if not texts:
            raise EmbeddingError("No texts to embed", status_code=400)
        if len(texts) > self.max_batch_size:
            raise EmbeddingError(
                f"Batch of {len(texts)} exceeds the maximum of {self.max_batch_size}",
                status_code=400,
            )
        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise EmbeddingError(f"Cannot embed empty text at position {i}", status_code=400)

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed a single text."""
        result = await self.embed_batch([text])
        return EmbeddingResult(vector=result.vectors[0], tokens_used=result.tokens_used)

    async def embed_batch(self, texts: list[str]) -> BatchEmbeddingResult:
        """
        Embed a batch of texts in one provider call.

        Raises:
            EmbeddingError: On invalid input or provider failure
        """
        self._validate(texts)
        return await self._embed_texts(texts)


@lru_cache(maxsize=8)
def _encoding_for(model: str):
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("cl100k_base")


def _log_retry(retry_state) -> None:
    logger.warning(
        f"Retrying embedding request (attempt {retry_state.attempt_number}) "
        f"after {retry_state.outcome.exception()}"
    )


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings API client."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        max_batch_size: int = 100,
        max_retries: int = 3,
        timeout: float = 60.0,
    ):
        super().__init__(dimensions=dimensions, max_batch_size=max_batch_size)
        self.api_key = api_key
        self.model = model
        self.max_retries = max_retries
        self.timeout = timeout
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            key = self.api_key or os.getenv("OPENAI_API_KEY")
            if not key:
                raise EmbeddingError(
                    "OpenAI API key not provided. Set OPENAI_API_KEY environment variable.",
                    status_code=401,
                )
            # Retries are handled by tenacity below
            self._client = AsyncOpenAI(api_key=key, timeout=self.timeout, max_retries=0)
        return self._client

    def count_tokens(self, text: str) -> int:
        return len(_encoding_for(self.model).encode(text))

    async def _create(self, inputs: list[str]):
        kwargs = {"model": self.model, "input": inputs}
        if self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimensions

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(RETRYABLE_OPENAI_ERRORS),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                return await self.client.embeddings.create(**kwargs)

    async def _embed_texts(self, texts: list[str]) -> BatchEmbeddingResult:
        inputs = [text.replace("\n", " ") for text in texts]

        try:
            response = await self._create(inputs)
        except openai.RateLimitError as e:
            raise EmbeddingRateLimitError(f"OpenAI rate limit exceeded: {e}") from e
        except openai.AuthenticationError as e:
            raise EmbeddingError("Invalid OpenAI API key", status_code=401) from e
        except openai.BadRequestError as e:
            raise EmbeddingError(f"Invalid embedding request: {e}", status_code=400) from e
        except openai.OpenAIError as e:
            raise EmbeddingError(f"OpenAI embedding request failed: {e}") from e

        vectors = [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
        if len(vectors) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"Embedding has {len(vector)} dimensions, expected {self.dimensions}"
                )

        tokens_used = response.usage.total_tokens if response.usage else 0
        return BatchEmbeddingResult(vectors=vectors, tokens_used=tokens_used)


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Local sentence-transformers model (no API key required)."""

    name = "sentence-transformers"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", max_batch_size: int = 100):
        super().__init__(dimensions=0, max_batch_size=max_batch_size)
        self.model_name = model_name
        self._model = None

    def _get_model(self):
        """Lazy load the embedding model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model_name)
            self.dimensions = self._model.get_sentence_embedding_dimension()
        return self._model

    async def _embed_texts(self, texts: list[str]) -> BatchEmbeddingResult:
        try:
            model = self._get_model()
        except (ImportError, OSError, RuntimeError, ValueError) as e:
            raise EmbeddingError(f"Could not load embedding model {self.model_name}: {e}") from e
        try:
            embeddings = await asyncio.to_thread(
                model.encode,
                texts,
                normalize_embeddings=True,
                show_progress_bar=False,
            )
        except (RuntimeError, ValueError) as e:
            raise EmbeddingError(f"Local embedding failed: {e}") from e

        vectors = np.asarray(embeddings, dtype=np.float32).tolist()
        return BatchEmbeddingResult(
            vectors=vectors,
            tokens_used=sum(self.count_tokens(t) for t in texts),
        )


async def embed_in_batches(
    provider: EmbeddingProvider,
    texts: list[str],
    batch_size: Optional[int] = None,
    max_batch_tokens: Optional[int] = None,
    delay: float = 0.0,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> BatchEmbeddingResult:
    """
    Embed many texts with per-batch size/token ceilings and rate-limit delays.

    Args:
        provider: Embedding provider
        texts: Texts to embed, in order
        batch_size: Items per request (capped at the provider maximum)
        max_batch_tokens: Token budget per request
        delay: Seconds to wait between requests
        on_progress: Called with (embedded, total) after each batch

    Returns:
        Vectors in input order and total tokens used
    """
    size = min(batch_size or provider.max_batch_size, provider.max_batch_size)
    tokens_used = 0

    async def run_batch(batch: list[str]) -> list[list[float]]:
        nonlocal tokens_used
        result = await provider.embed_batch(batch)
        tokens_used += result.tokens_used
        return result.vectors

    vectors = await process_in_batches(
        texts,
        run_batch,
        batch_size=size,
        delay=delay,
        max_weight=max_batch_tokens,
        weigh=provider.count_tokens if max_batch_tokens else None,
        on_progress=on_progress,
        desc="Embedding",
    )
    return BatchEmbeddingResult(vectors=vectors, tokens_used=tokens_used)


def get_embedding_provider(settings: Optional[Settings] = None) -> EmbeddingProvider:
    """
    Build the configured embedding provider.

    Raises:
        ValueError: If the provider name is unknown
    """
    settings = settings or get_settings()
    name = settings.embedding_provider.lower()

    if name == "openai":
        return OpenAIEmbeddingProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_embedding_model,
            dimensions=settings.embedding_dimensions,
            max_batch_size=settings.embedding_max_batch_size,
            max_retries=settings.embedding_max_retries,
            timeout=settings.embedding_timeout,
        )
    if name in ("sentence-transformers", "local"):
        return SentenceTransformerEmbeddingProvider(
            model_name=settings.sentence_transformer_model,
            max_batch_size=settings.embedding_max_batch_size,
        )

    raise ValueError(f"Unknown embedding provider: {settings.embedding_provider}")
