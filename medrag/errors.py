"""
Error taxonomy.

- Input errors (400): rejected before any partial work is done
- Provider errors: embedding failures, fail-fast
- Store errors: persistence failures, fail-fast
- Retrieval errors (500): downstream failure of a search
- Ingestion errors (500): unexpected failures wrapped during ingestion

The HTTP layer maps ``status_code`` directly onto responses.
"""

from typing import Optional


class RagError(Exception):
    """Base exception for the document layer."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InputError(RagError):
    """Malformed input: empty text, bad query, unsupported mode."""

    status_code = 400


class EmptyDocumentError(InputError):
    """Extracted text (or its chunking) is empty."""


class InvalidQueryError(InputError):
    """Query text, mode, or search options are invalid."""


class UnsupportedSourceError(InputError):
    """File type or size cannot be ingested."""


class InvalidTransitionError(InputError):
    """A processing job was asked to move backwards in its state machine."""


class NotFoundError(RagError):
    """Requested document or job does not exist."""

    status_code = 404


class EmbeddingError(RagError):
    """Embedding provider rejected the request or failed."""

    status_code = 502


class EmbeddingRateLimitError(EmbeddingError):
    """Embedding provider rate limit was exceeded."""

    status_code = 429

    def __init__(self, message: str = "Embedding rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class StoreError(RagError):
    """Datastore read or write failed."""

    status_code = 500


class RetrievalError(RagError):
    """A search could not be completed because a dependency failed."""

    status_code = 500


class IngestionError(RagError):
    """Ingestion aborted by an unexpected failure outside the taxonomy."""

    status_code = 500


class DocumentExistsError(RagError):
    """A caller-chosen document id is already in use."""

    status_code = 409
