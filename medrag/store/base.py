"""
Datastore contract consumed by ingestion and retrieval.

Query methods only ever see ``completed`` documents belonging to the scope
user; partially ingested documents are invisible to search.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, Optional

from ..schemas.chunk import Chunk
from ..schemas.document import DocumentRecord, DocumentStatus
from ..schemas.search import ScoredRow
from ..schemas.table import Table, TableCategory


class DocumentStore(ABC):
    """Abstract async document/chunk/table store."""

    def __init__(self):
        self._creation_locks: dict[str, list] = {}

    # Documents

    @abstractmethod
    async def create_document(self, record: DocumentRecord) -> DocumentRecord:
        pass

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        pass

    @abstractmethod
    async def list_documents(self, user_id: str) -> list[DocumentRecord]:
        """Documents of a user, newest first."""
        pass

    @abstractmethod
    async def update_status(
        self,
        document_id: str,
        status: DocumentStatus,
        chunks_count: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> DocumentRecord:
        pass

    @abstractmethod
    async def delete_document(self, document_id: str) -> bool:
        """Delete a document with its chunks and tables."""
        pass

    @abstractmethod
    async def find_duplicate(
        self,
        user_id: str,
        filename: str,
        file_size: int,
        content_hash: str,
    ) -> Optional[DocumentRecord]:
        """
        Most recent ``completed``/``processing`` document of the user that
        matches on (filename and size) or on content hash.
        """
        pass

    @asynccontextmanager
    async def creation_lock(self, user_id: str):
        """
        Serialize duplicate check and creation for one user.

        Entries are reference counted and dropped once no task holds or
        waits on them.
        """
        entry = self._creation_locks.get(user_id)
        if entry is None:
            entry = self._creation_locks[user_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._creation_locks[user_id]

    # Chunks

    @abstractmethod
    async def insert_chunk(self, chunk: Chunk) -> None:
        pass

    @abstractmethod
    async def get_chunks(self, document_id: str) -> list[Chunk]:
        """Chunks of a document ordered by chunk index."""
        pass

    @abstractmethod
    async def vector_query(
        self,
        vector: list[float],
        scope_id: str,
        threshold: float,
        limit: int,
    ) -> list[ScoredRow]:
        """Nearest chunks with cosine similarity >= threshold, best first."""
        pass

    @abstractmethod
    async def lexical_query(
        self,
        tokens: list[str],
        scope_id: str,
        limit: int,
    ) -> list[ScoredRow]:
        """Chunks matching any token, ordered by lexical score."""
        pass

    # Tables

    @abstractmethod
    async def insert_table(self, table: Table) -> None:
        pass

    @abstractmethod
    async def get_tables(self, document_id: str) -> list[Table]:
        pass

    @abstractmethod
    async def table_vector_query(
        self,
        vector: list[float],
        scope_id: str,
        threshold: float,
        limit: int,
        category: Optional[TableCategory] = None,
    ) -> list[ScoredRow]:
        pass

    @abstractmethod
    async def table_lexical_query(
        self,
        tokens: list[str],
        scope_id: str,
        limit: int,
        category: Optional[TableCategory] = None,
    ) -> list[ScoredRow]:
        pass

    # Maintenance

    @abstractmethod
    async def stats(self, user_id: Optional[str] = None) -> dict[str, Any]:
        pass

    async def flush(self) -> None:
        """Persist pending writes. No-op for stores that write through."""
        return None
