"""
Local document store.

Keeps documents, chunks, and tables in memory with lazily rebuilt FAISS
and BM25 indexes. When a data directory is given, ``flush()`` persists:

    data_dir/
        documents.json
        chunks.jsonl
        tables.jsonl

and the store reloads them on construction.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from ..errors import NotFoundError, StoreError
from ..schemas.chunk import Chunk
from ..schemas.document import DocumentRecord, DocumentStatus, utcnow
from ..schemas.search import ScoredRow
from ..schemas.table import Table, TableCategory
from .base import DocumentStore
from .indexes import LexicalIndex, VectorIndex

logger = logging.getLogger(__name__)


DUPLICATE_STATUSES = (DocumentStatus.COMPLETED, DocumentStatus.PROCESSING)


def save_records(records: list, path: Path) -> None:
    """Save pydantic records to a JSONL file."""
    import jsonlines

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with jsonlines.open(path, mode="w") as writer:
        for record in records:
            writer.write(record.model_dump(mode="json"))


def load_records(path: Path, model) -> list:
    """Load pydantic records from a JSONL file."""
    import jsonlines

    records = []
    with jsonlines.open(path) as reader:
        for obj in reader:
            records.append(model.model_validate(obj))
    return records


class LocalDocumentStore(DocumentStore):
    """
    In-process store backed by FAISS (vectors) and rank_bm25 (lexical).

    Indexes cover every stored row; visibility (completed documents of the
    scope user) is applied at query time.
    """

    def __init__(self, data_dir: Optional[Union[str, Path]] = None):
        super().__init__()
        self.data_dir = Path(data_dir) if data_dir else None

        self._documents: dict[str, DocumentRecord] = {}
        self._chunks: dict[str, list[Chunk]] = {}
        self._tables: dict[str, list[Table]] = {}
        self._dimension: Optional[int] = None

        # Lazy-built indexes, reset on every write
        self._chunk_vectors: Optional[VectorIndex] = None
        self._chunk_lexical: Optional[LexicalIndex] = None
        self._table_vectors: Optional[VectorIndex] = None
        self._table_lexical: Optional[LexicalIndex] = None

        if self.data_dir is not None:
            self.load()

    # Persistence

    @property
    def documents_path(self) -> Path:
        return self.data_dir / "documents.json"

    @property
    def chunks_path(self) -> Path:
        return self.data_dir / "chunks.jsonl"

    @property
    def tables_path(self) -> Path:
        return self.data_dir / "tables.jsonl"

    def load(self) -> None:
        """Load persisted records from the data directory, if present."""
        if self.data_dir is None or not self.documents_path.exists():
            return

        with open(self.documents_path, encoding="utf-8") as f:
            for obj in json.load(f):
                record = DocumentRecord.model_validate(obj)
                self._documents[record.document_id] = record

        if self.chunks_path.exists():
            for chunk in load_records(self.chunks_path, Chunk):
                self._chunks.setdefault(chunk.document_id, []).append(chunk)
                if chunk.embedding and self._dimension is None:
                    self._dimension = len(chunk.embedding)
        if self.tables_path.exists():
            for table in load_records(self.tables_path, Table):
                self._tables.setdefault(table.document_id, []).append(table)

        for chunks in self._chunks.values():
            chunks.sort(key=lambda c: c.chunk_index)

        logger.info(
            f"Loaded {len(self._documents)} documents, "
            f"{sum(len(c) for c in self._chunks.values())} chunks from {self.data_dir}"
        )

    async def flush(self) -> None:
        if self.data_dir is None:
            return

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.documents_path, "w", encoding="utf-8") as f:
                json.dump(
                    [doc.model_dump(mode="json") for doc in self._documents.values()],
                    f,
                    indent=2,
                )
            save_records(self._all_chunks(), self.chunks_path)
            save_records(self._all_tables(), self.tables_path)
        except OSError as e:
            raise StoreError(f"Failed to persist store to {self.data_dir}: {e}") from e

    def _all_chunks(self) -> list[Chunk]:
        return [chunk for chunks in self._chunks.values() for chunk in chunks]

    def _all_tables(self) -> list[Table]:
        return [table for tables in self._tables.values() for table in tables]

    def _invalidate_chunks(self) -> None:
        self._chunk_vectors = None
        self._chunk_lexical = None

    def _invalidate_tables(self) -> None:
        self._table_vectors = None
        self._table_lexical = None

    # Documents

    async def create_document(self, record: DocumentRecord) -> DocumentRecord:
        if record.document_id in self._documents:
            raise StoreError(f"Document {record.document_id} already exists")
        self._documents[record.document_id] = record
        return record

    async def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        return self._documents.get(document_id)

    async def list_documents(self, user_id: str) -> list[DocumentRecord]:
        docs = [d for d in self._documents.values() if d.user_id == user_id]
        return sorted(docs, key=lambda d: d.uploaded_at, reverse=True)

    async def update_status(
        self,
        document_id: str,
        status: DocumentStatus,
        chunks_count: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> DocumentRecord:
        record = self._documents.get(document_id)
        if record is None:
            raise NotFoundError(f"Document not found: {document_id}")

        updates: dict[str, Any] = {"status": status}
        if chunks_count is not None:
            updates["chunks_count"] = chunks_count
        if metadata:
            updates["metadata"] = {**record.metadata, **metadata}
        if status != DocumentStatus.PROCESSING:
            updates["processed_at"] = utcnow()

        updated = record.model_copy(update=updates)
        self._documents[document_id] = updated
        return updated

    async def delete_document(self, document_id: str) -> bool:
        if document_id not in self._documents:
            return False
        del self._documents[document_id]
        self._chunks.pop(document_id, None)
        self._tables.pop(document_id, None)
        self._invalidate_chunks()
        self._invalidate_tables()
        logger.info(f"Deleted document {document_id} with its chunks and tables")
        return True

    async def find_duplicate(
        self,
        user_id: str,
        filename: str,
        file_size: int,
        content_hash: str,
    ) -> Optional[DocumentRecord]:
        matches = [
            doc for doc in self._documents.values()
            if doc.user_id == user_id
            and doc.status in DUPLICATE_STATUSES
            and (
                (doc.filename == filename and doc.file_size == file_size)
                or doc.content_hash == content_hash
            )
        ]
        if not matches:
            return None
        return max(matches, key=lambda d: d.uploaded_at)

    # Chunks

    def _check_dimension(self, vector: Optional[list[float]]) -> None:
        if vector is None:
            return
        if self._dimension is None:
            self._dimension = len(vector)
        elif len(vector) != self._dimension:
            raise StoreError(
                f"Vector dimension mismatch: got {len(vector)}, store uses {self._dimension}"
            )

    async def insert_chunk(self, chunk: Chunk) -> None:
        if chunk.document_id not in self._documents:
            raise StoreError(f"Cannot insert chunk for unknown document {chunk.document_id}")
        chunks = self._chunks.setdefault(chunk.document_id, [])
        if any(c.chunk_index == chunk.chunk_index for c in chunks):
            raise StoreError(
                f"Chunk {chunk.chunk_index} already exists for document {chunk.document_id}"
            )
        self._check_dimension(chunk.embedding)
        chunks.append(chunk)
        chunks.sort(key=lambda c: c.chunk_index)
        self._invalidate_chunks()

    async def get_chunks(self, document_id: str) -> list[Chunk]:
        return list(self._chunks.get(document_id, []))

    def _visible_document_ids(self, scope_id: str) -> set[str]:
        return {
            doc.document_id for doc in self._documents.values()
            if doc.user_id == scope_id and doc.status == DocumentStatus.COMPLETED
        }

    @property
    def chunk_vectors(self) -> Optional[VectorIndex]:
        """Build the chunk vector index lazily."""
        if self._chunk_vectors is None:
            embedded = [c for c in self._all_chunks() if c.embedding]
            if embedded:
                self._chunk_vectors = VectorIndex(
                    [c.chunk_id for c in embedded],
                    [c.embedding for c in embedded],
                )
        return self._chunk_vectors

    @property
    def chunk_lexical(self) -> Optional[LexicalIndex]:
        """Build the chunk BM25 index lazily."""
        if self._chunk_lexical is None:
            chunks = self._all_chunks()
            if chunks:
                self._chunk_lexical = LexicalIndex(
                    [c.chunk_id for c in chunks],
                    [c.text for c in chunks],
                )
        return self._chunk_lexical

    def _chunk_lookup(self) -> dict[str, Chunk]:
        return {c.chunk_id: c for c in self._all_chunks()}

    def _chunk_row(self, chunk: Chunk, score: float) -> ScoredRow:
        doc = self._documents.get(chunk.document_id)
        return ScoredRow(
            id=chunk.chunk_id,
            document_id=chunk.document_id,
            text=chunk.text,
            score=score,
            filename=doc.filename if doc else None,
            chunk_index=chunk.chunk_index,
            pages=list(chunk.pages),
            is_table=chunk.is_table,
        )

    async def vector_query(
        self,
        vector: list[float],
        scope_id: str,
        threshold: float,
        limit: int,
    ) -> list[ScoredRow]:
        index = self.chunk_vectors
        visible = self._visible_document_ids(scope_id)
        if index is None or not visible:
            return []

        lookup = self._chunk_lookup()
        rows: list[ScoredRow] = []
        for chunk_id, score in index.search(vector):
            chunk = lookup[chunk_id]
            if chunk.document_id not in visible or score < threshold:
                continue
            rows.append(self._chunk_row(chunk, score))
            if len(rows) >= limit:
                break
        return rows

    async def lexical_query(
        self,
        tokens: list[str],
        scope_id: str,
        limit: int,
    ) -> list[ScoredRow]:
        index = self.chunk_lexical
        visible = self._visible_document_ids(scope_id)
        if index is None or not visible or not tokens:
            return []

        lookup = self._chunk_lookup()
        allowed = {c.chunk_id for c in lookup.values() if c.document_id in visible}
        return [
            self._chunk_row(lookup[chunk_id], score)
            for chunk_id, score in index.search(tokens, allowed=allowed, top_k=limit)
        ]

    # Tables

    async def insert_table(self, table: Table) -> None:
        if table.document_id not in self._documents:
            raise StoreError(f"Cannot insert table for unknown document {table.document_id}")
        tables = self._tables.setdefault(table.document_id, [])
        if any(t.table_id == table.table_id for t in tables):
            raise StoreError(f"Table {table.table_id} already exists")
        self._check_dimension(table.embedding)
        tables.append(table)
        self._invalidate_tables()

    async def get_tables(self, document_id: str) -> list[Table]:
        return sorted(self._tables.get(document_id, []), key=lambda t: t.table_index)

    @property
    def table_vectors(self) -> Optional[VectorIndex]:
        if self._table_vectors is None:
            embedded = [t for t in self._all_tables() if t.embedding]
            if embedded:
                self._table_vectors = VectorIndex(
                    [t.table_id for t in embedded],
                    [t.embedding for t in embedded],
                )
        return self._table_vectors

    @property
    def table_lexical(self) -> Optional[LexicalIndex]:
        if self._table_lexical is None:
            tables = self._all_tables()
            if tables:
                self._table_lexical = LexicalIndex(
                    [t.table_id for t in tables],
                    [t.searchable_text for t in tables],
                )
        return self._table_lexical

    def _table_candidates(
        self,
        scope_id: str,
        category: Optional[TableCategory],
    ) -> dict[str, Table]:
        visible = self._visible_document_ids(scope_id)
        return {
            t.table_id: t for t in self._all_tables()
            if t.document_id in visible and (category is None or t.category == category)
        }

    def _table_row(self, table: Table, score: float) -> ScoredRow:
        doc = self._documents.get(table.document_id)
        return ScoredRow(
            id=table.table_id,
            document_id=table.document_id,
            text=table.searchable_text,
            score=score,
            filename=doc.filename if doc else None,
            pages=[table.page_number] if table.page_number else [],
            is_table=True,
            category=table.category,
        )

    async def table_vector_query(
        self,
        vector: list[float],
        scope_id: str,
        threshold: float,
        limit: int,
        category: Optional[TableCategory] = None,
    ) -> list[ScoredRow]:
        index = self.table_vectors
        candidates = self._table_candidates(scope_id, category)
        if index is None or not candidates:
            return []

        rows: list[ScoredRow] = []
        for table_id, score in index.search(vector):
            table = candidates.get(table_id)
            if table is None or score < threshold:
                continue
            rows.append(self._table_row(table, score))
            if len(rows) >= limit:
                break
        return rows

    async def table_lexical_query(
        self,
        tokens: list[str],
        scope_id: str,
        limit: int,
        category: Optional[TableCategory] = None,
    ) -> list[ScoredRow]:
        index = self.table_lexical
        candidates = self._table_candidates(scope_id, category)
        if index is None or not candidates or not tokens:
            return []

        return [
            self._table_row(candidates[table_id], score)
            for table_id, score in index.search(tokens, allowed=set(candidates), top_k=limit)
        ]

    # Maintenance

    async def stats(self, user_id: Optional[str] = None) -> dict[str, Any]:
        """Document, chunk, and table statistics (optionally for one user)."""
        docs = [
            d for d in self._documents.values()
            if user_id is None or d.user_id == user_id
        ]
        doc_ids = {d.document_id for d in docs}
        chunks = [c for c in self._all_chunks() if c.document_id in doc_ids]
        tables = [t for t in self._all_tables() if t.document_id in doc_ids]

        by_status = {status.value: 0 for status in DocumentStatus}
        for doc in docs:
            by_status[doc.status.value] += 1

        by_category = {category.value: 0 for category in TableCategory}
        for table in tables:
            by_category[table.category.value] += 1

        return {
            "total_documents": len(docs),
            "documents_by_status": by_status,
            "total_chunks": len(chunks),
            "chunks_with_embeddings": sum(1 for c in chunks if c.embedding),
            "table_chunks": sum(1 for c in chunks if c.is_table),
            "avg_chunk_chars": round(sum(c.char_count for c in chunks) / len(chunks), 1) if chunks else 0.0,
            "avg_chunk_words": round(sum(c.word_count for c in chunks) / len(chunks), 1) if chunks else 0.0,
            "total_tables": len(tables),
            "tables_by_category": by_category,
            "embedding_dimension": self._dimension,
        }
