"""
Main ingestion orchestrator.

Pipeline:
1. Validate extracted text (empty → failed, nothing created)
2. Content hash + duplicate check (same file or same content for the user)
3. Create the document record in ``processing`` state
4. Detect tables/pages and chunk the text
5. Embed chunks in rate-limited batches
6. Insert chunks one by one with metadata
7. Classify, embed, and store medical tables
8. Mark the document ``completed``

Any error (including cancellation) marks both the job and the
document ``failed`` before propagating, so partially written documents
never become visible to retrieval.
"""

import asyncio
import logging
import time
from typing import Any, Optional

from pydantic import BaseModel

from .boundaries import detect_page_markers, detect_table_spans, pages_for_span, parse_table_text
from .chunking import ChunkerConfig, StructureAwareChunker
from .embeddings import EmbeddingProvider, embed_in_batches
from .errors import DocumentExistsError, EmptyDocumentError, IngestionError, RagError, StoreError
from .observability.tracing import traced
from .schemas.chunk import Chunk, ChunkResult, PageSpan, Span
from .schemas.document import (
    DocumentRecord,
    DocumentStatus,
    ExtractedSource,
    compute_content_hash,
    new_document_id,
)
from .schemas.table import ExtractedTable
from .store.base import DocumentStore
from .tables import TableProcessor, detect_content_type, has_medical_terms, has_regulatory_terms
from .tracker import JobHandle, ProcessingTracker

logger = logging.getLogger(__name__)


# Emit a storing-progress event every N chunks
STORE_PROGRESS_EVERY = 10


class IngestResult(BaseModel):
    """Result of ingesting one document."""

    document_id: str
    user_id: str
    filename: str
    status: DocumentStatus
    chunks_count: int = 0
    tables_stored: int = 0
    tables_skipped: int = 0
    tokens_used: int = 0
    page_count: Optional[int] = None
    duplicate: bool = False
    processing_time_ms: int = 0


class IngestionPipeline:
    """
    Sequential per-document ingestion.

    Distinct documents may be ingested concurrently; they share nothing but
    the store.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingProvider,
        tracker: Optional[ProcessingTracker] = None,
        chunker_config: Optional[ChunkerConfig] = None,
        batch_size: int = 100,
        max_batch_tokens: Optional[int] = None,
        batch_delay: float = 0.0,
    ):
        self.store = store
        self.embedder = embedder
        self.tracker = tracker or ProcessingTracker()
        self.chunker = StructureAwareChunker(chunker_config)
        self.table_processor = TableProcessor(embedder, store)
        self.batch_size = batch_size
        self.max_batch_tokens = max_batch_tokens
        self.batch_delay = batch_delay

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        embedder: EmbeddingProvider,
        tracker: Optional[ProcessingTracker],
        settings,
    ) -> "IngestionPipeline":
        return cls(
            store,
            embedder,
            tracker=tracker,
            chunker_config=ChunkerConfig.from_settings(settings),
            batch_size=settings.embedding_max_batch_size,
            max_batch_tokens=settings.embedding_max_batch_tokens,
            batch_delay=settings.embedding_batch_delay,
        )

    @traced("ingest_document")
    async def ingest(
        self,
        user_id: str,
        filename: str,
        source: ExtractedSource,
        file_size: Optional[int] = None,
        document_id: Optional[str] = None,
    ) -> IngestResult:
        """
        Ingest one extracted document.

        Args:
            user_id: Owner and retrieval scope
            filename: Original file name
            source: Extracted text with optional tables and page map
            file_size: Original file size in bytes (defaults to text size)
            document_id: Caller-visible id for progress tracking

        Returns:
            IngestResult (``duplicate=True`` when an existing document was reused)

        Raises:
            EmptyDocumentError: No text, or text that yields no chunks
            DocumentExistsError: ``document_id`` names a stored document
            EmbeddingError / StoreError: Provider or persistence failure
            IngestionError: Any other failure, after the document is marked failed
        """
        started = time.monotonic()
        if document_id is None:
            document_id = new_document_id()
        elif await self.store.get_document(document_id) is not None:
            raise DocumentExistsError(f"Document id already in use: {document_id}")
        job = self.tracker.start(document_id, user_id, filename)
        job.extracting_text(source.file_type)

        text = source.text or ""
        if not text.strip():
            message = "No text content could be extracted from the document"
            job.failed(message)
            raise EmptyDocumentError(message)

        content_hash = compute_content_hash(text)
        size = file_size if file_size is not None else len(text.encode("utf-8"))

        try:
            async with self.store.creation_lock(user_id):
                existing = await self.store.find_duplicate(user_id, filename, size, content_hash)
                if existing is None:
                    record = DocumentRecord(
                        document_id=document_id,
                        user_id=user_id,
                        filename=filename,
                        file_size=size,
                        file_type=source.file_type,
                        text_length=len(text),
                        content_hash=content_hash,
                        metadata={
                            "page_count": source.page_count,
                            "extracted_tables": len(source.tables),
                        },
                    )
                    await self.store.create_document(record)
        except RagError as e:
            job.failed(e.message)
            raise
        except Exception as e:
            job.failed(str(e))
            raise StoreError(f"Could not register document: {e}") from e

        if existing is not None:
            return await self._reuse_duplicate(existing, job, user_id, filename, started)

        try:
            return await self._process(record, source, job, started)
        except asyncio.CancelledError:
            logger.warning(f"Ingestion of {filename} ({document_id}) cancelled")
            job.failed("Processing cancelled")
            await self._mark_failed(document_id, "Processing cancelled")
            raise
        except RagError as e:
            logger.error(f"Ingestion of {filename} ({document_id}) failed: {e}")
            job.failed(e.message)
            await self._mark_failed(document_id, e.message)
            raise
        except Exception as e:
            logger.exception(f"Ingestion of {filename} ({document_id}) failed unexpectedly")
            message = f"Ingestion failed: {e}"
            job.failed(message)
            await self._mark_failed(document_id, message)
            raise IngestionError(message) from e

    async def _reuse_duplicate(
        self,
        existing: DocumentRecord,
        job: JobHandle,
        user_id: str,
        filename: str,
        started: float,
    ) -> IngestResult:
        chunks = await self.store.get_chunks(existing.document_id)
        logger.info(
            f"Duplicate upload of {filename}: reusing document {existing.document_id} "
            f"({len(chunks)} chunks)"
        )
        elapsed_ms = int((time.monotonic() - started) * 1000)
        job.completed(
            len(chunks),
            elapsed_ms,
            {"duplicate": True, "existing_document_id": existing.document_id},
        )
        return IngestResult(
            document_id=existing.document_id,
            user_id=user_id,
            filename=existing.filename,
            status=existing.status,
            chunks_count=len(chunks),
            page_count=existing.metadata.get("page_count"),
            duplicate=True,
            processing_time_ms=elapsed_ms,
        )

    async def _process(
        self,
        record: DocumentRecord,
        source: ExtractedSource,
        job: JobHandle,
        started: float,
    ) -> IngestResult:
        document_id = record.document_id
        text = source.text

        page_map = source.page_map
        if not page_map and self.chunker.config.page_aware:
            page_map = detect_page_markers(text) or None

        job.chunking(len(text))
        table_spans = detect_table_spans(text) if self.chunker.config.detect_tables else []
        results = self.chunker.chunk(text, page_map=page_map, table_spans=table_spans)
        if not results:
            raise EmptyDocumentError("Document text produced no chunks")
        job.chunking_progress(len(results), len(results))

        job.generating_embeddings(len(results))
        embedded = await embed_in_batches(
            self.embedder,
            [r.text for r in results],
            batch_size=self.batch_size,
            max_batch_tokens=self.max_batch_tokens,
            delay=self.batch_delay,
            on_progress=job.embedding_progress,
        )

        job.storing_chunks(len(results))
        for done, (result, vector) in enumerate(zip(results, embedded.vectors), start=1):
            chunk = Chunk.from_result(
                result,
                document_id,
                embedding=vector,
                metadata=self._chunk_metadata(result),
            )
            await self.store.insert_chunk(chunk)
            if done % STORE_PROGRESS_EVERY == 0 or done == len(results):
                job.storing_progress(done, len(results))

        tables = source.tables or self._tables_from_spans(text, table_spans, page_map)
        table_result = await self.table_processor.process(document_id, tables)

        tokens_used = embedded.tokens_used + table_result.tokens_used
        await self.store.update_status(
            document_id,
            DocumentStatus.COMPLETED,
            chunks_count=len(results),
            metadata={
                "tables_stored": table_result.stored_count,
                "tables_skipped": table_result.skipped,
                "tokens_used": tokens_used,
            },
        )
        await self.store.flush()

        elapsed_ms = int((time.monotonic() - started) * 1000)
        job.completed(
            len(results),
            elapsed_ms,
            {"tables_stored": table_result.stored_count, "tokens_used": tokens_used},
        )
        logger.info(
            f"Ingested {record.filename} as {document_id}: {len(results)} chunks, "
            f"{table_result.stored_count} tables in {elapsed_ms}ms"
        )

        return IngestResult(
            document_id=document_id,
            user_id=record.user_id,
            filename=record.filename,
            status=DocumentStatus.COMPLETED,
            chunks_count=len(results),
            tables_stored=table_result.stored_count,
            tables_skipped=table_result.skipped,
            tokens_used=tokens_used,
            page_count=max(page_map, key=lambda p: p.page).page if page_map else None,
            processing_time_ms=elapsed_ms,
        )

    def _chunk_metadata(self, result: ChunkResult) -> dict[str, Any]:
        pages = result.pages
        return {
            "page_count": len(pages),
            "primary_page": pages[0] if pages else None,
            "spans_multiple_pages": len(pages) > 1,
            "start": result.start,
            "end": result.end,
            "content_type": "table" if result.is_table else detect_content_type(result.text),
            "has_medical_terms": has_medical_terms(result.text),
            "has_regulatory": has_regulatory_terms(result.text),
            "tokens_used": self.embedder.count_tokens(result.text),
            "chunking_method": self.chunker.config.method,
        }

    @staticmethod
    def _tables_from_spans(
        text: str,
        spans: list[Span],
        page_map: Optional[list[PageSpan]],
    ) -> list[ExtractedTable]:
        tables = []
        for span in spans:
            pages = pages_for_span(span.start, span.end, page_map)
            table = parse_table_text(text[span.start:span.end], page_number=pages[0] if pages else None)
            if table is not None:
                tables.append(table)
        return tables

    async def _mark_failed(self, document_id: str, reason: str) -> None:
        try:
            await self.store.update_status(
                document_id, DocumentStatus.FAILED, metadata={"error": reason}
            )
            await self.store.flush()
        except RagError as e:
            # The first failure is what propagates to the caller
            logger.error(f"Could not mark document {document_id} as failed: {e}")
