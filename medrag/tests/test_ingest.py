"""Tests for the ingestion pipeline."""

import asyncio

import pytest

from conftest import KeywordEmbeddingProvider
from medrag.errors import (
    DocumentExistsError,
    EmbeddingError,
    EmptyDocumentError,
    IngestionError,
    StoreError,
)
from medrag.ingest import IngestionPipeline
from medrag.schemas.document import DocumentStatus, ExtractedSource
from medrag.schemas.job import ProcessingStatus
from medrag.schemas.table import ExtractedTable, TableCategory
from medrag.store.local import LocalDocumentStore
from medrag.tracker import EventBus, ProcessingTracker
from medrag.sources import source_from_text


VISIT_TEXT = (
    "--- Page 1 ---\n"
    "Patient visit summary. The patient reports fatigue.\n\n"
    "--- Page 2 ---\n"
    "Lab results follow.\n"
    "| Test | Result | Normal Range |\n"
    "|---|---|---|\n"
    "| Glucose | 95 mg/dL | 70-99 |\n"
    "Follow up in three months."
)


class FailingEmbedder(KeywordEmbeddingProvider):
    def __init__(self, error: BaseException):
        super().__init__()
        self.error = error

    async def _embed_texts(self, texts):
        raise self.error


class BrokenStore(LocalDocumentStore):
    async def insert_chunk(self, chunk):
        raise StoreError("disk full")


@pytest.fixture
def tracker() -> ProcessingTracker:
    return ProcessingTracker()


@pytest.fixture
def pipeline(store, embedder, tracker) -> IngestionPipeline:
    return IngestionPipeline(store, embedder, tracker=tracker)


class TestIngestion:
    """Tests for a successful ingestion."""

    def test_ingest_document(self, pipeline, store, tracker):
        """Test chunks, tables, and status after ingestion."""
        result = asyncio.run(pipeline.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT)))

        assert result.status == DocumentStatus.COMPLETED
        assert result.chunks_count == 3
        assert result.tables_stored == 1
        assert result.page_count == 2
        assert not result.duplicate
        assert result.tokens_used > 0

        record = asyncio.run(store.get_document(result.document_id))
        assert record.status == DocumentStatus.COMPLETED
        assert record.chunks_count == 3
        assert record.processed_at is not None

        chunks = asyncio.run(store.get_chunks(result.document_id))
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert chunks[0].pages == [1, 2]
        assert chunks[0].metadata["spans_multiple_pages"] is True
        assert chunks[0].metadata["has_medical_terms"] is True
        assert chunks[1].is_table
        assert chunks[1].metadata["content_type"] == "table"
        assert chunks[1].metadata["chunking_method"] == "page_aware"
        assert chunks[2].pages == [2]
        assert all(c.embedding for c in chunks)

        tables = asyncio.run(store.get_tables(result.document_id))
        assert len(tables) == 1
        assert tables[0].category == TableCategory.LAB_RESULTS
        assert tables[0].page_number == 2

        final = tracker.get_final_status(result.document_id)
        assert final.status == ProcessingStatus.COMPLETED
        assert final.progress == 100

    def test_progress_events(self, store, embedder):
        """Test the job walks the pipeline states in order."""
        async def run():
            bus = EventBus()
            queue = bus.subscribe("u1")
            pipeline = IngestionPipeline(store, embedder, tracker=ProcessingTracker(sink=bus))
            await pipeline.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT))
            events = []
            while not queue.empty():
                events.append(queue.get_nowait())
            return events

        events = asyncio.run(run())
        statuses = []
        for event in events:
            if not statuses or statuses[-1] != event.status:
                statuses.append(event.status)

        assert statuses == [
            ProcessingStatus.QUEUED,
            ProcessingStatus.EXTRACTING_TEXT,
            ProcessingStatus.CHUNKING,
            ProcessingStatus.GENERATING_EMBEDDINGS,
            ProcessingStatus.STORING_CHUNKS,
            ProcessingStatus.COMPLETED,
        ]
        assert [e.progress for e in events] == sorted(e.progress for e in events)

    def test_source_tables_preferred(self, pipeline, store):
        """Test extractor-provided tables are processed with their pages."""
        table = ExtractedTable(headers=["Test", "Result"], rows=[["HbA1c", "5.4%"]], page_number=3)
        source = ExtractedSource(text="Plain prose about the visit.", tables=[table])

        result = asyncio.run(pipeline.ingest("u1", "report.json", source))

        tables = asyncio.run(store.get_tables(result.document_id))
        assert [t.page_number for t in tables] == [3]
        assert result.chunks_count == 1

    def test_embedding_batches(self, store, embedder, tracker):
        """Test chunks are embedded in batches of the configured size."""
        pipeline = IngestionPipeline(store, embedder, tracker=tracker, batch_size=2)
        source = source_from_text(" ".join(["lorem"] * 400))

        result = asyncio.run(pipeline.ingest("u1", "lorem.txt", source))

        assert result.chunks_count == 3
        assert [len(call) for call in embedder.calls] == [2, 1]

    def test_duplicate_returns_existing(self, pipeline, store):
        """Test re-uploading the same content reuses the document."""
        first = asyncio.run(pipeline.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT)))
        second = asyncio.run(pipeline.ingest("u1", "renamed.txt", source_from_text(VISIT_TEXT)))

        assert second.duplicate
        assert second.document_id == first.document_id
        assert second.chunks_count == first.chunks_count
        assert len(asyncio.run(store.list_documents("u1"))) == 1

    def test_same_content_other_user(self, pipeline, store):
        """Test duplicate detection is per user."""
        asyncio.run(pipeline.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT)))
        other = asyncio.run(pipeline.ingest("u2", "visit.txt", source_from_text(VISIT_TEXT)))

        assert not other.duplicate
        assert len(asyncio.run(store.list_documents("u2"))) == 1


class TestIngestionFailures:
    """Tests for failure handling."""

    def test_empty_text(self, pipeline, store, tracker):
        """Test empty text fails before anything is created."""
        with pytest.raises(EmptyDocumentError):
            asyncio.run(
                pipeline.ingest("u1", "blank.txt", ExtractedSource(text="  \n "), document_id="doc-empty")
            )

        final = tracker.get_final_status("doc-empty")
        assert final.status == ProcessingStatus.FAILED
        assert final.progress == 0
        assert asyncio.run(store.list_documents("u1")) == []

    def test_embedding_failure_marks_failed(self, store, tracker):
        """Test provider errors fail the job and the document."""
        pipeline = IngestionPipeline(store, FailingEmbedder(EmbeddingError("boom")), tracker=tracker)

        with pytest.raises(EmbeddingError, match="boom"):
            asyncio.run(pipeline.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT), document_id="d1"))

        record = asyncio.run(store.get_document("d1"))
        assert record.status == DocumentStatus.FAILED
        assert record.metadata["error"] == "boom"
        assert tracker.get_final_status("d1").status == ProcessingStatus.FAILED

    def test_store_failure_marks_failed(self, embedder, tracker):
        """Test a chunk insert error aborts ingestion."""
        store = BrokenStore()
        pipeline = IngestionPipeline(store, embedder, tracker=tracker)

        with pytest.raises(StoreError, match="disk full"):
            asyncio.run(pipeline.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT), document_id="d1"))

        assert asyncio.run(store.get_document("d1")).status == DocumentStatus.FAILED
        assert tracker.get_final_status("d1").progress == 0

    def test_cancellation_marks_failed(self, store, tracker):
        """Test cancellation fails the job and document, then propagates."""
        pipeline = IngestionPipeline(store, FailingEmbedder(asyncio.CancelledError()), tracker=tracker)

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(pipeline.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT), document_id="d1"))

        assert asyncio.run(store.get_document("d1")).status == DocumentStatus.FAILED
        assert tracker.get_final_status("d1").status == ProcessingStatus.FAILED

    def test_failed_document_not_a_duplicate(self, store, tracker, embedder):
        """Test a failed upload can be retried."""
        failing = IngestionPipeline(store, FailingEmbedder(EmbeddingError("boom")), tracker=tracker)
        with pytest.raises(EmbeddingError):
            asyncio.run(failing.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT)))

        retry = IngestionPipeline(store, embedder, tracker=tracker)
        result = asyncio.run(retry.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT)))

        assert not result.duplicate
        assert result.status == DocumentStatus.COMPLETED

    def test_unexpected_error_marks_failed(self, store, tracker, embedder):
        """Test an error outside the taxonomy still fails the job and the document."""
        pipeline = IngestionPipeline(
            store, FailingEmbedder(OSError("model files missing")), tracker=tracker
        )

        with pytest.raises(IngestionError, match="model files missing"):
            asyncio.run(pipeline.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT), document_id="d1"))

        record = asyncio.run(store.get_document("d1"))
        assert record.status == DocumentStatus.FAILED
        assert "model files missing" in record.metadata["error"]
        assert tracker.get_final_status("d1").status == ProcessingStatus.FAILED
        assert tracker.get_job_status("d1") is None

        retry = IngestionPipeline(store, embedder, tracker=tracker)
        result = asyncio.run(retry.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT)))
        assert not result.duplicate
        assert result.status == DocumentStatus.COMPLETED


class TestDocumentIds:
    """Tests for caller-chosen document ids."""

    def test_reused_id_rejected(self, pipeline, store, tracker):
        """Test a second ingestion under a used id leaves the first untouched."""
        asyncio.run(pipeline.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT), document_id="d1"))
        chunks_before = asyncio.run(store.get_chunks("d1"))

        with pytest.raises(DocumentExistsError):
            asyncio.run(
                pipeline.ingest("u1", "other.txt", source_from_text("Different notes."), document_id="d1")
            )

        record = asyncio.run(store.get_document("d1"))
        assert record.status == DocumentStatus.COMPLETED
        assert record.filename == "visit.txt"
        assert len(asyncio.run(store.get_chunks("d1"))) == len(chunks_before)
        assert tracker.get_final_status("d1").status == ProcessingStatus.COMPLETED


class TestCreationLock:
    """Tests for the per-user document creation lock."""

    def test_locks_released_after_ingest(self, pipeline, store):
        """Test no lock entries outlive the ingestions that used them."""
        asyncio.run(pipeline.ingest("u1", "visit.txt", source_from_text(VISIT_TEXT)))
        asyncio.run(pipeline.ingest("u2", "visit.txt", source_from_text(VISIT_TEXT)))

        assert store._creation_locks == {}

    def test_same_user_serialized(self, store):
        """Test creation for one user waits whatever the content."""
        order = []

        async def hold():
            async with store.creation_lock("u1"):
                order.append("first-in")
                await asyncio.sleep(0.05)
                order.append("first-out")

        async def follow():
            await asyncio.sleep(0.01)
            async with store.creation_lock("u1"):
                order.append("second-in")

        async def run():
            await asyncio.gather(hold(), follow())

        asyncio.run(run())

        assert order == ["first-in", "first-out", "second-in"]
        assert store._creation_locks == {}

    def test_other_users_not_blocked(self, store):
        """Test different users create documents independently."""
        order = []

        async def hold():
            async with store.creation_lock("u1"):
                order.append("u1-in")
                await asyncio.sleep(0.05)
                order.append("u1-out")

        async def other():
            await asyncio.sleep(0.01)
            async with store.creation_lock("u2"):
                order.append("u2-in")

        async def run():
            await asyncio.gather(hold(), other())

        asyncio.run(run())

        assert order == ["u1-in", "u2-in", "u1-out"]
