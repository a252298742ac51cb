"""Tests for the HTTP API."""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import KeywordEmbeddingProvider
from medrag.api import create_app
from medrag.api.routes.jobs import format_sse
from medrag.config.settings import Settings
from medrag.errors import EmbeddingError
from medrag.schemas.job import ProcessingStatus, ProcessingUpdate
from medrag.store.local import LocalDocumentStore


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


class UnavailableEmbedder(KeywordEmbeddingProvider):
    async def _embed_texts(self, texts):
        raise EmbeddingError("upstream timeout")


def _client(embedder, **settings) -> TestClient:
    app = create_app(
        settings=Settings(**settings),
        store=LocalDocumentStore(),
        embedder=embedder,
    )
    return TestClient(app)


@pytest.fixture
def client(embedder):
    with _client(embedder) as client:
        yield client


@pytest.fixture
def document_id(client) -> str:
    response = client.post(
        "/documents",
        json={"user_id": "u1", "filename": "visit.txt", "text": VISIT_TEXT, "document_id": "doc-1"},
    )
    assert response.status_code == 200
    return response.json()["document_id"]


class TestHealth:
    """Tests for health endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "medrag"}

    def test_ready_without_api_key(self, client):
        """Test readiness degrades when OpenAI is selected but not configured."""
        data = client.get("/health/ready").json()
        assert data["status"] == "degraded"
        assert data["checks"]["embeddings_configured"] is False

    def test_config_hides_secrets(self, client):
        data = client.get("/health/config").json()
        assert data["chunk_size"] == 1000
        assert "openai_api_key" not in data

    def test_request_examples_in_openapi(self, client):
        schemas = client.get("/openapi.json").json()["components"]["schemas"]
        assert schemas["IngestDocumentRequest"]["example"]["filename"] == "labs.txt"
        assert schemas["SearchRequest"]["example"]["mode"] == "hybrid"


class TestDocuments:
    """Tests for document endpoints."""

    def test_ingest(self, client):
        """Test synchronous ingestion result."""
        response = client.post(
            "/documents",
            json={"user_id": "u1", "filename": "visit.txt", "text": VISIT_TEXT},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["chunks_count"] == 3
        assert data["tables_stored"] == 1
        assert data["duplicate"] is False

    def test_ingest_pages(self, client):
        """Test per-page input with caller-supplied tables."""
        response = client.post(
            "/documents",
            json={
                "user_id": "u1",
                "filename": "report.pdf",
                "pages": ["Patient history.", "Medication review."],
                "tables": [{"headers": ["Test", "Result"], "rows": [["HbA1c", "5.4%"]], "page_number": 2}],
                "file_type": "pdf",
            },
        )

        assert response.status_code == 200
        assert response.json()["page_count"] == 2
        assert response.json()["tables_stored"] == 1

    def test_duplicate_upload(self, client, document_id):
        response = client.post(
            "/documents",
            json={"user_id": "u1", "filename": "copy.txt", "text": VISIT_TEXT},
        )
        assert response.json()["duplicate"] is True
        assert response.json()["document_id"] == document_id

    def test_reused_document_id(self, client, document_id):
        response = client.post(
            "/documents",
            json={"user_id": "u1", "filename": "notes.txt", "text": "Other notes.", "document_id": document_id},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "DocumentExistsError"
        assert client.get(f"/documents/{document_id}").json()["status"] == "completed"

    def test_empty_text_rejected(self, client):
        response = client.post("/documents", json={"user_id": "u1", "filename": "blank.txt", "text": "  "})

        assert response.status_code == 400
        assert response.json()["error"] == "EmptyDocumentError"

    def test_oversized_rejected(self, embedder):
        """Test the upload size limit."""
        with _client(embedder, RAG_MAX_FILE_SIZE=10) as client:
            response = client.post(
                "/documents",
                json={"user_id": "u1", "filename": "visit.txt", "text": VISIT_TEXT},
            )

        assert response.status_code == 400
        assert "too large" in response.json()["detail"]

    def test_list_and_get(self, client, document_id):
        listed = client.get("/documents", params={"user_id": "u1"}).json()
        assert [d["document_id"] for d in listed] == [document_id]
        assert client.get("/documents", params={"user_id": "u2"}).json() == []

        record = client.get(f"/documents/{document_id}").json()
        assert record["status"] == "completed"
        assert record["filename"] == "visit.txt"

    def test_chunks_and_tables(self, client, document_id):
        chunks = client.get(f"/documents/{document_id}/chunks").json()
        assert len(chunks) == 3
        assert "embedding" not in chunks[0]
        assert chunks[1]["is_table"] is True

        with_vectors = client.get(
            f"/documents/{document_id}/chunks", params={"include_embeddings": True}
        ).json()
        assert len(with_vectors[0]["embedding"]) == KeywordEmbeddingProvider().dimensions

        tables = client.get(f"/documents/{document_id}/tables").json()
        assert [t["category"] for t in tables] == ["lab_results"]
        assert "embedding" not in tables[0]

    def test_missing_document(self, client):
        response = client.get("/documents/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_delete(self, client, document_id):
        response = client.delete(f"/documents/{document_id}")
        assert response.json() == {"document_id": document_id, "deleted": True}
        assert client.get(f"/documents/{document_id}").status_code == 404
        assert client.delete(f"/documents/{document_id}").status_code == 404

    def test_provider_failure_hides_details(self):
        """Test server-side failures return a generic message."""
        with _client(UnavailableEmbedder()) as client:
            response = client.post(
                "/documents",
                json={"user_id": "u1", "filename": "visit.txt", "text": VISIT_TEXT, "document_id": "d1"},
            )
            record = client.get("/documents/d1").json()

        assert response.status_code == 502
        assert response.json()["detail"] == "Internal error while processing the request"
        assert record["status"] == "failed"


class TestSearch:
    """Tests for search endpoints."""

    def test_hybrid_search(self, client, document_id):
        response = client.post("/search", json={"query": "glucose", "user_id": "u1"})

        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "hybrid"
        assert data["results"][0]["document_id"] == document_id
        assert "Glucose" in data["results"][0]["text"]
        assert data["details"]["keywords"] == ["glucose"]

    def test_keyword_alias(self, client, document_id):
        data = client.post(
            "/search", json={"query": "fatigue", "user_id": "u1", "mode": "keyword"}
        ).json()

        assert data["mode"] == "lexical"
        assert [r["id"] for r in data["results"]] == [f"{document_id}_chunk_0"]

    def test_table_search(self, client, document_id):
        data = client.post(
            "/search/tables",
            json={"query": "glucose", "user_id": "u1", "category": "lab_results"},
        ).json()

        assert data["mode"] == "structured"
        assert data["results"][0]["id"] == f"{document_id}_t0"
        assert data["results"][0]["category"] == "lab_results"

    def test_scoped_to_user(self, client, document_id):
        data = client.post("/search", json={"query": "glucose", "user_id": "u2"}).json()
        assert data["results"] == []

    def test_empty_query(self, client):
        response = client.post("/search", json={"query": " ", "user_id": "u1"})
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidQueryError"

    def test_invalid_mode(self, client):
        response = client.post("/search", json={"query": "glucose", "user_id": "u1", "mode": "fuzzy"})
        assert response.status_code == 400
        assert "Invalid search mode" in response.json()["detail"]


class TestJobsAndStats:
    """Tests for job status and statistics."""

    def test_final_job_status(self, client, document_id):
        data = client.get(f"/jobs/{document_id}").json()
        assert data["status"] == "completed"
        assert data["progress"] == 100

    def test_unknown_job(self, client):
        assert client.get("/jobs/unknown").status_code == 404

    def test_no_active_jobs(self, client, document_id):
        assert client.get("/jobs", params={"user_id": "u1"}).json() == []

    def test_stats(self, client, document_id):
        data = client.get("/stats", params={"user_id": "u1"}).json()
        assert data["total_documents"] == 1
        assert data["total_chunks"] == 3
        assert data["total_tables"] == 1
        assert data["active_jobs"] == 0

    def test_format_sse(self):
        update = ProcessingUpdate(
            document_id="d1",
            user_id="u1",
            status=ProcessingStatus.CHUNKING,
            progress=25,
            message="Chunking",
        )
        event = format_sse(update)

        assert event.startswith("event: chunking\ndata: ")
        assert event.endswith("\n\n")
        assert json.loads(event.split("data: ", 1)[1])["progress"] == 25
