"""Tests for the command line interface."""

import asyncio

from typer.testing import CliRunner

from medrag.cli.__main__ import app
from medrag.schemas.document import DocumentRecord, DocumentStatus
from medrag.store.local import LocalDocumentStore

runner = CliRunner()


def _seed(data_dir) -> None:
    store = LocalDocumentStore(data_dir)

    async def run():
        await store.create_document(
            DocumentRecord(document_id="d1", user_id="u1", filename="labs.txt", content_hash="h1")
        )
        await store.update_status("d1", DocumentStatus.COMPLETED, chunks_count=0)
        await store.flush()

    asyncio.run(run())


class TestCli:
    """Tests for CLI commands that do not need an embedding provider."""

    def test_documents_empty(self, tmp_path):
        result = runner.invoke(app, ["documents", "--user", "u1", "--data-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert "No documents found" in result.output

    def test_documents_listed(self, tmp_path):
        _seed(tmp_path)
        result = runner.invoke(app, ["documents", "--user", "u1", "--data-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert "d1" in result.output

    def test_info_missing(self, tmp_path):
        result = runner.invoke(app, ["info", "nope", "--data-dir", str(tmp_path)])
        assert result.exit_code == 1
        assert "Document not found" in result.output

    def test_ingest_missing_path(self, tmp_path):
        result = runner.invoke(app, ["ingest", str(tmp_path / "missing.txt"), "--user", "u1"])
        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_search_invalid_mode(self, tmp_path):
        result = runner.invoke(
            app, ["search", "glucose", "--user", "u1", "--mode", "fuzzy", "--data-dir", str(tmp_path)]
        )
        assert result.exit_code == 1
        assert "Invalid search mode" in result.output

    def test_stats(self, tmp_path):
        _seed(tmp_path)
        result = runner.invoke(app, ["stats", "--data-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert "total documents" in result.output
