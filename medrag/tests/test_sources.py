"""Tests for file source loaders."""

import json

import pytest

from medrag.errors import EmptyDocumentError, UnsupportedSourceError
from medrag.sources import load_source, render_json, source_from_json, source_from_text


class TestTextSources:
    """Tests for plain text loading."""

    def test_page_markers(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("--- Page 1 ---\nIntro\n--- Page 2 ---\nDetails", encoding="utf-8")

        source = load_source(path)

        assert source.file_type == "text"
        assert [span.page for span in source.page_map] == [1, 2]
        assert source.page_count == 2

    def test_no_markers(self):
        source = source_from_text("Just some text")
        assert source.page_map is None
        assert source.page_count is None


class TestJsonSources:
    """Tests for JSON rendering and table discovery."""

    def test_records_become_tables(self):
        payload = {
            "patient": "Jane",
            "labs": [
                {"test": "Glucose", "result": 95},
                {"test": "HbA1c", "result": "5.4%"},
            ],
        }
        source = source_from_json(payload)

        assert len(source.tables) == 1
        assert source.tables[0].headers == ["test", "result"]
        assert source.tables[0].rows == [["Glucose", "95"], ["HbA1c", "5.4%"]]
        assert "patient: Jane" in source.text

    def test_columns_become_tables(self):
        source = source_from_json({"vitals": {"heart_rate": [72, 80], "temperature": [36.8, 37.1]}})

        assert source.tables[0].headers == ["heart_rate", "temperature"]
        assert source.tables[0].rows == [["72", "36.8"], ["80", "37.1"]]

    def test_pages_payload(self):
        payload = {
            "pages": [
                "First page",
                {"text": "Second page", "tables": [{"test": "Glucose", "result": 95}]},
            ]
        }
        source = source_from_json(payload)

        assert source.page_count == 2
        assert source.tables[0].page_number == 2
        assert "Second page" in source.text

    def test_render_json(self):
        assert render_json({"a": 1, "b": ["x", "y"]}) == "a: 1\nb:\n  - x\n  - y"


class TestLoadSource:
    """Tests for load_source validation."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(UnsupportedSourceError, match="not found"):
            load_source(tmp_path / "missing.txt")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "scan.docx"
        path.write_bytes(b"data")
        with pytest.raises(UnsupportedSourceError, match="Unsupported file type"):
            load_source(path)

    def test_too_large(self, tmp_path):
        path = tmp_path / "big.txt"
        path.write_text("x" * 100, encoding="utf-8")
        with pytest.raises(UnsupportedSourceError, match="too large"):
            load_source(path, max_file_size=10)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(UnsupportedSourceError, match="Invalid JSON"):
            load_source(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.md"
        path.write_text("   \n", encoding="utf-8")
        with pytest.raises(EmptyDocumentError):
            load_source(path)

    def test_json_file(self, tmp_path):
        path = tmp_path / "labs.json"
        path.write_text(json.dumps([{"test": "Glucose", "result": 95}]), encoding="utf-8")

        source = load_source(path)

        assert source.file_type == "json"
        assert len(source.tables) == 1
