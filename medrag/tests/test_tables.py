"""Tests for medical table classification and entity extraction."""

import asyncio

import pytest

from medrag.schemas.document import DocumentRecord
from medrag.schemas.table import ExtractedTable, TableCategory
from medrag.tables import (
    LAB_KEYWORDS,
    TableProcessor,
    classify,
    count_hits,
    detect_content_type,
    extract_entities,
    has_medical_terms,
    has_regulatory_terms,
    is_domain_table,
    searchable_text,
)


@pytest.fixture
def lab_table() -> ExtractedTable:
    return ExtractedTable(
        headers=["Test", "Result", "Normal Range"],
        rows=[["Glucose", "95 mg/dL", "70-99"]],
        page_number=1,
        confidence=0.9,
    )


class TestClassification:
    """Tests for classify."""

    def test_lab_table(self, lab_table):
        """Test a lab panel is classified as lab results."""
        combined = "test result normal range glucose 95 mg/dl 70-99"
        assert count_hits(combined, LAB_KEYWORDS) >= 4
        assert classify(lab_table.headers, "Glucose 95 mg/dL 70-99") == TableCategory.LAB_RESULTS

    def test_vital_signs(self):
        """Test vitals classification."""
        category = classify(["Blood Pressure", "Heart Rate", "Temperature"], "120/80 72 98.6")
        assert category == TableCategory.VITAL_SIGNS

    def test_medication(self):
        """Test medication classification."""
        category = classify(["Medication", "Dosage", "Frequency"], "Metformin 500 tablet twice daily")
        assert category == TableCategory.MEDICATION

    def test_general_fallback(self):
        """Test tables with no vocabulary hits."""
        assert classify(["Name", "City"], "Alice Paris") == TableCategory.GENERAL

    def test_tie_prefers_lab(self):
        """Test ties resolve to lab results first."""
        # one lab hit (glucose), one vital hit (pulse)
        assert classify(["Glucose", "Pulse"], "") == TableCategory.LAB_RESULTS

    def test_short_keywords_not_matched_inside_words(self):
        """Test 'hr' does not fire inside 'three'."""
        assert classify(["Item", "Count"], "three apples") == TableCategory.GENERAL

    def test_units_glued_to_values(self):
        """Test dose units written without a space still count."""
        assert classify(["Test", "Value"], "Insulin 10ml Metformin 500mg") == TableCategory.MEDICATION


class TestEntities:
    """Tests for extract_entities and helpers."""

    def test_entities_in_vocabulary_order(self):
        """Test extracted terms keep vocabulary order without duplicates."""
        entities = extract_entities("Glucose 95 mg/dL (normal); glucose repeated, blood pressure high")
        assert entities == ["glucose", "blood pressure", "mg/dl", "normal", "high", "blood"]

    def test_units_attached_to_numbers(self):
        """Test units written directly after a value are extracted."""
        entities = extract_entities("Glucose 95mg/dL, BP 120/80mmHg, weight 70kg")
        assert {"glucose", "bp", "weight", "mg/dl", "mmhg", "kg"} <= set(entities)

    def test_no_entities(self):
        """Test plain text."""
        assert extract_entities("The quick brown fox") == []

    def test_searchable_text(self, lab_table):
        """Test the searchable projection."""
        assert searchable_text(lab_table) == (
            "Headers: Test, Result, Normal Range\nRow 1: Glucose, 95 mg/dL, 70-99"
        )

    def test_domain_prefilter(self, lab_table):
        """Test the clinical keyword pre-filter."""
        assert is_domain_table(lab_table)
        assert not is_domain_table(ExtractedTable(headers=["Name", "City"], rows=[["Alice", "Paris"]]))

    def test_content_type(self):
        """Test chunk content labels."""
        assert detect_content_type("The patient started medication therapy with the pharmacist") == "medical"
        assert detect_content_type("Scope of practice varies by province and regulation") == "regulatory"
        assert detect_content_type("Nothing to see") == "general"
        assert has_medical_terms("Patient history")
        assert not has_medical_terms("Weather report")
        assert has_regulatory_terms("compliance audit")


class TestTableProcessor:
    """Tests for TableProcessor.process."""

    def test_process_stores_medical_tables(self, embedder, store, lab_table):
        """Test filtering, classification, and persistence."""
        asyncio.run(store.create_document(DocumentRecord(document_id="doc1", user_id="u1", filename="a.txt", content_hash="h")))
        other = ExtractedTable(headers=["Name", "City"], rows=[["Alice", "Paris"]])

        result = asyncio.run(TableProcessor(embedder, store).process("doc1", [other, lab_table]))

        assert result.stored_count == 1
        assert result.skipped == 1
        assert result.tokens_used > 0

        table = result.stored[0]
        assert table.table_id == "doc1_t0"
        assert table.category == TableCategory.LAB_RESULTS
        assert table.row_count == 1
        assert table.col_count == 3
        assert table.page_number == 1
        assert "glucose" in table.entities
        assert table.embedding == embedder.vector_for(table.searchable_text)

        assert asyncio.run(store.get_tables("doc1")) == [table]
