"""Tests for table and page boundary detection."""

import pytest

from medrag.boundaries import (
    build_page_map,
    detect_page_markers,
    detect_table_spans,
    pages_for_span,
    parse_table_text,
    table_confidence,
)
from medrag.schemas.chunk import PageSpan


PIPE_TABLE = (
    "| Test | Result | Normal Range |\n"
    "|---|---|---|\n"
    "| Glucose | 95 mg/dL | 70-99 |"
)


class TestTableSpans:
    """Tests for detect_table_spans."""

    def test_pipe_table(self):
        """Test markdown table detection."""
        text = f"Lab summary below.\n{PIPE_TABLE}\nReviewed by the physician."
        spans = detect_table_spans(text)

        assert len(spans) == 1
        assert text[spans[0].start:spans[0].end] == PIPE_TABLE

    def test_html_table(self):
        """Test HTML table detection."""
        table = "<table><tr><td>Glucose</td><td>95</td></tr></table>"
        text = f"Before. {table} After."
        spans = detect_table_spans(text)

        assert len(spans) == 1
        assert text[spans[0].start:spans[0].end] == table

    def test_tab_delimited(self):
        """Test tab-delimited run detection."""
        text = "Vitals\nBP\t120/80\nHR\t72\nend"
        spans = detect_table_spans(text)

        assert len(spans) == 1
        assert text[spans[0].start:spans[0].end] == "BP\t120/80\nHR\t72"

    def test_space_aligned_prose_is_not_a_table(self):
        """Test columned or justified prose stays prose."""
        text = "Name     Anna     Smith\nCity     Lyon     France"
        assert detect_table_spans(f"Header text\n{text}\n") == []

    def test_single_pipe_line_is_not_a_table(self):
        """Test a lone pipe row does not count."""
        assert detect_table_spans("a | b | c\nplain prose") == []

    def test_prose(self):
        """Test plain prose yields no spans."""
        assert detect_table_spans("Just a sentence. Another one, with a comma.") == []
        assert detect_table_spans("") == []


class TestPageMaps:
    """Tests for page marker detection and page maps."""

    def test_dash_markers(self):
        """Test --- Page N --- markers."""
        text = "intro\n--- Page 1 ---\nfirst\n--- Page 2 ---\nsecond"
        spans = detect_page_markers(text)

        assert [s.page for s in spans] == [1, 2]
        assert spans[0].start == 0
        assert spans[1].start == text.index("--- Page 2")
        assert spans[1].end == len(text)

    def test_heading_markers(self):
        """Test # Page N markers."""
        text = "# Page 3\nalpha\n# Page 4\nbeta"
        assert [s.page for s in detect_page_markers(text)] == [3, 4]

    def test_form_feeds(self):
        """Test form-feed fallback."""
        spans = detect_page_markers("a\fb")
        assert [(s.page, s.start, s.end) for s in spans] == [(1, 0, 1), (2, 2, 3)]

    def test_no_markers(self):
        """Test text without markers."""
        assert detect_page_markers("no pages here") == []

    def test_build_page_map(self):
        """Test joining pages records exact offsets."""
        text, spans = build_page_map(["one", "two"])

        assert text == "--- Page 1 ---\none\n\n--- Page 2 ---\ntwo"
        assert text[spans[0].start:spans[0].end] == "--- Page 1 ---\none"
        assert text[spans[1].start:spans[1].end] == "--- Page 2 ---\ntwo"
        assert [s.page for s in detect_page_markers(text)] == [1, 2]

    def test_pages_for_span(self):
        """Test overlap lookup is half-open."""
        page_map = [PageSpan(page=1, start=0, end=10), PageSpan(page=2, start=10, end=20)]

        assert pages_for_span(0, 10, page_map) == [1]
        assert pages_for_span(5, 15, page_map) == [1, 2]
        assert pages_for_span(10, 11, page_map) == [2]
        assert pages_for_span(0, 5, None) == []


class TestTableParsing:
    """Tests for parse_table_text."""

    def test_pipe_table_drops_rule_row(self):
        """Test markdown parsing."""
        table = parse_table_text(PIPE_TABLE, page_number=2)

        assert table.headers == ["Test", "Result", "Normal Range"]
        assert table.rows == [["Glucose", "95 mg/dL", "70-99"]]
        assert table.page_number == 2
        assert table.confidence == pytest.approx(1.0)

    def test_html_table(self):
        """Test HTML parsing unescapes entities."""
        html = (
            "<table><tr><th>Test</th><th>Result</th></tr>"
            "<tr><td>Glucose</td><td>95 &amp; rising</td></tr></table>"
        )
        table = parse_table_text(html)

        assert table.source == "html"
        assert table.headers == ["Test", "Result"]
        assert table.rows == [["Glucose", "95 & rising"]]

    def test_too_small(self):
        """Test a header without data rows is rejected."""
        assert parse_table_text("| Test | Result |") is None

    def test_confidence_without_medical_content(self):
        """Test confidence from column consistency only."""
        rows = [["a", "b"], ["c", "d"], ["e"]]
        assert table_confidence(rows) == pytest.approx(0.7 * 2 / 3, abs=1e-6)
