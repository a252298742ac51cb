"""
Boundary detection for tables and pages.

Scans raw extracted text for table-like regions and page offsets so the
chunker can keep tables intact and tag every chunk with its pages.

Detected table regions:
- HTML ``<table>...</table>`` blocks
- Runs of 2+ lines with at least two pipe characters (markdown / ASCII tables)
- Runs of 2+ tab-delimited lines with a consistent cell count

Page maps come either from the extractor (one span per page) or from
``# Page N`` / ``--- Page N ---`` markers and form feeds in the text.
"""

import html
import logging
import re
from typing import Callable, Optional

from .schemas.chunk import PageSpan, Span
from .schemas.table import ExtractedTable

logger = logging.getLogger(__name__)


HTML_TABLE_PATTERN = re.compile(r"<table\b[\s\S]*?</table>", re.IGNORECASE)
HTML_ROW_PATTERN = re.compile(r"<tr\b[^>]*>([\s\S]*?)</tr>", re.IGNORECASE)
HTML_CELL_PATTERN = re.compile(r"<t[hd]\b[^>]*>([\s\S]*?)</t[hd]>", re.IGNORECASE)
HTML_TAG_PATTERN = re.compile(r"<[^>]+>")

PAGE_MARKER_PATTERN = re.compile(
    r"^[ \t]*(?:#[ \t]*Page[ \t]+(\d+)|-{3}[ \t]*Page[ \t]+(\d+)[ \t]*-*)[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)

# Markdown separator rows: |---|:---:|
RULE_CELL_PATTERN = re.compile(r"^:?-{2,}:?$")

# Cheap signal that a detected table carries clinical content
MEDICAL_HINT_PATTERN = re.compile(
    r"glucose|cholesterol|pressure|heart|blood|test|result|normal|high|low",
    re.IGNORECASE,
)

PAGE_MARKER_FORMAT = "--- Page {page} ---"


def _is_pipe_row(line: str) -> bool:
    return line.count("|") >= 2


def _iter_lines(text: str):
    """Yield ``(start, end, line)`` with ``end`` excluding the newline."""
    offset = 0
    for raw in text.splitlines(keepends=True):
        line = raw.rstrip("\r\n")
        yield offset, offset + len(line), line
        offset += len(raw)


def _line_run_spans(
    text: str,
    predicate: Callable[[str], bool],
    min_lines: int = 2,
) -> list[Span]:
    """Spans covering runs of consecutive lines that satisfy ``predicate``."""
    spans: list[Span] = []
    run_start: Optional[int] = None
    run_end = 0
    run_lines = 0

    for start, end, line in _iter_lines(text):
        if line.strip() and predicate(line):
            if run_start is None:
                run_start = start
                run_lines = 0
            run_end = end
            run_lines += 1
            continue
        if run_start is not None and run_lines >= min_lines:
            spans.append(Span(start=run_start, end=run_end))
        run_start = None

    if run_start is not None and run_lines >= min_lines:
        spans.append(Span(start=run_start, end=run_end))

    return spans


def _tab_run_spans(text: str, min_lines: int = 2) -> list[Span]:
    """Runs of tab-delimited lines that keep the same cell count."""
    spans: list[Span] = []
    run_start: Optional[int] = None
    run_end = 0
    run_lines = 0
    run_width = 0

    def close():
        if run_start is not None and run_lines >= min_lines:
            spans.append(Span(start=run_start, end=run_end))

    for start, end, line in _iter_lines(text):
        width = len(line.split("\t")) if "\t" in line and line.strip() else 0
        if width >= 2 and run_start is not None and width == run_width:
            run_end = end
            run_lines += 1
            continue
        close()
        if width >= 2:
            run_start, run_end, run_lines, run_width = start, end, 1, width
        else:
            run_start = None

    close()
    return spans


def merge_spans(spans: list[Span]) -> list[Span]:
    """Sort spans and merge the ones that overlap."""
    merged: list[Span] = []
    for span in sorted(spans, key=lambda s: (s.start, s.end)):
        if merged and span.start < merged[-1].end:
            last = merged[-1]
            merged[-1] = Span(start=last.start, end=max(last.end, span.end))
        else:
            merged.append(span)
    return merged


def detect_table_spans(text: str) -> list[Span]:
    """
    Find table-like regions in raw text.

    Args:
        text: Extracted document text

    Returns:
        Sorted, non-overlapping spans
    """
    if not text:
        return []

    spans = [Span(start=m.start(), end=m.end()) for m in HTML_TABLE_PATTERN.finditer(text)]
    spans.extend(_line_run_spans(text, _is_pipe_row))
    spans.extend(_tab_run_spans(text))

    merged = merge_spans(spans)
    if merged:
        logger.debug(f"Detected {len(merged)} table span(s)")
    return merged


def detect_page_markers(text: str) -> list[PageSpan]:
    """
    Build a page map from page markers embedded in the text.

    Recognizes ``# Page N`` and ``--- Page N ---`` lines, falling back to
    form feeds. Text before the first marker is attributed to the first
    marked page. Returns an empty list when the text has no page markers.
    """
    markers = [
        (m.start(), int(m.group(1) or m.group(2)))
        for m in PAGE_MARKER_PATTERN.finditer(text)
    ]

    if markers:
        spans: list[PageSpan] = []
        for i, (start, page) in enumerate(markers):
            span_start = 0 if i == 0 else start
            span_end = markers[i + 1][0] if i + 1 < len(markers) else len(text)
            if page < 1:
                continue
            spans.append(PageSpan(page=page, start=span_start, end=span_end))
        return spans

    if "\f" in text:
        spans = []
        offset = 0
        for page, part in enumerate(text.split("\f"), start=1):
            spans.append(PageSpan(page=page, start=offset, end=offset + len(part)))
            offset += len(part) + 1
        return spans

    return []


def build_page_map(
    pages: list[str],
    marker_format: str = PAGE_MARKER_FORMAT,
) -> tuple[str, list[PageSpan]]:
    """
    Join per-page texts into one document and record each page's offsets.

    Each page is prefixed with a marker line so page boundaries also act
    as top-priority chunk separators.

    Returns:
        Tuple of (joined text, page spans)
    """
    parts: list[str] = []
    spans: list[PageSpan] = []
    offset = 0

    for page, page_text in enumerate(pages, start=1):
        prefix = "\n\n" if parts else ""
        block = f"{prefix}{marker_format.format(page=page)}\n{page_text.strip()}"
        start = offset + len(prefix)
        parts.append(block)
        offset += len(block)
        spans.append(PageSpan(page=page, start=start, end=offset))

    return "".join(parts), spans


def pages_for_span(
    start: int,
    end: int,
    page_map: Optional[list[PageSpan]],
) -> list[int]:
    """
    Pages whose character range overlaps ``[start, end)``.

    Returns:
        Sorted, deduplicated page numbers; empty when no page map is given
    """
    if not page_map:
        return []
    return sorted({span.page for span in page_map if span.overlaps(start, end)})


def _split_cells(line: str) -> list[str]:
    if "|" in line:
        cells = line.strip().strip("|").split("|")
    elif "\t" in line:
        cells = line.split("\t")
    else:
        cells = re.split(r"\s{2,}", line.strip())
    return [c.strip() for c in cells]


def _is_rule_row(cells: list[str]) -> bool:
    filled = [c for c in cells if c]
    return bool(filled) and all(RULE_CELL_PATTERN.match(c) for c in filled)


def _html_rows(text: str) -> list[list[str]]:
    rows = []
    for row_html in HTML_ROW_PATTERN.findall(text):
        cells = [
            html.unescape(HTML_TAG_PATTERN.sub("", cell)).strip()
            for cell in HTML_CELL_PATTERN.findall(row_html)
        ]
        if cells:
            rows.append(cells)
    return rows


def table_confidence(rows: list[list[str]]) -> float:
    """
    Score how table-like a set of parsed rows is.

    Column-count consistency contributes up to 0.7; clinical content adds 0.3.
    """
    if len(rows) < 2:
        return 0.0

    expected = len(rows[0])
    consistent = sum(1 for row in rows if len(row) == expected)
    confidence = (consistent / len(rows)) * 0.7

    if any(MEDICAL_HINT_PATTERN.search(cell) for row in rows for cell in row):
        confidence += 0.3

    return min(round(confidence, 6), 1.0)


def parse_table_text(
    text: str,
    page_number: Optional[int] = None,
) -> Optional[ExtractedTable]:
    """
    Parse a detected table span into headers and rows.

    The first row is taken as the header. Returns None when the span does
    not hold at least a header plus one data row of two or more columns.
    """
    if HTML_TABLE_PATTERN.search(text):
        rows = _html_rows(text)
        source = "html"
    else:
        rows = []
        for line in text.splitlines():
            if not line.strip():
                continue
            cells = _split_cells(line)
            if _is_rule_row(cells):
                continue
            rows.append(cells)
        source = "text"

    rows = [row for row in rows if any(row)]
    if len(rows) < 2 or len(rows[0]) < 2:
        return None

    return ExtractedTable(
        headers=rows[0],
        rows=rows[1:],
        page_number=page_number,
        confidence=table_confidence(rows),
        source=source,
    )
