"""
Source loaders: turn files into ``ExtractedSource`` objects.

Supported formats:
- .txt / .md: plain text, page map from embedded page markers
- .json: readable text rendering; arrays of objects and columnar dicts
  become tables; ``{"pages": [...]}`` payloads get a page map
- .pdf: pdfplumber page text joined with page markers, plus tables
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from .boundaries import build_page_map, detect_page_markers
from .errors import EmptyDocumentError, UnsupportedSourceError
from .schemas.document import ExtractedSource
from .schemas.table import ExtractedTable

logger = logging.getLogger(__name__)


TEXT_SUFFIXES = {".txt", ".md", ".markdown"}
SUPPORTED_SUFFIXES = TEXT_SUFFIXES | {".json", ".pdf"}

# Confidence assigned to tables that come from explicit structure
STRUCTURED_TABLE_CONFIDENCE = 0.9


def _clean_cell(cell: Any) -> str:
    """Clean a table cell value."""
    if cell is None:
        return ""
    return " ".join(str(cell).split())


def _normalize_headers(header_row: list) -> list[str]:
    headers = []
    for i, cell in enumerate(header_row):
        header = _clean_cell(cell)
        headers.append(header or f"Column_{i + 1}")
    return headers


# Plain text


def source_from_text(text: str, file_type: str = "text") -> ExtractedSource:
    """Wrap raw text, detecting a page map from page markers."""
    page_map = detect_page_markers(text) or None
    return ExtractedSource(text=text, page_map=page_map, file_type=file_type)


def source_from_pages(
    pages: list[str],
    tables: Optional[list[ExtractedTable]] = None,
    file_type: str = "text",
) -> ExtractedSource:
    """Join per-page texts with page markers and keep their offsets."""
    text, page_map = build_page_map(pages)
    return ExtractedSource(
        text=text,
        tables=tables or [],
        page_map=page_map,
        file_type=file_type,
    )


# JSON


def _table_from_records(records: list) -> Optional[ExtractedTable]:
    """Array of objects sharing the same keys → table."""
    if len(records) < 1 or not all(isinstance(r, dict) and r for r in records):
        return None
    headers = list(records[0].keys())
    if len(headers) < 2 or any(list(r.keys()) != headers for r in records):
        return None
    rows = [[_clean_cell(r[h]) for h in headers] for r in records]
    return ExtractedTable(
        headers=_normalize_headers(headers),
        rows=rows,
        confidence=STRUCTURED_TABLE_CONFIDENCE,
        source="json",
    )


def _table_from_columns(columns: dict) -> Optional[ExtractedTable]:
    """Dict of equal-length lists → table."""
    if len(columns) < 2 or not all(isinstance(v, list) and v for v in columns.values()):
        return None
    lengths = {len(v) for v in columns.values()}
    if len(lengths) != 1:
        return None
    headers = list(columns.keys())
    rows = [[_clean_cell(cell) for cell in row] for row in zip(*columns.values())]
    return ExtractedTable(
        headers=_normalize_headers(headers),
        rows=rows,
        confidence=STRUCTURED_TABLE_CONFIDENCE,
        source="json",
    )


def _collect_json_tables(value: Any, tables: list[ExtractedTable]) -> None:
    if isinstance(value, list):
        table = _table_from_records(value)
        if table is not None:
            tables.append(table)
            return
        for item in value:
            _collect_json_tables(item, tables)
    elif isinstance(value, dict):
        table = _table_from_columns(value)
        if table is not None:
            tables.append(table)
            return
        for item in value.values():
            _collect_json_tables(item, tables)


def render_json(value: Any, indent: int = 0) -> str:
    """
    Render parsed JSON as readable ``key: value`` lines.

    Scalars in lists become ``- item`` bullets; nesting is indented.
    """
    pad = "  " * indent
    lines: list[str] = []

    if isinstance(value, dict):
        for key, item in value.items():
            if isinstance(item, (dict, list)):
                lines.append(f"{pad}{key}:")
                lines.append(render_json(item, indent + 1))
            else:
                lines.append(f"{pad}{key}: {_clean_cell(item)}")
    elif isinstance(value, list):
        for item in value:
            if isinstance(item, (dict, list)):
                lines.append(render_json(item, indent))
                lines.append("")
            else:
                lines.append(f"{pad}- {_clean_cell(item)}")
    else:
        lines.append(f"{pad}{_clean_cell(value)}")

    return "\n".join(lines).rstrip()


def _page_text(page: Any) -> str:
    if isinstance(page, dict):
        if "text" in page:
            return str(page["text"])
        return render_json(page)
    return str(page)


def source_from_json(payload: Any) -> ExtractedSource:
    """Build a source from parsed JSON."""
    tables: list[ExtractedTable] = []

    if isinstance(payload, dict) and isinstance(payload.get("pages"), list):
        pages = payload["pages"]
        for page_number, page in enumerate(pages, start=1):
            page_tables: list[ExtractedTable] = []
            if isinstance(page, dict):
                _collect_json_tables(page.get("tables", []), page_tables)
            tables.extend(t.model_copy(update={"page_number": page_number}) for t in page_tables)
        return source_from_pages([_page_text(p) for p in pages], tables=tables, file_type="json")

    _collect_json_tables(payload, tables)
    return ExtractedSource(text=render_json(payload), tables=tables, file_type="json")


# PDF


def _pdf_tables(page, page_number: int) -> list[ExtractedTable]:
    page_tables = page.extract_tables(
        table_settings={
            "vertical_strategy": "lines",
            "horizontal_strategy": "lines",
            "snap_tolerance": 3,
            "join_tolerance": 3,
        }
    )

    tables = []
    for raw_table in page_tables or []:
        if not raw_table or len(raw_table) < 2:
            continue
        headers = _normalize_headers(raw_table[0])
        if len(headers) < 2:
            continue
        rows = [[_clean_cell(cell) for cell in row] for row in raw_table[1:]]
        rows = [row for row in rows if any(row)]
        if not rows:
            continue
        tables.append(
            ExtractedTable(
                headers=headers,
                rows=rows,
                page_number=page_number,
                confidence=STRUCTURED_TABLE_CONFIDENCE,
                source="pdf",
            )
        )
    return tables


def load_pdf(path: Path) -> ExtractedSource:
    """Extract per-page text and line-ruled tables from a PDF."""
    import pdfplumber

    pages: list[str] = []
    tables: list[ExtractedTable] = []

    with pdfplumber.open(path) as pdf:
        for page_number, page in enumerate(pdf.pages, start=1):
            pages.append(page.extract_text() or "")
            tables.extend(_pdf_tables(page, page_number))

    logger.info(f"Extracted {len(pages)} pages and {len(tables)} tables from {path.name}")
    return source_from_pages(pages, tables=tables, file_type="pdf")


def load_source(path: Union[str, Path], max_file_size: Optional[int] = None) -> ExtractedSource:
    """
    Load a file into an ``ExtractedSource``.

    Args:
        path: File path
        max_file_size: Size ceiling in bytes

    Raises:
        UnsupportedSourceError: Missing file, unsupported type, or too large
        EmptyDocumentError: File has no extractable text
    """
    path = Path(path)
    if not path.is_file():
        raise UnsupportedSourceError(f"File not found: {path}")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        supported = ", ".join(sorted(SUPPORTED_SUFFIXES))
        raise UnsupportedSourceError(f"Unsupported file type '{suffix}'. Supported: {supported}")

    size = path.stat().st_size
    if max_file_size is not None and size > max_file_size:
        raise UnsupportedSourceError(
            f"File too large: {size} bytes exceeds the {max_file_size} byte limit"
        )

    if suffix == ".pdf":
        source = load_pdf(path)
    elif suffix == ".json":
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise UnsupportedSourceError(f"Invalid JSON in {path.name}: {e}") from e
        source = source_from_json(payload)
    else:
        source = source_from_text(path.read_text(encoding="utf-8", errors="replace"))

    if not source.text.strip():
        raise EmptyDocumentError(f"No text content could be extracted from {path.name}")
    return source
