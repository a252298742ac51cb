"""
Structure-aware text chunking.

Strategy:
- Recursive splitting over a priority-ordered separator hierarchy
  (page markers, table tags, headings, paragraphs, lines, sentences,
  clauses, words, characters)
- Table spans are never mixed with prose: small tables become one atomic
  chunk, oversized tables are re-split on row boundaries
- Every chunk records the pages its character span overlaps

Chunking is pure and deterministic: the same text, spans, page map, and
config always produce the same chunks.
"""

import logging
from typing import Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter
from pydantic import BaseModel, Field, model_validator

from .boundaries import detect_table_spans, merge_spans, pages_for_span
from .schemas.chunk import ChunkResult, PageSpan, Span

logger = logging.getLogger(__name__)


PAGE_AWARE_SEPARATORS = [
    "\n# Page ",
    "\n--- Page ",
    "--- Page ",
    "\f",
    "\n<table>",
    "</table>\n",
    "\n</table>",
    "\n## ",
    "\n# ",
    "\n\n",
    "\n",
    ". ",
    ", ",
    " ",
    "",
]

BASIC_SEPARATORS = [
    "\n## ",
    "\n# ",
    "\n\n",
    "\n",
    ". ",
    ", ",
    " ",
    "",
]

# Row delimiters first so oversized tables split between rows
TABLE_SEPARATORS = [
    "\n<tr>",
    "</tr>\n",
    "\n</tr>",
    "\n|",
    "\n",
    "|",
    " ",
    "",
]


class ChunkerConfig(BaseModel):
    """Chunk sizing and structure options."""

    chunk_size: int = Field(1000, ge=1, description="Target maximum characters per chunk")
    chunk_overlap: int = Field(200, ge=0, description="Characters shared by consecutive chunks")
    max_table_chars: int = Field(3000, ge=1, description="Largest table kept as a single chunk")
    page_aware: bool = True
    preserve_page_boundaries: bool = False
    detect_tables: bool = True

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkerConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")
        if self.chunk_overlap >= self.max_table_chars:
            raise ValueError("chunk_overlap must be less than max_table_chars")
        return self

    @classmethod
    def from_settings(cls, settings) -> "ChunkerConfig":
        return cls(
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            max_table_chars=settings.max_chunk_size_for_tables,
            page_aware=settings.page_aware_chunking,
            preserve_page_boundaries=settings.preserve_page_boundaries,
            detect_tables=settings.table_detection_enabled,
        )

    @property
    def method(self) -> str:
        """Label stored in chunk metadata."""
        return "page_aware" if self.page_aware else "recursive"


# (start, end, text, is_table) in absolute document offsets
_Piece = tuple[int, int, str, bool]


class StructureAwareChunker:
    """
    Splits document text into retrieval chunks.

    Usage:
        chunker = StructureAwareChunker(ChunkerConfig(chunk_size=800))
        chunks = chunker.chunk(text, page_map=page_spans)
    """

    def __init__(self, config: Optional[ChunkerConfig] = None):
        self.config = config or ChunkerConfig()
        separators = PAGE_AWARE_SEPARATORS if self.config.page_aware else BASIC_SEPARATORS
        self._text_splitter = RecursiveCharacterTextSplitter(
            separators=separators,
            chunk_size=self.config.chunk_size,
            chunk_overlap=self.config.chunk_overlap,
            add_start_index=True,
        )
        self._table_splitter = RecursiveCharacterTextSplitter(
            separators=TABLE_SEPARATORS,
            chunk_size=self.config.max_table_chars,
            chunk_overlap=self.config.chunk_overlap,
            add_start_index=True,
        )

    def chunk(
        self,
        text: str,
        page_map: Optional[list[PageSpan]] = None,
        table_spans: Optional[list[Span]] = None,
    ) -> list[ChunkResult]:
        """
        Chunk text, keeping tables intact and tagging pages.

        Args:
            text: Full document text
            page_map: Character span of each page, if known
            table_spans: Table regions; detected from the text when None
                and table detection is enabled

        Returns:
            Chunks with contiguous indices 0..N-1 (empty for blank text)
        """
        if not text or not text.strip():
            return []

        if table_spans is None:
            table_spans = detect_table_spans(text) if self.config.detect_tables else []

        spans = merge_spans([
            Span(start=span.start, end=min(span.end, len(text)))
            for span in table_spans
            if span.start < len(text) and span.end > span.start
        ])

        pieces: list[_Piece] = []
        cursor = 0
        for span in spans:
            if span.start > cursor:
                pieces.extend(self._split_prose(text, cursor, span.start, page_map))
            pieces.extend(self._split_table(text, span))
            cursor = max(cursor, span.end)
        if cursor < len(text):
            pieces.extend(self._split_prose(text, cursor, len(text), page_map))

        chunks = [
            ChunkResult(
                index=i,
                text=piece_text,
                start=start,
                end=end,
                pages=pages_for_span(start, end, page_map),
                is_table=is_table,
            )
            for i, (start, end, piece_text, is_table) in enumerate(pieces)
        ]

        logger.debug(
            f"Chunked {len(text)} chars into {len(chunks)} chunks "
            f"({sum(1 for c in chunks if c.is_table)} table chunks)"
        )
        return chunks

    def _split_prose(
        self,
        text: str,
        start: int,
        end: int,
        page_map: Optional[list[PageSpan]],
    ) -> list[_Piece]:
        if not (self.config.preserve_page_boundaries and page_map):
            return self._split_range(self._text_splitter, text, start, end, is_table=False)

        # Cut the range at page edges so no prose chunk crosses a page
        cuts = {start, end}
        for page in page_map:
            for edge in (page.start, page.end):
                if start < edge < end:
                    cuts.add(edge)
        bounds = sorted(cuts)

        pieces: list[_Piece] = []
        for left, right in zip(bounds, bounds[1:]):
            pieces.extend(self._split_range(self._text_splitter, text, left, right, is_table=False))
        return pieces

    def _split_table(self, text: str, span: Span) -> list[_Piece]:
        raw = text[span.start:span.end]
        stripped = raw.strip()
        if not stripped:
            return []

        if len(stripped) <= self.config.max_table_chars:
            start = span.start + (len(raw) - len(raw.lstrip()))
            return [(start, start + len(stripped), stripped, True)]

        logger.debug(f"Table span of {len(stripped)} chars exceeds ceiling, splitting by rows")
        return self._split_range(self._table_splitter, text, span.start, span.end, is_table=True)

    @staticmethod
    def _split_range(
        splitter: RecursiveCharacterTextSplitter,
        text: str,
        start: int,
        end: int,
        is_table: bool,
    ) -> list[_Piece]:
        segment = text[start:end]
        if not segment.strip():
            return []

        pieces: list[_Piece] = []
        search_from = 0
        for doc in splitter.create_documents([segment]):
            content = doc.page_content
            if not content:
                continue
            local = doc.metadata.get("start_index", -1)
            if local < 0:
                local = segment.find(content, search_from)
            if local < 0:
                local = search_from
            search_from = local + 1
            pieces.append((start + local, start + local + len(content), content, is_table))
        return pieces


def chunk_text(
    text: str,
    config: Optional[ChunkerConfig] = None,
    page_map: Optional[list[PageSpan]] = None,
    table_spans: Optional[list[Span]] = None,
) -> list[ChunkResult]:
    """Convenience wrapper around ``StructureAwareChunker.chunk``."""
    return StructureAwareChunker(config).chunk(text, page_map=page_map, table_spans=table_spans)
