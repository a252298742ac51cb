"""
Retrieval engine.

Search modes:
- semantic(): Embed the query, nearest-neighbor chunks above a threshold
- lexical(): Keyword any-match over chunk text, never embeds
- hybrid(): Concurrent semantic + lexical, adaptive weights, summed merge
- structured(): Hybrid algorithm over classified tables, optional category

Hybrid merge:
1. Judge semantic quality (any score above the quality threshold)
2. Pick (semantic, lexical) weights summing to 1 from ``HybridWeighting``
3. Merge by id: hits found by both sub-queries get the SUM of their
   weighted scores and are tagged ``cross_source``
4. Filter by the hybrid threshold, sort descending, cap

Provider and store failures surface as ``RetrievalError``; there is no
silent fallback to lexical-only search.
"""

import logging
from typing import Awaitable, Callable, Optional, Union

from .errors import InputError, InvalidQueryError, RagError, RetrievalError
from .observability.tracing import RagTracer, get_tracer
from .schemas.search import (
    MODE_ALIASES,
    HybridWeighting,
    ScoredRow,
    SearchDetails,
    SearchMode,
    SearchOptions,
    SearchResponse,
    SearchResult,
    WeightSelection,
)
from .schemas.table import TableCategory
from .tokenizers import extract_keywords
from .utils.parallel import run_parallel_phases

logger = logging.getLogger(__name__)


ModeHandler = Callable[[str, str, SearchOptions], Awaitable[SearchResponse]]


def parse_mode(value: Union[str, SearchMode]) -> SearchMode:
    """
    Parse a mode selector at the request boundary.

    Accepts the legacy names ``keyword`` and ``medical_tables``.

    Raises:
        InvalidQueryError: For any other unknown mode
    """
    if isinstance(value, SearchMode):
        return value

    key = str(value).strip().lower()
    if key in MODE_ALIASES:
        return MODE_ALIASES[key]
    try:
        return SearchMode(key)
    except ValueError:
        valid = ", ".join(mode.value for mode in SearchMode)
        raise InvalidQueryError(f"Invalid search mode: {value}. Must be one of: {valid}") from None


def _result_from_row(
    row: ScoredRow,
    source_mode: SearchMode,
    semantic_score: Optional[float] = None,
    lexical_score: Optional[float] = None,
    combined_score: float = 0.0,
) -> SearchResult:
    return SearchResult(
        id=row.id,
        document_id=row.document_id,
        text=row.text,
        semantic_score=semantic_score,
        lexical_score=lexical_score,
        combined_score=combined_score,
        source_mode=source_mode,
        filename=row.filename,
        chunk_index=row.chunk_index,
        pages=list(row.pages),
        is_table=row.is_table,
        category=row.category,
    )


def merge_results(
    semantic_rows: list[ScoredRow],
    lexical_rows: list[ScoredRow],
    selection: WeightSelection,
    source_mode: SearchMode = SearchMode.HYBRID,
) -> list[SearchResult]:
    """
    Union semantic and lexical rows keyed by id, summing weighted scores.

    Returns:
        Unranked merged results; at most one per id
    """
    merged: dict[str, SearchResult] = {}

    for row in semantic_rows:
        merged[row.id] = _result_from_row(
            row,
            source_mode,
            semantic_score=row.score,
            combined_score=row.score * selection.semantic_weight,
        )

    for row in lexical_rows:
        contribution = row.score * selection.lexical_weight
        existing = merged.get(row.id)
        if existing is not None:
            existing.lexical_score = row.score
            existing.combined_score += contribution
            existing.cross_source = True
        else:
            merged[row.id] = _result_from_row(
                row,
                source_mode,
                lexical_score=row.score,
                combined_score=contribution,
            )

    return list(merged.values())


def rank_results(
    results: list[SearchResult],
    threshold: float,
    max_results: int,
) -> list[SearchResult]:
    """Filter by combined score, sort descending (stable), and cap."""
    kept = [r for r in results if r.combined_score >= threshold]
    kept.sort(key=lambda r: r.combined_score, reverse=True)
    return kept[:max_results]


class RetrievalEngine:
    """
    Multi-mode search over a document store.

    Usage:
        engine = RetrievalEngine(store, embedder)
        results = await engine.search("glucose level", user_id, SearchMode.HYBRID)
    """

    def __init__(
        self,
        store,
        embedder,
        weighting: Optional[HybridWeighting] = None,
        max_query_keywords: int = 10,
        tracer: Optional[RagTracer] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.weighting = weighting or HybridWeighting()
        self.max_query_keywords = max_query_keywords
        self.tracer = tracer if tracer is not None else get_tracer()

        self._handlers: dict[SearchMode, ModeHandler] = {
            SearchMode.SEMANTIC: self._semantic,
            SearchMode.LEXICAL: self._lexical,
            SearchMode.HYBRID: self._hybrid,
            SearchMode.STRUCTURED: self._structured,
        }
        missing = set(SearchMode) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for search modes: {sorted(m.value for m in missing)}")

    @classmethod
    def from_settings(cls, store, embedder, settings, tracer: Optional[RagTracer] = None) -> "RetrievalEngine":
        return cls(
            store,
            embedder,
            weighting=HybridWeighting.from_settings(settings),
            max_query_keywords=settings.max_query_keywords,
            tracer=tracer,
        )

    async def search(
        self,
        query: str,
        user_scope: str,
        mode: Union[str, SearchMode] = SearchMode.HYBRID,
        options: Optional[SearchOptions] = None,
    ) -> list[SearchResult]:
        """
        Ranked results for a query.

        Raises:
            InvalidQueryError: Bad query, scope, or mode (before any I/O)
            RetrievalError: Embedding provider or store failure
        """
        response = await self.search_detailed(query, user_scope, mode, options)
        return response.results

    async def search_detailed(
        self,
        query: str,
        user_scope: str,
        mode: Union[str, SearchMode] = SearchMode.HYBRID,
        options: Optional[SearchOptions] = None,
    ) -> SearchResponse:
        """Like ``search`` but also returns sub-query counts and weights."""
        mode = parse_mode(mode)
        options = options or SearchOptions()
        query = (query or "").strip()

        if not query:
            raise InvalidQueryError("Query cannot be empty")
        if not user_scope:
            raise InvalidQueryError("User scope is required")

        handler = self._handlers[mode]

        try:
            with self.tracer.span(f"search_{mode.value}", run_type="retriever", user_id=user_scope):
                response = await handler(query, user_scope, options)
        except InputError:
            raise
        except RagError as e:
            logger.error(f"{mode.value} search failed: {e}")
            self.tracer.log_error(e, {"query": query, "mode": mode.value, "user_id": user_scope})
            raise RetrievalError(f"Search failed: {e.message}") from e

        logger.info(
            f"{mode.value} search returned {len(response.results)} results "
            f"(semantic={response.details.semantic_count}, lexical={response.details.lexical_count})"
        )
        self.tracer.log_search(
            query,
            mode.value,
            user_scope,
            len(response.results),
            response.details.model_dump(mode="json"),
        )
        return response

    # Sub-queries

    async def _semantic_rows(
        self,
        query: str,
        scope: str,
        threshold: float,
        limit: int,
    ) -> list[ScoredRow]:
        embedded = await self.embedder.embed(query)
        rows = await self.store.vector_query(embedded.vector, scope, threshold, limit)
        rows = [row for row in rows if row.score >= threshold]
        rows.sort(key=lambda r: r.score, reverse=True)
        return rows[:limit]

    async def _lexical_rows(self, keywords: list[str], scope: str, limit: int) -> list[ScoredRow]:
        if not keywords:
            return []
        rows = await self.store.lexical_query(keywords, scope, limit)
        rows.sort(key=lambda r: r.score, reverse=True)
        return rows[:limit]

    async def _table_semantic_rows(
        self,
        query: str,
        scope: str,
        threshold: float,
        limit: int,
        category: Optional[TableCategory],
    ) -> list[ScoredRow]:
        embedded = await self.embedder.embed(query)
        rows = await self.store.table_vector_query(embedded.vector, scope, threshold, limit, category)
        rows = [row for row in rows if row.score >= threshold]
        rows.sort(key=lambda r: r.score, reverse=True)
        return rows[:limit]

    async def _table_lexical_rows(
        self,
        keywords: list[str],
        scope: str,
        limit: int,
        category: Optional[TableCategory],
    ) -> list[ScoredRow]:
        if not keywords:
            return []
        rows = await self.store.table_lexical_query(keywords, scope, limit, category)
        rows.sort(key=lambda r: r.score, reverse=True)
        return rows[:limit]

    # Mode handlers

    async def _semantic(self, query: str, scope: str, options: SearchOptions) -> SearchResponse:
        rows = await self._semantic_rows(query, scope, options.threshold, options.max_results)
        results = [
            _result_from_row(row, SearchMode.SEMANTIC, semantic_score=row.score, combined_score=row.score)
            for row in rows
        ]
        return SearchResponse(
            query=query,
            mode=SearchMode.SEMANTIC,
            results=results,
            details=SearchDetails(semantic_count=len(rows), merged_count=len(results)),
        )

    async def _lexical(self, query: str, scope: str, options: SearchOptions) -> SearchResponse:
        keywords = extract_keywords(query, self.max_query_keywords)
        rows = await self._lexical_rows(keywords, scope, options.max_results)
        results = [
            _result_from_row(row, SearchMode.LEXICAL, lexical_score=row.score, combined_score=row.score)
            for row in rows
        ]
        return SearchResponse(
            query=query,
            mode=SearchMode.LEXICAL,
            results=results,
            details=SearchDetails(lexical_count=len(rows), merged_count=len(results), keywords=keywords),
        )

    async def _hybrid(self, query: str, scope: str, options: SearchOptions) -> SearchResponse:
        keywords = extract_keywords(query, self.max_query_keywords)
        fetch = options.max_results * 2

        semantic_rows, lexical_rows = await run_parallel_phases(
            self._semantic_rows(query, scope, options.threshold, fetch),
            self._lexical_rows(keywords, scope, fetch),
        )

        return self._fuse(query, SearchMode.HYBRID, semantic_rows, lexical_rows, keywords, options)

    async def _structured(self, query: str, scope: str, options: SearchOptions) -> SearchResponse:
        keywords = extract_keywords(query, self.max_query_keywords)
        fetch = options.max_results * 2

        semantic_rows, lexical_rows = await run_parallel_phases(
            self._table_semantic_rows(query, scope, options.threshold, fetch, options.category),
            self._table_lexical_rows(keywords, scope, fetch, options.category),
        )

        return self._fuse(query, SearchMode.STRUCTURED, semantic_rows, lexical_rows, keywords, options)

    def _fuse(
        self,
        query: str,
        mode: SearchMode,
        semantic_rows: list[ScoredRow],
        lexical_rows: list[ScoredRow],
        keywords: list[str],
        options: SearchOptions,
    ) -> SearchResponse:
        selection = self.weighting.select(semantic_rows)
        merged = merge_results(semantic_rows, lexical_rows, selection, mode)
        results = rank_results(merged, selection.threshold, options.max_results)

        logger.debug(
            f"{mode.value} fusion: quality={'good' if selection.good_quality else 'poor'} "
            f"weights=({selection.semantic_weight}, {selection.lexical_weight}) "
            f"merged={len(merged)} kept={len(results)}"
        )

        return SearchResponse(
            query=query,
            mode=mode,
            results=results,
            details=SearchDetails(
                semantic_count=len(semantic_rows),
                lexical_count=len(lexical_rows),
                merged_count=len(merged),
                keywords=keywords,
                weights=selection,
            ),
        )
