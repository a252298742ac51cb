"""
In-memory search indexes used by the local store.

- ``VectorIndex``: FAISS inner-product index over L2-normalized vectors,
  i.e. cosine similarity
- ``LexicalIndex``: rank_bm25 BM25Okapi ranking plus any-token matching
"""

import logging
from typing import Optional

import faiss
import numpy as np
from rank_bm25 import BM25Okapi

from ..errors import StoreError
from ..tokenizers import get_tokenizer

logger = logging.getLogger(__name__)


class VectorIndex:
    """
    FAISS vector index with an id mapping.

    Uses IndexFlatIP on normalized vectors so scores are cosine similarity.
    """

    def __init__(self, ids: list[str], vectors: list[list[float]]):
        if not ids:
            raise ValueError("No vectors to index")

        matrix = np.ascontiguousarray(np.asarray(vectors, dtype=np.float32))
        if matrix.ndim != 2 or matrix.shape[0] != len(ids):
            raise StoreError(f"Expected {len(ids)} vectors, got array of shape {matrix.shape}")

        faiss.normalize_L2(matrix)
        self.ids = ids
        self.dimension = int(matrix.shape[1])
        self.index = faiss.IndexFlatIP(self.dimension)
        self.index.add(matrix)

    def __len__(self) -> int:
        return len(self.ids)

    def search(self, vector: list[float], top_k: Optional[int] = None) -> list[tuple[str, float]]:
        """
        Search the index.

        Args:
            vector: Query vector
            top_k: Number of neighbors (default: all)

        Returns:
            List of (id, cosine similarity) tuples, best first
        """
        query = np.ascontiguousarray(np.asarray([vector], dtype=np.float32))
        if query.shape[1] != self.dimension:
            raise StoreError(
                f"Query vector has {query.shape[1]} dimensions, index has {self.dimension}"
            )
        faiss.normalize_L2(query)

        k = min(top_k or len(self.ids), len(self.ids))
        scores, indices = self.index.search(query, k)

        results = []
        for score, idx in zip(scores[0], indices[0]):
            if 0 <= idx < len(self.ids):
                results.append((self.ids[idx], float(score)))
        return results


class LexicalIndex:
    """
    BM25 index with any-token match semantics.

    A document matches when any keyword occurs in its lowercased text.
    Matches are scored in (0, 1] as the mean of keyword coverage and BM25
    normalized by the best matching document.
    """

    def __init__(self, ids: list[str], texts: list[str], tokenizer_name: str = "clinical"):
        tokenizer = get_tokenizer(tokenizer_name)
        self.ids = ids
        self._lowered = [text.lower() for text in texts]
        corpus = [tokenizer(text) for text in texts]
        # BM25Okapi divides by the average document length
        self.bm25: Optional[BM25Okapi] = BM25Okapi(corpus) if any(corpus) else None

    def __len__(self) -> int:
        return len(self.ids)

    def search(
        self,
        keywords: list[str],
        allowed: Optional[set[str]] = None,
        top_k: Optional[int] = None,
    ) -> list[tuple[str, float]]:
        """
        Search the index.

        Args:
            keywords: Query keywords (already normalized)
            allowed: Restrict results to these ids
            top_k: Number of results (default: all matches)

        Returns:
            List of (id, score) tuples, best first
        """
        if not keywords or not self.ids:
            return []

        candidates: list[tuple[int, int]] = []
        for idx, doc_id in enumerate(self.ids):
            if allowed is not None and doc_id not in allowed:
                continue
            matched = sum(1 for keyword in keywords if keyword in self._lowered[idx])
            if matched:
                candidates.append((idx, matched))

        if not candidates:
            return []

        scores = self.bm25.get_scores(keywords) if self.bm25 is not None else np.zeros(len(self.ids))
        best = max(float(scores[idx]) for idx, _ in candidates)

        results = []
        for idx, matched in candidates:
            coverage = matched / len(keywords)
            bm25_norm = max(0.0, float(scores[idx]) / best) if best > 0 else 0.0
            results.append((self.ids[idx], round((coverage + bm25_norm) / 2, 6)))

        results.sort(key=lambda r: r[1], reverse=True)
        return results[:top_k] if top_k else results
