"""
MedRAG Document Layer.

Structure-aware chunking and hybrid (semantic + lexical) retrieval over
ingested documents, with medical table classification and per-job
processing progress.

Pipeline:
    sources.py      - Raw files → text + page map + tables
    boundaries.py   - Table spans and page offsets
    chunking.py     - Text → page/table-aware chunks
    embeddings.py   - Text → vectors (OpenAI / sentence-transformers)
    tables.py       - Table classification and entity extraction
    tracker.py      - Per-job processing state and progress events
    ingest.py       - Main orchestrator
    retrieval.py    - Search modes and hybrid fusion
"""

__version__ = "0.1.0"
