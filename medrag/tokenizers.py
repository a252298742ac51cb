"""
Tokenization for lexical search.

Two tokenizers with different jobs:
- ``extract_keywords``: query side. Lowercase, strip punctuation, drop
  tokens shorter than 3 characters, dedupe, cap the count.
- ``index_tokenize``: index side. Builds BM25 term lists and keeps
  clinical values such as ``5.4`` or ``70-99`` as single tokens.

Examples:
    extract_keywords("What's my HbA1c result?") → ["whats", "hba1c", "result"]
    index_tokenize("Glucose 95 mg/dL (70-99)") → ["glucose", "95", "mg", "dl", "70-99"]
"""

import re
from typing import Callable

PUNCTUATION_PATTERN = re.compile(r"[^\w\s]")

# Decimal values and numeric ranges stay intact: 5.4, 70-99, 3.5-5.0
CLINICAL_TOKEN_PATTERN = re.compile(
    r"\d+(?:\.\d+)?(?:-\d+(?:\.\d+)?)?|[a-z][a-z0-9]*",
)

MIN_KEYWORD_LENGTH = 3


def extract_keywords(query: str, max_keywords: int = 10) -> list[str]:
    """
    Turn a free-text query into lexical search keywords.

    Args:
        query: User query
        max_keywords: Maximum number of keywords kept

    Returns:
        Unique keywords in query order
    """
    cleaned = PUNCTUATION_PATTERN.sub("", query.lower())
    keywords: list[str] = []
    for word in cleaned.split():
        if len(word) < MIN_KEYWORD_LENGTH or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) >= max_keywords:
            break
    return keywords


def index_tokenize(text: str) -> list[str]:
    """
    Tokenize document text for BM25 indexing.

    Keeps numbers, decimals, and numeric ranges whole; words are lowercased.
    """
    return CLINICAL_TOKEN_PATTERN.findall(text.lower())


def simple_tokenize(text: str) -> list[str]:
    """Basic word tokenization with lowercasing."""
    words = re.findall(r"\b[a-zA-Z0-9]+\b", text)
    return [word.lower() for word in words if len(word) >= 2]


def get_tokenizer(name: str = "clinical") -> Callable[[str], list[str]]:
    """
    Get the index-side tokenizer by name.

    Args:
        name: "clinical" (default) or "simple"
    """
    if name == "clinical":
        return index_tokenize
    return simple_tokenize
