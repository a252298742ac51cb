"""
Medical table classification and entity extraction.

Tables that pass a cheap keyword pre-filter are:
1. Projected to searchable text ("Headers: ...\\nRow 1: ...")
2. Embedded via the embedding provider
3. Classified into lab results / vital signs / medication / general
4. Tagged with the medical entities they mention
5. Persisted for structured (table) search

Classification and extraction are pure keyword functions and never fail:
a table with no vocabulary hits falls back to ``general``.
"""

import logging
import re
from functools import lru_cache
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel

from .schemas.table import ExtractedTable, Table, TableCategory

if TYPE_CHECKING:
    from .embeddings import EmbeddingProvider
    from .store.base import DocumentStore

logger = logging.getLogger(__name__)


LAB_KEYWORDS = (
    "glucose", "cholesterol", "hemoglobin", "hba1c", "ldl", "hdl",
    "triglycerides", "creatinine", "bun", "test", "result", "reference",
    "range", "normal", "high", "low",
)

VITAL_KEYWORDS = (
    "blood pressure", "heart rate", "temperature", "respiratory", "pulse",
    "bp", "hr", "temp", "weight", "height", "bmi",
)

MEDICATION_KEYWORDS = (
    "medication", "drug", "dosage", "dose", "prescription", "tablet",
    "capsule", "mg", "ml", "frequency", "daily", "twice",
)

# Tie-break priority: earlier wins
CATEGORY_VOCABULARIES: tuple[tuple[TableCategory, tuple[str, ...]], ...] = (
    (TableCategory.LAB_RESULTS, LAB_KEYWORDS),
    (TableCategory.VITAL_SIGNS, VITAL_KEYWORDS),
    (TableCategory.MEDICATION, MEDICATION_KEYWORDS),
)

MEDICAL_ENTITIES = (
    # Lab values
    "glucose", "cholesterol", "hemoglobin", "hba1c", "ldl", "hdl",
    "triglycerides", "creatinine", "bun", "albumin", "bilirubin", "alt",
    "ast", "alkaline phosphatase",
    # Vital signs
    "blood pressure", "heart rate", "temperature", "respiratory rate",
    "pulse", "systolic", "diastolic", "bp", "hr", "temp", "weight",
    "height", "bmi",
    # Units
    "mg/dl", "mmol/l", "mmhg", "bpm", "celsius", "fahrenheit", "kg", "lbs",
    "cm", "inches",
    # Status / context
    "normal", "high", "low", "elevated", "decreased", "abnormal",
    "reference range", "test", "result", "lab", "blood", "urine", "serum",
    "plasma",
)

DOMAIN_TABLE_KEYWORDS = (
    "glucose", "cholesterol", "pressure", "heart rate", "temperature",
    "test", "result", "normal", "high", "low", "reference", "range", "lab",
    "blood", "urine", "cbc", "bmp", "lipid",
)

CONTENT_TYPE_TERMS = {
    "medical": ("pharmacist", "prescription", "medication", "therapy", "clinical", "patient", "treatment"),
    "educational": ("module", "lesson", "learning objective", "course", "training"),
    "regulatory": ("scope of practice", "regulation", "authority", "province", "jurisdiction"),
}

MEDICAL_TERMS_PATTERN = re.compile(
    r"\b(patient|medication|treatment|diagnosis|therapy|clinical|pharmacist|prescription)\b",
    re.IGNORECASE,
)
REGULATORY_TERMS_PATTERN = re.compile(
    r"\b(regulation|scope of practice|authority|province|jurisdiction|compliance)\b",
    re.IGNORECASE,
)

SAMPLE_ROWS = 3


@lru_cache(maxsize=512)
def _keyword_pattern(keyword: str) -> re.Pattern:
    # No letter directly before the keyword: "hr" does not fire inside
    # "three", while units glued to values ("500mg", "120/80mmhg") still match
    return re.compile(r"(?<![a-z])" + re.escape(keyword))


def count_hits(text: str, keywords: tuple[str, ...]) -> int:
    """Number of vocabulary keywords present in already-lowercased text."""
    return sum(1 for keyword in keywords if _keyword_pattern(keyword).search(text))


def classify(headers: list[str], sample_rows: str) -> TableCategory:
    """
    Assign a category from keyword overlap.

    The category with the strictly highest hit count wins; ties go to
    lab results, then vital signs, then medication. No hits at all yields
    ``general``.

    Args:
        headers: Table column headers
        sample_rows: A few data rows flattened to text

    Returns:
        TableCategory
    """
    combined = f"{' '.join(headers)} {sample_rows}".lower()

    best = TableCategory.GENERAL
    best_hits = 0
    for category, keywords in CATEGORY_VOCABULARIES:
        hits = count_hits(combined, keywords)
        if hits > best_hits:
            best, best_hits = category, hits

    return best


def extract_entities(text: str) -> list[str]:
    """
    Medical vocabulary terms mentioned in the text.

    Returns:
        Matching terms in vocabulary order, without duplicates
    """
    lowered = text.lower()
    found: list[str] = []
    for term in MEDICAL_ENTITIES:
        if term not in found and _keyword_pattern(term).search(lowered):
            found.append(term)
    return found


def sample_text(table: ExtractedTable, max_rows: int = SAMPLE_ROWS) -> str:
    """First few data rows flattened to a single string."""
    return " ".join(" ".join(row) for row in table.rows[:max_rows])


def is_domain_table(table: ExtractedTable) -> bool:
    """Cheap pre-filter: does the table mention any clinical keyword?"""
    all_text = " ".join(table.headers + [cell for row in table.rows for cell in row]).lower()
    return count_hits(all_text, DOMAIN_TABLE_KEYWORDS) > 0


def searchable_text(table: ExtractedTable) -> str:
    """Text projection that gets embedded and lexically indexed."""
    lines = [f"Headers: {', '.join(table.headers)}"]
    for i, row in enumerate(table.rows, start=1):
        lines.append(f"Row {i}: {', '.join(row)}")
    return "\n".join(lines)


def detect_content_type(text: str) -> str:
    """Rough content label for chunk metadata."""
    lowered = text.lower()
    counts = {
        label: sum(1 for term in terms if term in lowered)
        for label, terms in CONTENT_TYPE_TERMS.items()
    }

    if counts["regulatory"] >= 2:
        return "regulatory"
    if counts["medical"] >= 3:
        return "medical"
    if counts["educational"] >= 2:
        return "educational"
    return "general"


def has_medical_terms(text: str) -> bool:
    return bool(MEDICAL_TERMS_PATTERN.search(text))


def has_regulatory_terms(text: str) -> bool:
    return bool(REGULATORY_TERMS_PATTERN.search(text))


class TableProcessingResult(BaseModel):
    """Outcome of processing one document's tables."""

    stored: list[Table]
    skipped: int = 0
    tokens_used: int = 0

    @property
    def stored_count(self) -> int:
        return len(self.stored)


class TableProcessor:
    """
    Turns extracted tables into classified, embedded ``Table`` records.

    Tables failing the domain pre-filter are skipped and counted. Embedding
    and store errors propagate to the caller.
    """

    def __init__(self, embedder: "EmbeddingProvider", store: "DocumentStore"):
        self.embedder = embedder
        self.store = store

    def build_table(
        self,
        document_id: str,
        table_index: int,
        table: ExtractedTable,
        embedding: Optional[list[float]] = None,
    ) -> Table:
        text = searchable_text(table)
        return Table(
            table_id=f"{document_id}_t{table_index}",
            document_id=document_id,
            table_index=table_index,
            headers=list(table.headers),
            rows=[list(row) for row in table.rows],
            row_count=len(table.rows),
            col_count=len(table.headers),
            page_number=table.page_number,
            confidence=table.confidence,
            category=classify(table.headers, sample_text(table)),
            entities=extract_entities(text),
            searchable_text=text,
            embedding=embedding,
        )

    async def process(
        self,
        document_id: str,
        tables: list[ExtractedTable],
    ) -> TableProcessingResult:
        """
        Filter, embed, classify, and persist a document's tables.

        Args:
            document_id: Parent document
            tables: Validated tables from the extractor or boundary detector

        Returns:
            TableProcessingResult with stored tables and skip count
        """
        relevant = [t for t in tables if is_domain_table(t)]
        skipped = len(tables) - len(relevant)

        if skipped:
            logger.info(f"Skipped {skipped} non-medical table(s) for {document_id}")

        stored: list[Table] = []
        tokens_used = 0
        for table_index, table in enumerate(relevant):
            embedded = await self.embedder.embed(searchable_text(table))
            tokens_used += embedded.tokens_used
            record = self.build_table(document_id, table_index, table, embedded.vector)
            await self.store.insert_table(record)
            stored.append(record)
            logger.debug(
                f"Stored table {record.table_id} as {record.category.value} "
                f"({record.row_count}x{record.col_count})"
            )

        return TableProcessingResult(stored=stored, skipped=skipped, tokens_used=tokens_used)
