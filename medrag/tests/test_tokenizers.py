"""Tests for lexical tokenizers."""

from medrag.tokenizers import extract_keywords, get_tokenizer, index_tokenize, simple_tokenize


class TestExtractKeywords:
    """Tests for query keyword extraction."""

    def test_basic(self):
        """Test lowercasing, punctuation stripping, and short-token removal."""
        assert extract_keywords("What's my HbA1c result?") == ["whats", "hba1c", "result"]

    def test_dedupe_keeps_order(self):
        """Test repeated words appear once in query order."""
        assert extract_keywords("glucose level glucose") == ["glucose", "level"]

    def test_cap(self):
        """Test the keyword cap."""
        assert extract_keywords("alpha bravo charlie delta", max_keywords=2) == ["alpha", "bravo"]

    def test_blank(self):
        """Test queries with no usable words."""
        assert extract_keywords("a, b?") == []


class TestIndexTokenize:
    """Tests for index-side tokenization."""

    def test_clinical_values(self):
        """Test decimals and ranges stay whole."""
        assert index_tokenize("Glucose 95 mg/dL (70-99)") == ["glucose", "95", "mg", "dl", "70-99"]
        assert index_tokenize("HbA1c 5.4") == ["hba1c", "5.4"]

    def test_simple(self):
        """Test the basic tokenizer."""
        assert simple_tokenize("Blood pressure: 120/80 a") == ["blood", "pressure", "120", "80"]

    def test_get_tokenizer(self):
        """Test tokenizer lookup by name."""
        assert get_tokenizer() is index_tokenize
        assert get_tokenizer("simple") is simple_tokenize
