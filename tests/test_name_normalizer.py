"""
Tests for name normalization.
"""
import pytest

from api.services.name_normalizer import normalize_name, name_tokens, spaceless_key

pytestmark = pytest.mark.unit


class TestNormalizeName:
    """Tests for normalize_name()."""

    def test_empty_stays_empty(self):
        """Test empty and None inputs normalize to empty string."""
        assert normalize_name("") == ""
        assert normalize_name("   ") == ""
        assert normalize_name(None) == ""

    def test_last_first_reordered(self):
        """Test 'Last, First' becomes 'first last'."""
        assert normalize_name("Maxwell, Ghislaine") == "ghislaine maxwell"

    def test_leading_honorific_stripped(self):
        """Test leading honorifics are removed."""
        assert normalize_name("Dr. Robert Smith") == "robert smith"
        assert normalize_name("Mr Jeffrey Epstein") == "jeffrey epstein"
        assert normalize_name("Prof. Dr. Alan Dershowitz") == "alan dershowitz"

    def test_trailing_suffix_stripped(self):
        """Test generational suffixes and credentials are removed."""
        assert normalize_name("John Smith Jr.") == "john smith"
        assert normalize_name("David Perry QC") == "david perry"
        assert normalize_name("Jane Doe, Esq.") == "jane doe"

    def test_comma_before_suffix_is_not_a_swap(self):
        """Test 'John Smith, Jr.' keeps the name order."""
        assert normalize_name("John Smith, Jr.") == "john smith"

    def test_comma_with_more_parts_is_whitespace(self):
        """Test several commas are treated as separators, not a reorder."""
        assert normalize_name("Smith, John, Jr.") == "smith john"

    def test_accents_folded(self):
        """Test accented letters fold to ASCII."""
        assert normalize_name("Nadia Marcinková") == "nadia marcinkova"

    def test_punctuation_and_case(self):
        """Test punctuation is dropped, case lowered, whitespace collapsed."""
        assert normalize_name("  JEAN-LUC   Brunel ") == "jeanluc brunel"
        assert normalize_name("J. Epstein") == "j epstein"

    def test_only_punctuation_is_empty(self):
        """Test names with no letters normalize to empty."""
        assert normalize_name("12345") == ""
        assert normalize_name("., --") == ""

    def test_single_part_before_comma(self):
        """Test a trailing comma with nothing after it does not swap."""
        assert normalize_name("Epstein,") == "epstein"

    @pytest.mark.parametrize("raw", [
        "Maxwell, Ghislaine",
        "Dr. Robert Smith",
        "John Smith Jr.",
        "Smith, John, Jr.",
        "Nadia Marcinková",
        "To nyRicco",
        "Dr. Jr.",
        "",
        "  ",
        "O'Brien, Patrick",
    ])
    def test_idempotent(self, raw):
        """Test normalizing twice gives the same result as once."""
        once = normalize_name(raw)
        assert normalize_name(once) == once


class TestNameHelpers:
    """Tests for token helpers."""

    def test_name_tokens(self):
        """Test tokens of a normalized name."""
        assert name_tokens("jeffrey epstein") == ["jeffrey", "epstein"]
        assert name_tokens("") == []

    def test_spaceless_key(self):
        """Test the spaceless key removes spaces."""
        assert spaceless_key("to nyricco") == "tonyricco"
