"""
Unit tests for the product matcher.

Covers the positional similarity score, the acceptance threshold and
code-first resolution.
"""

import pytest

from models.imports import CatalogProduct
from models.import_run import MatchStrategy
from services.product_matcher_service import ProductMatcher, similarity


# ===================
# SIMILARITY
# ===================

class TestSimilarity:
    """Tests for similarity."""

    def test_identical_is_one(self):
        assert similarity("Oxygen 40L", "Oxygen 40L") == 1.0

    def test_normalizes_before_comparing(self):
        """Case, outer spaces and inner whitespace runs do not matter."""
        assert similarity("  OXYGEN   40l ", "oxygen 40L") == 1.0

    def test_empty_is_zero(self):
        assert similarity("", "Oxygen") == 0.0
        assert similarity(None, "Oxygen") == 0.0

    def test_positional_ratio(self):
        """Matching positions over the shorter length, divided by the longer."""
        # "abcd" vs "abxd": 3 of 4 positions agree
        assert similarity("abcd", "abxd") == pytest.approx(0.75)
        # "abc" vs "abcdef": 3 matches over max length 6
        assert similarity("abc", "abcdef") == pytest.approx(0.5)

    def test_not_an_edit_distance(self):
        """A single leading insertion shifts every position."""
        assert similarity("oxygen", "xoxygen") < 0.2


# ===================
# MATCHER
# ===================

@pytest.fixture
def matcher():
    catalog = [
        CatalogProduct("OX-40", "abcdefghij"),
        CatalogProduct("AR-20", "Argon cylinder 20L"),
        CatalogProduct("DUP-1", "same description"),
        CatalogProduct("DUP-2", "same description"),
    ]
    return ProductMatcher(catalog, threshold=0.8)


class TestProductMatcher:
    """Tests for ProductMatcher."""

    def test_code_match_is_case_insensitive_and_trimmed(self, matcher):
        """' ox-40 ' resolves to OX-40 by code."""
        match = matcher.resolve(" ox-40 ", None)

        assert match.product.product_code == "OX-40"
        assert match.strategy == MatchStrategy.PRODUCT_CODE
        assert match.fuzzy_info is None

    def test_code_wins_over_description(self, matcher):
        """A known code is used even when the description matches another product."""
        match = matcher.resolve("AR-20", "abcdefghij")

        assert match.product.product_code == "AR-20"

    def test_threshold_boundary_accepts_080(self, matcher):
        """8 of 10 matching positions (0.80) is accepted."""
        match = matcher.resolve("UNKNOWN", "abcdefghXX")

        assert match is not None
        assert match.product.product_code == "OX-40"
        assert match.strategy == MatchStrategy.FUZZY_DESCRIPTION
        assert match.score == pytest.approx(0.8)

    def test_threshold_boundary_rejects_below(self):
        """A best score just under the threshold is not a match."""
        catalog = [CatalogProduct("P-1", "a" * 100)]
        matcher = ProductMatcher(catalog, threshold=0.8)

        # 79 of 100 positions agree
        assert matcher.resolve("UNKNOWN", "a" * 79 + "b" * 21) is None
        assert matcher.resolve("UNKNOWN", "a" * 80 + "b" * 20) is not None

    def test_ties_keep_first_product(self, matcher):
        """Equal scores resolve to the first catalog entry."""
        match = matcher.resolve("UNKNOWN", "same description")

        assert match.product.product_code == "DUP-1"

    def test_unknown_code_without_description(self, matcher):
        """No code match and no description means no product."""
        assert matcher.resolve("UNKNOWN", "") is None
        assert matcher.resolve("UNKNOWN", "   ") is None

    def test_fuzzy_info_records_score_and_description(self, matcher):
        """Fuzzy matches carry what they matched to."""
        match = matcher.resolve("UNKNOWN", "abcdefghXX")

        assert match.fuzzy_info == {"best_score": 0.8, "best_description": "abcdefghij"}

    def test_first_code_wins_in_catalog(self):
        """Duplicate codes in the catalog resolve to the first entry."""
        matcher = ProductMatcher([
            CatalogProduct("OX-40", "first"),
            CatalogProduct("ox-40", "second"),
        ])

        assert matcher.by_code("OX-40").description == "first"
        assert len(matcher) == 2
