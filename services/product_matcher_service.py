"""
Product matcher.

Resolves a row's product reference against the catalog: exact code first,
then a cheap description similarity scan when the code is unknown.
"""

from dataclasses import dataclass
from typing import Optional
import structlog

from models.imports import CatalogProduct
from models.import_run import MatchStrategy
from utils.text_utils import normalize_description

logger = structlog.get_logger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.8


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Positional character-match ratio between two descriptions.

    Both strings are lowercased, trimmed and whitespace-collapsed. Counts
    positions where the characters agree over the shorter length, divided
    by the longer length. Not an edit distance: "oxygen" vs "xoxygen"
    scores low. Linear time, so it is safe inside per-row loops.

    Returns:
        0.0 when either side is empty, 1.0 when identical
    """
    a = normalize_description(a)
    b = normalize_description(b)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    matches = sum(x == y for x, y in zip(a, b))
    return matches / max(len(a), len(b))


@dataclass(frozen=True)
class ProductMatch:
    """A resolved catalog product and how it was found."""
    product: CatalogProduct
    strategy: MatchStrategy
    score: float = 1.0

    @property
    def fuzzy_info(self) -> Optional[dict]:
        if self.strategy != MatchStrategy.FUZZY_DESCRIPTION:
            return None
        return {
            "best_score": round(self.score, 4),
            "best_description": self.product.description,
        }


class ProductMatcher:
    """
    Catalog index for one import run.

    Codes are compared trimmed and case-insensitively.
    """

    def __init__(
        self,
        catalog: list[CatalogProduct],
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ):
        self.catalog = catalog
        self.threshold = threshold
        self._by_code: dict[str, CatalogProduct] = {}
        for product in catalog:
            key = (product.product_code or "").strip().lower()
            if key and key not in self._by_code:
                self._by_code[key] = product

    def __len__(self) -> int:
        return len(self.catalog)

    def by_code(self, code: Optional[str]) -> Optional[CatalogProduct]:
        if not code:
            return None
        return self._by_code.get(code.strip().lower())

    def best_by_description(self, description: Optional[str]) -> Optional[ProductMatch]:
        """
        Highest-scoring catalog product for a description.

        Ties keep the first product encountered. Returns None when the best
        score is below the threshold.
        """
        best_score = 0.0
        best: Optional[CatalogProduct] = None
        for product in self.catalog:
            score = similarity(description, product.description)
            if score > best_score:
                best_score = score
                best = product

        if best is None or best_score < self.threshold:
            return None
        return ProductMatch(best, MatchStrategy.FUZZY_DESCRIPTION, best_score)

    def resolve(self, code: Optional[str], description: Optional[str]) -> Optional[ProductMatch]:
        """Exact code match, else description fallback when a description is present."""
        product = self.by_code(code)
        if product is not None:
            return ProductMatch(product, MatchStrategy.PRODUCT_CODE)

        if description and description.strip():
            match = self.best_by_description(description)
            if match is not None:
                logger.debug(
                    "product_matched_fuzzy",
                    product_code=code,
                    matched_to=match.product.product_code,
                    score=f"{match.score:.2f}"
                )
            return match

        return None
