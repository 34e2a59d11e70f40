"""
Text utilities for header and free-text comparison.

Used by the column mapper (header names) and the product matcher
(catalog descriptions).
"""

import re
from typing import Optional

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_WHITESPACE = re.compile(r"\s+")


def normalize_header(name: Optional[str]) -> str:
    """
    Normalize a column header for exact comparison.

    - "Customer ID" → "customerid"
    - "Ref_No." → "refno"
    - "  Qty-Out " → "qtyout"

    Args:
        name: Raw header text (may be None)

    Returns:
        Lowercase string with every non-alphanumeric character removed
    """
    if not name:
        return ""
    return _NON_ALNUM.sub("", name.lower())


def normalize_description(text: Optional[str]) -> str:
    """
    Normalize free text for similarity scoring.

    Lowercases, trims, and collapses internal whitespace runs to one space.
    """
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text.lower().strip())


def last_segment(value: str, separator: str = ":") -> str:
    """
    Keep only the final segment of a namespaced identifier.

    "Gas:Industrial:OX-40" → "OX-40"
    """
    if separator not in value:
        return value
    return value.split(separator)[-1].strip()
