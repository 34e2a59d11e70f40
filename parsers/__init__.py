"""
File parsers.

Turn uploaded exports into string matrices for the import engine.
"""

from parsers.tabular_loader import (
    TabularData,
    load_matrix,
    load_tabular,
    split_header,
    is_header_row,
)

__all__ = [
    "TabularData",
    "load_matrix",
    "load_tabular",
    "split_header",
    "is_header_row",
]
