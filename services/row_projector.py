"""
Row projector.

Applies a column mapping to the raw matrix. Pure: the same inputs always
give the same rows, and a new mapping means a fresh projection.
"""

from models.imports import (
    CanonicalRow,
    ColumnMapping,
    FieldKind,
    FieldSpec,
)
from utils.text_utils import last_segment


def project_rows(
    raw_rows: list[list[str]],
    columns: list[str],
    mapping: ColumnMapping,
    field_specs: tuple[FieldSpec, ...],
) -> list[CanonicalRow]:
    """
    Build one CanonicalRow per source row, preserving order.

    Unmapped fields and cells past the end of a short row become "".
    Product references like "Gas:Industrial:OX-40" keep only "OX-40".
    """
    index_of = {column: i for i, column in reversed(list(enumerate(columns)))}
    plan = []
    for spec in field_specs:
        column = mapping.get(spec.key)
        plan.append((spec, index_of.get(column) if column else None))

    projected = []
    for raw in raw_rows:
        values = {}
        for spec, idx in plan:
            value = ""
            if idx is not None and idx < len(raw):
                cell = raw[idx]
                value = "" if cell is None else str(cell)
                if spec.kind == FieldKind.PRODUCT and value:
                    value = last_segment(value)
            values[spec.key.value] = value
        projected.append(CanonicalRow(**values))

    return projected
