"""
Row validator.

Checks projected rows before anything is sent to the remote store. Every
applicable check runs for every row so the caller can highlight all
offending cells at once; the import stays blocked while any issue remains.
"""

import math
import re
from typing import Optional
import structlog

from models.imports import (
    CanonicalRow,
    ColumnMapping,
    FieldKind,
    FieldSpec,
    ValidationIssue,
    ValidationReason,
)

logger = structlog.get_logger(__name__)

_DMY = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
_YMD = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


def is_valid_date(value: Optional[str]) -> bool:
    """
    Accept DD/MM/YYYY or YYYY-MM-DD.

    Day must be 01-31 and month 01-12; no calendar check beyond that,
    so 31/02/2024 passes.
    """
    if not value:
        return False

    match = _DMY.match(value)
    if match:
        day, month, _year = match.groups()
    else:
        match = _YMD.match(value)
        if not match:
            return False
        _year, month, day = match.groups()

    return "01" <= day <= "31" and "01" <= month <= "12"


def is_number(value: Optional[str]) -> bool:
    """
    True for plain decimal or exponent notation, surrounding spaces allowed.

    Values that overflow to infinity ("1e400") are not numbers.
    """
    if value is None or not _NUMBER.match(value.strip()):
        return False
    return math.isfinite(float(value))


def normalize_date(value: str) -> str:
    """
    Rewrite DD/MM/YYYY as YYYY-MM-DD; anything else passes through.

    "05/03/2024" → "2024-03-05"
    """
    if value and "/" in value:
        parts = value.split("/")
        if len(parts) == 3 and all(parts):
            day, month, year = parts
            return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    return value


def validate_rows(
    rows: list[CanonicalRow],
    mapping: ColumnMapping,
    field_specs: tuple[FieldSpec, ...],
    required_only: bool = False,
) -> list[ValidationIssue]:
    """
    Validate every row against the field list.

    Args:
        rows: Projected rows, in source order
        mapping: Mapping the rows were projected with
        field_specs: Fields of the import surface
        required_only: Skip presence checks for optional fields

    Returns:
        All issues found (empty list means the import may proceed)
    """
    issues: list[ValidationIssue] = []
    presence_specs = [
        spec for spec in field_specs
        if spec.required or not required_only
    ]
    date_specs = [spec for spec in field_specs if spec.kind == FieldKind.DATE]
    quantity_specs = [spec for spec in field_specs if spec.kind == FieldKind.QUANTITY]

    for idx, row in enumerate(rows):
        for spec in presence_specs:
            if not mapping.get(spec.key):
                issues.append(ValidationIssue(idx, spec.key, ValidationReason.FIELD_NOT_MAPPED))
            elif not row.get(spec.key).strip():
                issues.append(ValidationIssue(idx, spec.key, ValidationReason.MISSING_VALUE))

        for spec in date_specs:
            value = row.get(spec.key)
            if value and not is_valid_date(value):
                issues.append(ValidationIssue(idx, spec.key, ValidationReason.INVALID_DATE_FORMAT))

        for spec in quantity_specs:
            value = row.get(spec.key)
            if value.strip() and not is_number(value):
                issues.append(ValidationIssue(idx, spec.key, ValidationReason.NOT_A_NUMBER))

    if issues:
        logger.info(
            "rows_failed_validation",
            rows=len(rows),
            issues=len(issues),
            rows_with_issues=len({i.row_index for i in issues})
        )

    return issues
