"""
Unit tests for the row validator.

Tests presence, date and quantity checks, and that every issue is
reported rather than stopping at the first.
"""

import pytest

from models.imports import (
    CanonicalField,
    INVOICE_FIELDS,
    ValidationReason,
)
from services.column_mapper_service import auto_map
from services.row_validator import (
    is_number,
    is_valid_date,
    normalize_date,
    validate_rows,
)
from tests.factories import CanonicalRowFactory


FULL_MAPPING = {spec.key: spec.label for spec in INVOICE_FIELDS}


# ===================
# DATE FORMAT
# ===================

class TestIsValidDate:
    """Tests for is_valid_date."""

    @pytest.mark.parametrize("value", ["05/03/2024", "31/12/2024", "2024-03-05", "31/02/2024"])
    def test_accepts(self, value):
        """Both formats pass, with no calendar check beyond ranges."""
        assert is_valid_date(value) is True

    @pytest.mark.parametrize("value", [
        "32/01/2024",  # day out of range
        "00/01/2024",
        "05/13/2024",  # month out of range
        "5/3/2024",  # missing zero padding
        "05/03/24",  # two-digit year
        "2024/03/05",
        "March 5, 2024",
        "",
    ])
    def test_rejects(self, value):
        """Anything else is an invalid date format."""
        assert is_valid_date(value) is False


class TestNormalizeDate:
    """Tests for normalize_date."""

    def test_rewrites_day_month_year(self):
        """DD/MM/YYYY becomes YYYY-MM-DD."""
        assert normalize_date("05/03/2024") == "2024-03-05"

    def test_iso_passes_through(self):
        """Already-ISO dates are unchanged."""
        assert normalize_date("2024-03-05") == "2024-03-05"


class TestIsNumber:
    """Tests for is_number."""

    @pytest.mark.parametrize("value", ["0", "12", "1.5", " 3 ", "-2", ".5", "1e3"])
    def test_accepts(self, value):
        assert is_number(value) is True

    @pytest.mark.parametrize("value", ["", "abc", "1,5", "2 units", "--1", "1e400", "-1e400"])
    def test_rejects(self, value):
        assert is_number(value) is False


# ===================
# VALIDATE ROWS
# ===================

class TestValidateRows:
    """Tests for validate_rows."""

    def test_valid_rows_have_no_issues(self):
        """Fully populated rows pass."""
        rows = CanonicalRowFactory.create_batch(3)

        assert validate_rows(rows, FULL_MAPPING, INVOICE_FIELDS) == []

    def test_missing_value(self):
        """A mapped but blank field is reported as missing."""
        rows = [CanonicalRowFactory.create(customer_name="   ")]

        issues = validate_rows(rows, FULL_MAPPING, INVOICE_FIELDS)

        assert [(i.row_index, i.field, i.reason) for i in issues] == [
            (0, CanonicalField.CUSTOMER_NAME, ValidationReason.MISSING_VALUE)
        ]

    def test_unmapped_field_reported_for_every_row(self):
        """Each row gets a field-not-mapped issue for an unmapped field."""
        mapping = dict(FULL_MAPPING)
        del mapping[CanonicalField.SERIAL_NUMBER]
        rows = CanonicalRowFactory.create_batch(2)

        issues = validate_rows(rows, mapping, INVOICE_FIELDS)

        assert [(i.row_index, i.reason) for i in issues] == [
            (0, ValidationReason.FIELD_NOT_MAPPED),
            (1, ValidationReason.FIELD_NOT_MAPPED),
        ]

    def test_required_only_skips_optional_presence(self):
        """With required_only, unmapped optional fields are fine."""
        mapping = auto_map(
            ["Customer ID", "Customer Name", "Date", "Product Code", "Invoice Number", "Qty Out", "Qty In"],
            INVOICE_FIELDS,
        )
        rows = CanonicalRowFactory.create_batch(2, description="")

        assert validate_rows(rows, mapping, INVOICE_FIELDS, required_only=True) == []

    def test_invalid_date(self):
        """A non-blank date in another format is reported."""
        rows = [CanonicalRowFactory.create(date="2024/03/05")]

        issues = validate_rows(rows, FULL_MAPPING, INVOICE_FIELDS)

        assert issues[0].reason == ValidationReason.INVALID_DATE_FORMAT

    def test_not_a_number(self):
        """A non-numeric quantity is reported."""
        rows = [CanonicalRowFactory.create(qty_in="two")]

        issues = validate_rows(rows, FULL_MAPPING, INVOICE_FIELDS)

        assert issues[0].field == CanonicalField.QTY_IN
        assert issues[0].reason == ValidationReason.NOT_A_NUMBER

    def test_overflowing_quantity_is_not_a_number(self):
        """Exponents that overflow to infinity are rejected before import."""
        rows = [CanonicalRowFactory.create(qty_out="1e400")]

        issues = validate_rows(rows, FULL_MAPPING, INVOICE_FIELDS)

        assert [(i.field, i.reason) for i in issues] == [
            (CanonicalField.QTY_OUT, ValidationReason.NOT_A_NUMBER)
        ]

    def test_no_short_circuit(self):
        """Every offending cell of every row is reported."""
        rows = [
            CanonicalRowFactory.create(date="bad", qty_out="x", qty_in="y"),
            CanonicalRowFactory.create(),
            CanonicalRowFactory.create(customer_id=""),
        ]

        issues = validate_rows(rows, FULL_MAPPING, INVOICE_FIELDS)

        assert len(issues) == 4
        assert {i.row_index for i in issues} == {0, 2}

    def test_issue_dict_shape(self):
        """Issues serialize as {row, field, reason}."""
        rows = [CanonicalRowFactory.create(qty_out="x")]

        issue = validate_rows(rows, FULL_MAPPING, INVOICE_FIELDS)[0]

        assert issue.to_dict() == {"row": 0, "field": "qty_out", "reason": "Not a number"}
