"""
Canonical import schema.

Defines the fixed set of fields every source file is mapped onto, the
per-surface field lists (invoices vs. sales receipts), and the row and
validation records that flow through the engine.
"""

from dataclasses import dataclass, fields as dataclass_fields
from enum import Enum
from typing import Optional


class ImportType(str, Enum):
    """Import surfaces. Only one run may be active per surface."""
    INVOICES = "invoices"
    SALES_RECEIPTS = "sales_receipts"


class CanonicalField(str, Enum):
    """Slots of the target schema, independent of source column names."""
    CUSTOMER_ID = "customer_id"
    CUSTOMER_NAME = "customer_name"
    DATE = "date"
    PRODUCT_CODE = "product_code"
    DOCUMENT_NUMBER = "document_number"
    QTY_OUT = "qty_out"
    QTY_IN = "qty_in"
    DESCRIPTION = "description"
    RATE = "rate"
    AMOUNT = "amount"
    SERIAL_NUMBER = "serial_number"


class FieldKind(str, Enum):
    """How a field's value is checked and transformed."""
    TEXT = "text"
    DATE = "date"
    QUANTITY = "quantity"
    PRODUCT = "product"
    DECIMAL = "decimal"


@dataclass(frozen=True)
class FieldSpec:
    """One canonical field as presented on an import surface."""
    key: CanonicalField
    label: str
    required: bool
    kind: FieldKind = FieldKind.TEXT
    aliases: tuple[str, ...] = ()


_OPTIONAL_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec(CanonicalField.DESCRIPTION, "Description", False,
              aliases=("desc", "itemdesc", "linedesc")),
    FieldSpec(CanonicalField.RATE, "Rate", False, FieldKind.DECIMAL,
              aliases=("rate", "unitprice")),
    FieldSpec(CanonicalField.AMOUNT, "Amount", False, FieldKind.DECIMAL,
              aliases=("amount", "lineamount", "total")),
    FieldSpec(CanonicalField.SERIAL_NUMBER, "Serial Number", False,
              aliases=("serialnumber", "serial")),
)

INVOICE_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec(CanonicalField.CUSTOMER_ID, "Customer ID", True),
    FieldSpec(CanonicalField.CUSTOMER_NAME, "Customer Name", True),
    FieldSpec(CanonicalField.DATE, "Date", True, FieldKind.DATE),
    FieldSpec(CanonicalField.PRODUCT_CODE, "Product Code", True, FieldKind.PRODUCT),
    FieldSpec(CanonicalField.DOCUMENT_NUMBER, "Invoice Number", True,
              aliases=("invoicenumber", "invoiceno", "invoice")),
    FieldSpec(CanonicalField.QTY_OUT, "Qty Out", True, FieldKind.QUANTITY),
    FieldSpec(CanonicalField.QTY_IN, "Qty In", True, FieldKind.QUANTITY),
) + _OPTIONAL_FIELDS

SALES_RECEIPT_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec(CanonicalField.CUSTOMER_ID, "Customer ID", True),
    FieldSpec(CanonicalField.CUSTOMER_NAME, "Customer Name", True),
    FieldSpec(CanonicalField.DATE, "Date", True, FieldKind.DATE,
              aliases=("txndate", "txn_date")),
    FieldSpec(CanonicalField.PRODUCT_CODE, "Product Code", True, FieldKind.PRODUCT),
    FieldSpec(CanonicalField.DOCUMENT_NUMBER, "Sales Receipt Number", True,
              aliases=("refnumber", "ref number", "ref_no", "ref no")),
    FieldSpec(CanonicalField.QTY_OUT, "Qty Out", True, FieldKind.QUANTITY),
    FieldSpec(CanonicalField.QTY_IN, "Qty In", True, FieldKind.QUANTITY),
) + _OPTIONAL_FIELDS


def fields_for(import_type: ImportType) -> tuple[FieldSpec, ...]:
    """Field list for an import surface, required fields first."""
    if import_type == ImportType.SALES_RECEIPTS:
        return SALES_RECEIPT_FIELDS
    return INVOICE_FIELDS


# field -> source column name; a missing key means unmapped
ColumnMapping = dict[CanonicalField, str]


@dataclass
class CanonicalRow:
    """
    One source data row projected onto the canonical schema.

    Every field is a raw string; unmapped fields hold "".
    """
    customer_id: str = ""
    customer_name: str = ""
    date: str = ""
    product_code: str = ""
    document_number: str = ""
    qty_out: str = ""
    qty_in: str = ""
    description: str = ""
    rate: str = ""
    amount: str = ""
    serial_number: str = ""

    def get(self, field: CanonicalField) -> str:
        return getattr(self, field.value)

    def to_dict(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in dataclass_fields(self)}


class ValidationReason(str, Enum):
    """Why a cell failed validation."""
    FIELD_NOT_MAPPED = "Field not mapped"
    MISSING_VALUE = "Missing value"
    INVALID_DATE_FORMAT = "Invalid date format"
    NOT_A_NUMBER = "Not a number"


@dataclass(frozen=True)
class ValidationIssue:
    """Single per-row, per-field validation error."""
    row_index: int
    field: CanonicalField
    reason: ValidationReason

    def to_dict(self) -> dict:
        return {
            "row": self.row_index,
            "field": self.field.value,
            "reason": self.reason.value,
        }


@dataclass(frozen=True)
class CatalogProduct:
    """Trackable item from the catalog (read-only for the engine)."""
    product_code: str
    description: Optional[str] = None
