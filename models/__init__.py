"""
Pydantic models and pipeline records.

Canonical schema, run bookkeeping and API payloads.
"""

from models.base import BaseSchema
from models.imports import (
    ImportType,
    CanonicalField,
    FieldKind,
    FieldSpec,
    INVOICE_FIELDS,
    SALES_RECEIPT_FIELDS,
    fields_for,
    ColumnMapping,
    CanonicalRow,
    ValidationReason,
    ValidationIssue,
    CatalogProduct,
)
from models.import_run import (
    ImportStatus,
    RowOutcome,
    SkipReason,
    MatchStrategy,
    ChunkError,
    SkippedItem,
    ChunkResult,
    ImportSummary,
    ImportRunRecord,
    ProgressEvent,
    TerminalEvent,
    PausedEvent,
)
from models.import_api import (
    FieldMappingEntry,
    ImportPreviewResponse,
    MappingUpdateRequest,
    PreviewCheckResponse,
    ImportStartRequest,
    ImportResumeRequest,
    ImportStatusResponse,
)

__all__ = [
    # Base
    "BaseSchema",

    # Canonical schema
    "ImportType",
    "CanonicalField",
    "FieldKind",
    "FieldSpec",
    "INVOICE_FIELDS",
    "SALES_RECEIPT_FIELDS",
    "fields_for",
    "ColumnMapping",
    "CanonicalRow",
    "ValidationReason",
    "ValidationIssue",
    "CatalogProduct",

    # Runs
    "ImportStatus",
    "RowOutcome",
    "SkipReason",
    "MatchStrategy",
    "ChunkError",
    "SkippedItem",
    "ChunkResult",
    "ImportSummary",
    "ImportRunRecord",
    "ProgressEvent",
    "TerminalEvent",
    "PausedEvent",

    # API
    "FieldMappingEntry",
    "ImportPreviewResponse",
    "MappingUpdateRequest",
    "PreviewCheckResponse",
    "ImportStartRequest",
    "ImportResumeRequest",
    "ImportStatusResponse",
]
