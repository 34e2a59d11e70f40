"""
Import run models.

Ledger records, per-chunk results, and the events a run emits to its
observers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from models.imports import CanonicalRow


class ImportStatus(str, Enum):
    """Lifecycle status of an import_history record."""
    STARTED = "started"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class RowOutcome(str, Enum):
    """Exactly one classification per source row after a run."""
    CREATED = "created"
    DUPLICATE = "duplicate"
    NOT_A_PRODUCT = "not_a_product"
    VALIDATION_BLOCKED = "validation_blocked"
    FAILED = "failed"


class SkipReason(str, Enum):
    """Expected, non-fatal reasons a line item is not created."""
    NOT_A_PRODUCT = "Not a recognized product"
    DUPLICATE = "Duplicate line item"


class MatchStrategy(str, Enum):
    """How a row's product reference was resolved."""
    PRODUCT_CODE = "product_code"
    FUZZY_DESCRIPTION = "fuzzy_description"


# ===================
# CHUNK RESULTS
# ===================

@dataclass
class ChunkError:
    """A remote failure (or fatal exception) scoped to one chunk."""
    type: str
    message: str
    row: Optional[dict] = None

    def to_dict(self) -> dict:
        data = {"type": self.type, "message": self.message}
        if self.row is not None:
            data["row"] = self.row
        return data


@dataclass
class SkippedItem:
    """A row that was deliberately not inserted."""
    row_index: int
    invoice_description: str
    invoice_product_code: str
    reason: SkipReason

    def to_dict(self) -> dict:
        return {
            "row": self.row_index,
            "invoice_description": self.invoice_description,
            "invoice_product_code": self.invoice_product_code,
            "reason": self.reason.value,
        }

    @classmethod
    def from_row(cls, row_index: int, row: CanonicalRow, reason: SkipReason) -> "SkippedItem":
        return cls(
            row_index=row_index,
            invoice_description=row.description,
            invoice_product_code=row.product_code,
            reason=reason,
        )


@dataclass
class ChunkResult:
    """
    Outcome of reconciling one chunk.

    outcomes is keyed by absolute row index so results from several chunks
    can be merged without collisions.
    """
    start_index: int
    row_count: int
    customers_created: int = 0
    customers_existing: int = 0
    documents_created: int = 0
    documents_existing: int = 0
    line_items_created: int = 0
    errors: list[ChunkError] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)
    outcomes: dict[int, RowOutcome] = field(default_factory=dict)
    asset_balances: dict[tuple[str, str], int] = field(default_factory=dict)

    @property
    def next_index(self) -> int:
        return self.start_index + self.row_count


class ImportSummary(BaseModel):
    """Counts stored on the ledger record and returned to the caller."""
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    customers_created: int = 0
    customers_existing: int = 0
    documents_created: int = 0
    documents_existing: int = 0
    line_items_created: int = 0
    line_items_skipped: int = 0
    validation_blocked: int = 0
    failed_rows: int = 0

    def add_chunk(self, result: ChunkResult) -> None:
        """Fold one chunk's counts into the running totals."""
        self.customers_created += result.customers_created
        self.customers_existing += result.customers_existing
        self.documents_created += result.documents_created
        self.documents_existing += result.documents_existing
        self.line_items_created += result.line_items_created
        self.line_items_skipped += len(result.skipped)
        self.imported += result.line_items_created
        self.skipped += len(result.skipped)
        self.errors += len(result.errors)
        self.failed_rows += sum(
            1 for outcome in result.outcomes.values() if outcome == RowOutcome.FAILED
        )


class ImportRunRecord(BaseModel):
    """Row of the import_history table."""
    id: Optional[str] = None
    file_name: str = ""
    import_type: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: ImportStatus = ImportStatus.STARTED
    summary: Optional[ImportSummary] = None
    error_message: Optional[str] = None


# ===================
# EVENTS
# ===================

class ProgressEvent(BaseModel):
    """Emitted after every chunk."""
    type: str = "progress"
    percent_complete: int = Field(ge=0, le=100)


class TerminalEvent(BaseModel):
    """Emitted once, when the cursor reaches the total row count."""
    type: str = "done"
    processed_row_count: int
    errors: list[dict] = Field(default_factory=list)
    skipped_items: list[dict] = Field(default_factory=list)


class PausedEvent(BaseModel):
    """Emitted when an unexpected chunk failure pauses the run."""
    type: str = "paused"
    next_index: int
    error: str
