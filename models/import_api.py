"""
Import API schemas.

Request and response bodies for the /api/imports routes.
"""

from typing import Optional
from pydantic import Field

from models.base import BaseSchema
from models.imports import CanonicalField, FieldSpec


class FieldMappingEntry(BaseSchema):
    """One canonical field and the column currently feeding it."""

    field: CanonicalField
    label: str
    required: bool
    column: Optional[str] = None

    @classmethod
    def from_spec(cls, spec: FieldSpec, column: Optional[str]) -> "FieldMappingEntry":
        return cls(field=spec.key, label=spec.label, required=spec.required, column=column)


class ImportPreviewResponse(BaseSchema):
    """Loaded file: columns, mapping, first rows and validation issues."""

    file_name: str
    row_count: int = Field(..., ge=0)
    columns: list[str]
    mapping: list[FieldMappingEntry]
    mapping_from_saved: bool = False
    preview_rows: list[dict] = Field(default_factory=list)
    issues: list[dict] = Field(default_factory=list)
    issue_count: int = 0


class MappingUpdateRequest(BaseSchema):
    """
    Manual mapping changes.

    A null or empty column unmaps the field.
    """

    changes: dict[CanonicalField, Optional[str]] = Field(..., min_length=1)


class PreviewCheckResponse(BaseSchema):
    """Dry-run statuses for every row."""

    statuses: list[dict]
    summary: dict[str, int]


class ImportStartRequest(BaseSchema):
    """Options for launching a run."""

    exclude_invalid: bool = Field(False, description="Import only rows without validation issues")
    required_only: bool = Field(False, description="Only require presence of required fields")
    chunk_size: Optional[int] = Field(None, ge=1, le=5000, description="Rows per chunk")


class ImportResumeRequest(BaseSchema):
    """Where a paused run continues from; omitted means retry the failed chunk."""

    target_index: Optional[int] = Field(None, ge=0)
    abort: bool = Field(False, description="Give up on the paused run instead")


class ImportStatusResponse(BaseSchema):
    """Live or final state of a run."""

    import_type: str
    file_name: str
    state: str
    percent_complete: int = Field(..., ge=0, le=100)
    processed_row_count: int
    total_rows: int
    summary: dict
    last_error: Optional[str] = None
    status: Optional[str] = None
    error_message: Optional[str] = None
    errors: list[dict] = Field(default_factory=list)
    skipped_items: list[dict] = Field(default_factory=list)
    outcome_counts: dict[str, int] = Field(default_factory=dict)
