"""
Column mapper.

Infers which source column feeds each canonical field. A mapping saved for
the exact same header list wins; otherwise headers are matched against each
field's key, label and aliases after normalization. Only exact normalized
matches count, never substrings.
"""

from typing import Optional
import structlog

from models.imports import (
    CanonicalField,
    ColumnMapping,
    FieldSpec,
    ImportType,
    fields_for,
)
from exceptions import ImportMappingError
from services.mapping_store_service import MappingStore
from utils.text_utils import normalize_header

logger = structlog.get_logger(__name__)


def _candidate_names(spec: FieldSpec) -> set[str]:
    names = {normalize_header(spec.key.value), normalize_header(spec.label)}
    names.update(normalize_header(alias) for alias in spec.aliases)
    names.discard("")
    return names


def auto_map(columns: list[str], field_specs: tuple[FieldSpec, ...]) -> ColumnMapping:
    """
    Map fields to columns by exact normalized name.

    For each field, the first column (in source order) whose normalized
    header equals the field's normalized key, label or one of its aliases
    is selected. Fields with no such column stay unmapped.
    """
    normalized = [(column, normalize_header(column)) for column in columns]
    mapping: ColumnMapping = {}

    for spec in field_specs:
        candidates = _candidate_names(spec)
        for column, norm in normalized:
            if norm and norm in candidates:
                mapping[spec.key] = column
                break

    return mapping


def check_mapping(mapping: ColumnMapping, field_specs: tuple[FieldSpec, ...]) -> None:
    """
    Raise if any required field has no mapped column.

    Runs before any remote call is made.

    Raises:
        ImportMappingError: Listing every unmapped required field
    """
    missing = [
        spec.key.value for spec in field_specs
        if spec.required and not mapping.get(spec.key)
    ]
    if missing:
        raise ImportMappingError(
            f"Required field(s) not mapped: {', '.join(missing)}",
            fields=missing
        )


class ColumnMapper:
    """
    Mapping for one loaded file on one import surface.

    Every change (automatic or manual) is written back to the store under
    the current column signature.
    """

    def __init__(
        self,
        import_type: ImportType,
        columns: list[str],
        store: MappingStore,
    ):
        self.import_type = import_type
        self.columns = list(columns)
        self.fields = fields_for(import_type)
        self.store = store
        self.from_saved = False
        self.mapping: ColumnMapping = self._initial_mapping()

    def _initial_mapping(self) -> ColumnMapping:
        saved = self.store.load(self.import_type, self.columns)
        if saved is not None:
            self.from_saved = True
            logger.info(
                "saved_mapping_reused",
                import_type=self.import_type.value,
                mapped=len(saved)
            )
            return dict(saved)

        mapping = auto_map(self.columns, self.fields)
        logger.info(
            "mapping_inferred",
            import_type=self.import_type.value,
            mapped=len(mapping),
            unmapped=[s.key.value for s in self.fields if s.key not in mapping]
        )
        if self.columns:
            self.store.save(self.import_type, self.columns, mapping)
        return mapping

    def column_for(self, field: CanonicalField) -> Optional[str]:
        return self.mapping.get(field)

    def set(self, field: CanonicalField, column: Optional[str]) -> ColumnMapping:
        """
        Manually map (or unmap, with None/"") a field.

        Raises:
            ImportMappingError: If the column is not part of this file
        """
        if column and column not in self.columns:
            raise ImportMappingError(
                f"Column '{column}' is not present in the file",
                fields=[field.value]
            )

        if column:
            self.mapping[field] = column
        else:
            self.mapping.pop(field, None)

        self._persist()
        logger.info(
            "mapping_changed",
            import_type=self.import_type.value,
            field=field.value,
            column=column
        )
        return self.mapping

    def update(self, changes: dict[CanonicalField, Optional[str]]) -> ColumnMapping:
        """Apply several manual changes and persist once."""
        for field, column in changes.items():
            if column and column not in self.columns:
                raise ImportMappingError(
                    f"Column '{column}' is not present in the file",
                    fields=[field.value]
                )
        for field, column in changes.items():
            if column:
                self.mapping[field] = column
            else:
                self.mapping.pop(field, None)
        self._persist()
        return self.mapping

    def reset(self) -> ColumnMapping:
        """Forget the saved mapping for this signature and clear all fields."""
        self.store.delete(self.import_type, self.columns)
        self.mapping = {}
        self.from_saved = False
        logger.info("mapping_reset", import_type=self.import_type.value)
        return self.mapping

    def check(self) -> None:
        check_mapping(self.mapping, self.fields)

    def _persist(self) -> None:
        if self.columns:
            self.store.save(self.import_type, self.columns, self.mapping)
