"""
Import service.

Entry point for bulk document imports. Holds the loaded file and its column
mapping per import surface, validates before anything touches the remote
store, and launches at most one ImportTask per surface at a time.
"""

from dataclasses import dataclass, field
from io import StringIO
from typing import Optional
import structlog

import pandas as pd

from config import settings
from exceptions import (
    ImportAlreadyRunningError,
    ImportRunNotFoundError,
    ImportValidationError,
)
from models.imports import (
    CanonicalField,
    CanonicalRow,
    ColumnMapping,
    ImportType,
    ValidationIssue,
)
from models.import_run import RowOutcome
from parsers.tabular_loader import TabularData, load_tabular
from services.column_mapper_service import ColumnMapper
from services.import_ledger_service import ImportLedgerService
from services.import_task import ImportTask
from services.mapping_store_service import JsonMappingStore, MappingStore
from services.reconciliation_service import PreviewCheck, ReconciliationEngine
from services.record_store import RecordStore, SupabaseRecordStore
from services.row_projector import project_rows
from services.row_validator import validate_rows

logger = structlog.get_logger(__name__)

PREVIEW_ROW_LIMIT = 5


@dataclass
class ImportSession:
    """A loaded file and its current mapping on one import surface."""
    import_type: ImportType
    file_name: str
    data: TabularData
    mapper: ColumnMapper
    _rows: Optional[list[CanonicalRow]] = field(default=None, repr=False)

    @property
    def columns(self) -> list[str]:
        return self.data.columns

    @property
    def mapping(self) -> ColumnMapping:
        return self.mapper.mapping

    @property
    def rows(self) -> list[CanonicalRow]:
        """Projection under the current mapping, rebuilt after every mapping change."""
        if self._rows is None:
            self._rows = project_rows(
                self.data.rows, self.data.columns, self.mapper.mapping, self.mapper.fields
            )
        return self._rows

    def invalidate(self) -> None:
        self._rows = None

    def validate(self, required_only: bool = False) -> list[ValidationIssue]:
        return validate_rows(self.rows, self.mapper.mapping, self.mapper.fields, required_only)

    def preview(self, limit: int = PREVIEW_ROW_LIMIT) -> list[dict]:
        return [row.to_dict() for row in self.rows[:limit]]


class ImportService:
    """
    Service for bulk invoice and sales receipt imports.

    Dependencies default to the Supabase store, the JSON mapping file and
    the settings-driven run parameters; tests pass their own.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        mapping_store: Optional[MappingStore] = None,
        ledger: Optional[ImportLedgerService] = None,
        error_policy: Optional[str] = None,
    ):
        self.store = store if store is not None else SupabaseRecordStore()
        self.mapping_store = mapping_store if mapping_store is not None else JsonMappingStore()
        self.ledger = ledger or ImportLedgerService(self.store)
        self.error_policy = error_policy or settings.import_error_policy
        self._sessions: dict[ImportType, ImportSession] = {}
        self._active: dict[ImportType, ImportTask] = {}
        self._last: dict[ImportType, ImportTask] = {}

    # ===================
    # FILE & MAPPING
    # ===================

    def load_file(self, import_type: ImportType, content: bytes, filename: str) -> ImportSession:
        """
        Parse an uploaded file and infer (or reuse) its column mapping.

        Raises:
            TabularParseError: If the file cannot be read
        """
        data = load_tabular(content, filename)
        return self.open_session(import_type, filename, data)

    def open_session(self, import_type: ImportType, file_name: str, data: TabularData) -> ImportSession:
        mapper = ColumnMapper(import_type, data.columns, self.mapping_store)
        session = ImportSession(import_type, file_name, data, mapper)
        self._sessions[import_type] = session
        logger.info(
            "import_session_opened",
            import_type=import_type.value,
            file_name=file_name,
            rows=data.row_count,
            mapping_from_saved=mapper.from_saved
        )
        return session

    def get_session(self, import_type: ImportType) -> ImportSession:
        """
        Raises:
            ImportRunNotFoundError: If no file was loaded for the surface
        """
        session = self._sessions.get(import_type)
        if session is None:
            raise ImportRunNotFoundError(import_type.value)
        return session

    def update_mapping(
        self,
        import_type: ImportType,
        changes: dict[CanonicalField, Optional[str]],
    ) -> ImportSession:
        session = self.get_session(import_type)
        session.mapper.update(changes)
        session.invalidate()
        return session

    def reset_mapping(self, import_type: ImportType) -> ImportSession:
        session = self.get_session(import_type)
        session.mapper.reset()
        session.invalidate()
        return session

    # ===================
    # DRY RUN
    # ===================

    async def check_preview(self, import_type: ImportType) -> PreviewCheck:
        """
        Per-row statuses for the loaded file without writing anything.

        Raises:
            ImportMappingError: If a required field is unmapped
            RemoteStoreError: If a lookup fails
        """
        session = self.get_session(import_type)
        session.mapper.check()
        engine = ReconciliationEngine(self.store, import_type)
        return await engine.preview_statuses(session.rows)

    # ===================
    # RUNS
    # ===================

    async def start_import(
        self,
        import_type: ImportType,
        exclude_invalid: bool = False,
        required_only: bool = False,
        chunk_size: Optional[int] = None,
    ) -> ImportTask:
        """
        Validate the loaded file and launch a run.

        Args:
            import_type: Surface to import into
            exclude_invalid: Import only rows without validation issues
                instead of refusing the whole file
            required_only: Only require presence of required fields
            chunk_size: Rows per chunk (defaults per surface from settings)

        Returns:
            The running ImportTask

        Raises:
            ImportAlreadyRunningError: If the surface already has a run
            ImportMappingError: If a required field is unmapped
            ImportValidationError: If rows fail validation and exclude_invalid is off
        """
        if import_type in self._active:
            raise ImportAlreadyRunningError(import_type.value)

        session = self.get_session(import_type)
        session.mapper.check()

        issues = session.validate(required_only)
        blocked = sorted({issue.row_index for issue in issues})
        if blocked and not exclude_invalid:
            raise ImportValidationError([issue.to_dict() for issue in issues])

        blocked_set = set(blocked)
        source_indices = [i for i in range(len(session.rows)) if i not in blocked_set]
        rows = [session.rows[i] for i in source_indices]

        task = ImportTask(
            import_type=import_type,
            file_name=session.file_name,
            rows=rows,
            engine=ReconciliationEngine(self.store, import_type),
            ledger=self.ledger,
            chunk_size=chunk_size or settings.batch_size_for(import_type.value),
            error_policy=self.error_policy,
            source_indices=source_indices,
            blocked_indices=blocked,
            source_rows=session.rows,
            on_finish=self._release,
        )
        self._active[import_type] = task
        self._last[import_type] = task
        task.start()

        logger.info(
            "import_launched",
            import_type=import_type.value,
            file_name=session.file_name,
            rows=len(rows),
            validation_blocked=len(blocked),
            chunk_size=task.chunk_size
        )
        return task

    def _release(self, task: ImportTask) -> None:
        if self._active.get(task.import_type) is task:
            del self._active[task.import_type]

    def get_task(self, import_type: ImportType) -> ImportTask:
        """
        The running task, else the most recent one for the surface.

        Raises:
            ImportRunNotFoundError: If the surface has never run
        """
        task = self._active.get(import_type) or self._last.get(import_type)
        if task is None:
            raise ImportRunNotFoundError(import_type.value)
        return task

    def is_running(self, import_type: ImportType) -> bool:
        return import_type in self._active

    # ===================
    # REPORTS
    # ===================

    def skipped_rows_csv(self, import_type: ImportType) -> str:
        """
        Every row of the last finished run that was not created, as CSV.

        Columns: row (1-based, as in the file), outcome, reason and the
        row's canonical values.

        Raises:
            ImportRunNotFoundError: If there is no finished run
        """
        task = self.get_task(import_type)
        if task.result is None:
            raise ImportRunNotFoundError(import_type.value)

        source_rows = task.source_rows
        reasons = {item.row_index: item.reason.value for item in task.result.skipped}

        records = []
        for index, outcome in task.result.outcomes.items():
            if outcome == RowOutcome.CREATED:
                continue
            record = {
                "row": index + 1,
                "outcome": outcome.value,
                "reason": reasons.get(index, ""),
            }
            if index < len(source_rows):
                record.update(source_rows[index].to_dict())
            records.append(record)

        columns = ["row", "outcome", "reason"] + [f.value for f in CanonicalField]
        frame = pd.DataFrame(records, columns=columns)
        buffer = StringIO()
        frame.to_csv(buffer, index=False)
        logger.info("skipped_rows_exported", import_type=import_type.value, rows=len(records))
        return buffer.getvalue()


# Singleton instance
_import_service: Optional[ImportService] = None


def get_import_service() -> ImportService:
    """Get or create ImportService instance."""
    global _import_service
    if _import_service is None:
        _import_service = ImportService()
    return _import_service
