"""
Import ledger: one import_history record per run.

A run is recorded as "started" when it begins (best effort) and finalized
exactly once when it ends. Ledger writes never break the run they describe;
a failed write is logged and the run carries on.
"""

from datetime import datetime, timezone
from typing import Optional
import structlog

from exceptions import RemoteStoreError
from models.imports import ImportType
from models.import_run import ImportRunRecord, ImportStatus, ImportSummary
from services.record_store import RecordStore

logger = structlog.get_logger(__name__)

# Keep error text on the ledger readable
MAX_ERROR_LENGTH = 2000


def _row_for(record: ImportRunRecord) -> dict:
    row = record.model_dump(mode="json", exclude={"id"})
    if record.summary is None:
        row["summary"] = None
    return row


class ImportLedgerService:
    def __init__(self, store: RecordStore):
        self.store = store
        self.table = "import_history"

    async def start(self, file_name: str, import_type: ImportType) -> ImportRunRecord:
        """
        Record that a run has started.

        Returns the record; its id is None when the insert failed, in which
        case finalize() writes the whole record instead of updating it.
        """
        record = ImportRunRecord(
            file_name=file_name or "unknown",
            import_type=import_type.value,
            started_at=datetime.now(timezone.utc),
        )
        try:
            inserted = await self.store.insert_one(self.table, _row_for(record))
        except RemoteStoreError as e:
            logger.warning(
                "import_start_not_recorded",
                import_type=import_type.value,
                file_name=file_name,
                error=e.reason
            )
            return record

        if inserted.get("id") is not None:
            record.id = str(inserted["id"])
        logger.info("import_started", record_id=record.id, import_type=import_type.value, file_name=file_name)
        return record

    async def finalize(
        self,
        record: ImportRunRecord,
        status: ImportStatus,
        summary: Optional[ImportSummary] = None,
        error_message: Optional[str] = None,
    ) -> ImportRunRecord:
        """Stamp the outcome of a run on its ledger record."""
        record.status = status
        record.finished_at = datetime.now(timezone.utc)
        record.summary = summary
        if error_message:
            record.error_message = error_message[:MAX_ERROR_LENGTH]

        try:
            if record.id is not None:
                await self.store.update_where(self.table, _row_for(record), "id", record.id)
            else:
                inserted = await self.store.insert_one(self.table, _row_for(record))
                if inserted.get("id") is not None:
                    record.id = str(inserted["id"])
        except RemoteStoreError as e:
            # Never let ledger bookkeeping mask the run's own result
            logger.warning(
                "import_result_not_recorded",
                record_id=record.id,
                status=status.value,
                error=e.reason
            )
            return record

        logger.info(
            "import_recorded",
            record_id=record.id,
            import_type=record.import_type,
            status=status.value,
            error=(record.error_message or "")[:200] or None
        )
        return record
