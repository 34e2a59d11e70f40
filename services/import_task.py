"""
Per-run import task.

Drives a BatchScheduler against a ReconciliationEngine, one awaited chunk
at a time, and owns the run's ledger record. Hosts observe a run through
its events queue or by awaiting wait().
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional
import structlog

from exceptions import InvalidSchedulerStateError
from models.imports import CanonicalRow, ImportType
from models.import_run import (
    ChunkError,
    ImportRunRecord,
    ImportStatus,
    ImportSummary,
    RowOutcome,
    SkippedItem,
)
from services.batch_scheduler import BatchScheduler, SchedulerEvent, SchedulerState
from services.import_ledger_service import ImportLedgerService
from services.reconciliation_service import ReconciliationEngine

logger = structlog.get_logger(__name__)

ERROR_POLICY_ABORT = "abort"
ERROR_POLICY_PAUSE = "pause"


@dataclass
class ImportRunResult:
    """Everything a finished run leaves behind, indexed by source row."""
    import_type: ImportType
    file_name: str
    status: ImportStatus
    summary: ImportSummary
    total_rows: int
    processed_row_count: int = 0
    errors: list[ChunkError] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)
    outcomes: dict[int, RowOutcome] = field(default_factory=dict)
    asset_balances: dict[tuple[str, str], int] = field(default_factory=dict)
    error_message: Optional[str] = None

    def outcome_counts(self) -> dict[str, int]:
        counts = {outcome.value: 0 for outcome in RowOutcome}
        for outcome in self.outcomes.values():
            counts[outcome.value] += 1
        return counts


class ImportTask:
    """
    Handle for one import run.

    rows are the rows actually sent to the engine; source_indices maps each
    of them back to its position in the loaded file, so rows excluded by
    validation keep their original numbering in outcomes and skip reports.
    """

    def __init__(
        self,
        import_type: ImportType,
        file_name: str,
        rows: list[CanonicalRow],
        engine: ReconciliationEngine,
        ledger: ImportLedgerService,
        chunk_size: int,
        error_policy: str = ERROR_POLICY_ABORT,
        source_indices: Optional[list[int]] = None,
        blocked_indices: Optional[list[int]] = None,
        source_rows: Optional[list[CanonicalRow]] = None,
        on_finish: Optional[Callable[["ImportTask"], None]] = None,
    ):
        self.import_type = import_type
        self.file_name = file_name
        self.rows = list(rows)
        self.engine = engine
        self.ledger = ledger
        self.chunk_size = chunk_size
        self.error_policy = error_policy
        self.source_indices = source_indices or list(range(len(self.rows)))
        self.blocked_indices = list(blocked_indices or [])
        self.source_rows = list(source_rows) if source_rows is not None else self.rows
        self.on_finish = on_finish

        self.scheduler = BatchScheduler()
        self.summary = ImportSummary(validation_blocked=len(self.blocked_indices))
        self.events: asyncio.Queue = asyncio.Queue()
        self.record: Optional[ImportRunRecord] = None
        self.result: Optional[ImportRunResult] = None

        self._cancel_requested = False
        self._runner: Optional[asyncio.Task] = None
        self._done = asyncio.Event()
        self.scheduler.subscribe(self._publish)

    # ===================
    # OBSERVATION
    # ===================

    @property
    def state(self) -> SchedulerState:
        return self.scheduler.state

    @property
    def progress(self) -> int:
        return self.scheduler.percent_complete

    @property
    def is_finished(self) -> bool:
        return self._done.is_set()

    def _publish(self, event: SchedulerEvent) -> None:
        self.events.put_nowait(event)

    def status(self) -> dict:
        data = {
            "import_type": self.import_type.value,
            "file_name": self.file_name,
            "state": self.state.value,
            "percent_complete": self.progress,
            "processed_row_count": self.scheduler.cursor,
            "total_rows": self.scheduler.total,
            "summary": self.summary.model_dump(),
            "last_error": self.scheduler.last_error,
        }
        if self.result is not None:
            data["status"] = self.result.status.value
            data["error_message"] = self.result.error_message
        return data

    # ===================
    # CONTROL
    # ===================

    def start(self) -> None:
        """Schedule the run on the current event loop."""
        if self._runner is not None:
            raise InvalidSchedulerStateError("start", self.state.value)
        self._runner = asyncio.create_task(self._begin())

    def cancel(self) -> None:
        """
        Ask the run to stop.

        A chunk already in flight finishes first; a paused run is finalized
        right away.
        """
        self._cancel_requested = True
        if self.state == SchedulerState.PAUSED_ON_ERROR:
            self.scheduler.cancel()
            self._runner = asyncio.create_task(self._finish())
        logger.info("import_cancel_requested", import_type=self.import_type.value)

    def resume(self, target_index: Optional[int] = None) -> None:
        """Continue a paused run from target_index (default: the failed chunk)."""
        self.scheduler.resume(target_index)
        self._runner = asyncio.create_task(self._drive())

    def abort(self, message: Optional[str] = None) -> None:
        """Give up on a paused run; the ledger records an error."""
        if self.state != SchedulerState.PAUSED_ON_ERROR:
            raise InvalidSchedulerStateError("abort", self.state.value)
        reason = message or self.scheduler.last_error or "Import aborted"
        self.scheduler.cancel()
        self._runner = asyncio.create_task(self._finish(error_message=reason))

    async def wait(self) -> ImportRunResult:
        """Block until the run is finalized."""
        await self._done.wait()
        return self.result

    # ===================
    # DRIVER
    # ===================

    async def _begin(self) -> None:
        self.record = await self.ledger.start(self.file_name, self.import_type)
        try:
            self.scheduler.start(self.rows, self.chunk_size)
        except Exception as e:
            await self._finish(error_message=str(e))
            return
        await self._drive()

    async def _drive(self) -> None:
        """Process chunks strictly in order until done, paused or cancelled."""
        while True:
            if self._cancel_requested and self.scheduler.state == SchedulerState.RUNNING:
                self.scheduler.cancel()

            chunk = self.scheduler.next_chunk()
            if chunk is None:
                break

            start, rows = chunk
            try:
                result = await self.engine.reconcile_chunk(rows, start)
            except Exception as e:
                logger.error(
                    "import_chunk_crashed",
                    import_type=self.import_type.value,
                    start=start,
                    error=str(e),
                    error_type=type(e).__name__
                )
                self.scheduler.fail(e)
                if self.error_policy == ERROR_POLICY_PAUSE:
                    # Host decides: resume() or abort()
                    return
                self.scheduler.cancel()
                await self._finish(error_message=self.scheduler.last_error)
                return

            self.summary.add_chunk(result)
            self.scheduler.complete_chunk(result)

        await self._finish()

    async def _finish(self, error_message: Optional[str] = None) -> None:
        """Finalize exactly once: ledger record, result, release the surface."""
        if self._done.is_set():
            return

        scheduler = self.scheduler
        if error_message:
            status = ImportStatus.ERROR
        elif scheduler.state == SchedulerState.COMPLETED and self.rows:
            status = ImportStatus.SUCCESS
        else:
            # Cancelled, or nothing to import
            status = ImportStatus.SKIPPED
            if scheduler.state == SchedulerState.CANCELLED:
                error_message = f"Cancelled after {scheduler.cursor} of {scheduler.total} rows"

        self.result = self._build_result(status, error_message)
        if self.record is not None:
            await self.ledger.finalize(self.record, status, self.summary, error_message)

        logger.info(
            "import_run_finalized",
            import_type=self.import_type.value,
            file_name=self.file_name,
            status=status.value,
            processed=scheduler.cursor,
            total=scheduler.total,
            **self.summary.model_dump()
        )

        self._done.set()
        if self.on_finish is not None:
            self.on_finish(self)

    def _build_result(self, status: ImportStatus, error_message: Optional[str]) -> ImportRunResult:
        scheduler = self.scheduler

        def source(index: int) -> int:
            return self.source_indices[index] if index < len(self.source_indices) else index

        outcomes = {source(i): outcome for i, outcome in scheduler.outcomes.items()}
        for index in self.blocked_indices:
            outcomes[index] = RowOutcome.VALIDATION_BLOCKED

        skipped = [
            SkippedItem(
                row_index=source(item.row_index),
                invoice_description=item.invoice_description,
                invoice_product_code=item.invoice_product_code,
                reason=item.reason,
            )
            for item in scheduler.skipped
        ]

        return ImportRunResult(
            import_type=self.import_type,
            file_name=self.file_name,
            status=status,
            summary=self.summary,
            total_rows=len(self.rows) + len(self.blocked_indices),
            processed_row_count=scheduler.cursor,
            errors=list(scheduler.errors),
            skipped=skipped,
            outcomes=dict(sorted(outcomes.items())),
            asset_balances=dict(scheduler.asset_balances),
            error_message=error_message,
        )
