"""
Batch scheduler.

Pure sequencing for an import run: splits the row list into fixed-size
chunks, keeps the cursor, folds chunk results and tells its listeners about
progress. It never touches the remote store and never validates rows; the
caller does the work between next_chunk() and complete_chunk().

State machine:

    IDLE --start--> RUNNING --complete_chunk (last)--> COMPLETED
                    RUNNING --fail--> PAUSED_ON_ERROR --resume--> RUNNING
                    RUNNING / PAUSED_ON_ERROR --cancel--> CANCELLED
"""

from enum import Enum
from typing import Callable, Optional, Union
import structlog

from exceptions import InvalidSchedulerStateError
from models.imports import CanonicalRow
from models.import_run import (
    ChunkError,
    ChunkResult,
    PausedEvent,
    ProgressEvent,
    RowOutcome,
    SkippedItem,
    TerminalEvent,
)

logger = structlog.get_logger(__name__)

SchedulerEvent = Union[ProgressEvent, TerminalEvent, PausedEvent]
Listener = Callable[[SchedulerEvent], None]


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED_ON_ERROR = "paused_on_error"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BatchScheduler:
    """
    Chunk cursor for one run.

    Listeners are per scheduler; two runs never see each other's events.
    """

    def __init__(self):
        self.state = SchedulerState.IDLE
        self.rows: list[CanonicalRow] = []
        self.chunk_size = 1
        self.cursor = 0
        self.errors: list[ChunkError] = []
        self.skipped: list[SkippedItem] = []
        self.outcomes: dict[int, RowOutcome] = {}
        self.asset_balances: dict[tuple[str, str], int] = {}
        self.last_error: Optional[str] = None
        self._listeners: list[Listener] = []

    # ===================
    # LISTENERS
    # ===================

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: SchedulerEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # An observer must not stop the run
                logger.warning(
                    "scheduler_listener_failed",
                    event_type=event.type,
                    error=str(e),
                    error_type=type(e).__name__
                )

    # ===================
    # PROGRESS
    # ===================

    @property
    def total(self) -> int:
        return len(self.rows)

    @property
    def percent_complete(self) -> int:
        if not self.rows:
            return 100
        return min(100, round(self.cursor / self.total * 100))

    @property
    def is_finished(self) -> bool:
        return self.state in (SchedulerState.COMPLETED, SchedulerState.CANCELLED)

    def terminal_event(self) -> TerminalEvent:
        return TerminalEvent(
            processed_row_count=self.cursor,
            errors=[e.to_dict() for e in self.errors],
            skipped_items=[s.to_dict() for s in self.skipped],
        )

    def _require(self, operation: str, *allowed: SchedulerState) -> None:
        if self.state not in allowed:
            raise InvalidSchedulerStateError(operation, self.state.value)

    # ===================
    # TRANSITIONS
    # ===================

    def start(self, rows: list[CanonicalRow], chunk_size: int) -> None:
        """
        Begin a run over rows.

        An empty row list completes immediately with a terminal event.

        Raises:
            InvalidSchedulerStateError: If the scheduler was already started
            ValueError: If chunk_size is not positive
        """
        self._require("start", SchedulerState.IDLE)
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self.rows = list(rows)
        self.chunk_size = chunk_size
        self.cursor = 0
        self.state = SchedulerState.RUNNING
        logger.info("scheduler_started", total=self.total, chunk_size=chunk_size)

        if not self.rows:
            self._complete()

    def next_chunk(self) -> Optional[tuple[int, list[CanonicalRow]]]:
        """
        The next slice to process, as (start index, rows).

        Returns None when there is nothing left or the run is not RUNNING.
        """
        if self.state != SchedulerState.RUNNING or self.cursor >= self.total:
            return None
        end = min(self.cursor + self.chunk_size, self.total)
        return self.cursor, self.rows[self.cursor:end]

    def complete_chunk(self, result: ChunkResult) -> None:
        """
        Fold a chunk result in and advance the cursor past it.

        Emits a progress event, then the terminal event once every row
        has been processed.
        """
        self._require("complete_chunk", SchedulerState.RUNNING)

        self.errors.extend(result.errors)
        self.skipped.extend(result.skipped)
        self.outcomes.update(result.outcomes)
        for key, balance in result.asset_balances.items():
            self.asset_balances[key] = self.asset_balances.get(key, 0) + balance

        self.cursor = min(result.next_index, self.total)
        self._emit(ProgressEvent(percent_complete=self.percent_complete))

        if self.cursor >= self.total:
            self._complete()

    def fail(self, error: Exception) -> PausedEvent:
        """
        Pause on an unexpected chunk failure.

        The cursor stays at the start of the failed chunk so resume(cursor)
        retries it.
        """
        self._require("fail", SchedulerState.RUNNING)
        self.last_error = str(error) or type(error).__name__
        self.errors.append(ChunkError(type="batch", message=self.last_error))
        self.state = SchedulerState.PAUSED_ON_ERROR

        logger.warning("scheduler_paused", next_index=self.cursor, error=self.last_error)
        event = PausedEvent(next_index=self.cursor, error=self.last_error)
        self._emit(event)
        return event

    def resume(self, target_index: Optional[int] = None) -> None:
        """
        Continue from target_index (default: the current cursor).

        Rows jumped over without an outcome are marked failed.
        """
        self._require("resume", SchedulerState.PAUSED_ON_ERROR)
        index = self.cursor if target_index is None else target_index
        index = max(0, min(index, self.total))
        for skipped in range(self.cursor, index):
            self.outcomes.setdefault(skipped, RowOutcome.FAILED)
        self.cursor = index
        self.last_error = None
        self.state = SchedulerState.RUNNING
        logger.info("scheduler_resumed", cursor=self.cursor)

        if self.cursor >= self.total:
            self._complete()

    def cancel(self) -> None:
        """Stop scheduling; rows past the cursor are never processed."""
        self._require("cancel", SchedulerState.RUNNING, SchedulerState.PAUSED_ON_ERROR)
        self.state = SchedulerState.CANCELLED
        logger.info("scheduler_cancelled", cursor=self.cursor, total=self.total)

    def _complete(self) -> None:
        self.state = SchedulerState.COMPLETED
        logger.info(
            "scheduler_completed",
            processed=self.cursor,
            errors=len(self.errors),
            skipped=len(self.skipped)
        )
        self._emit(self.terminal_event())
