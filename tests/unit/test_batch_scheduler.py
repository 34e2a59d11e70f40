"""
Unit tests for the batch scheduler state machine.
"""

import pytest

from models.import_run import (
    ChunkError,
    ChunkResult,
    PausedEvent,
    ProgressEvent,
    RowOutcome,
    SkippedItem,
    SkipReason,
    TerminalEvent,
)
from services.batch_scheduler import BatchScheduler, SchedulerState
from exceptions import InvalidSchedulerStateError
from tests.factories import CanonicalRowFactory


# ===================
# HELPERS
# ===================

def ok_result(start: int, rows: list) -> ChunkResult:
    """Chunk result with every row created."""
    return ChunkResult(
        start_index=start,
        row_count=len(rows),
        line_items_created=len(rows),
        outcomes={start + i: RowOutcome.CREATED for i in range(len(rows))},
    )


def drain(scheduler: BatchScheduler) -> list[int]:
    """Run every remaining chunk; returns the start indices seen."""
    starts = []
    while (chunk := scheduler.next_chunk()) is not None:
        start, rows = chunk
        starts.append(start)
        scheduler.complete_chunk(ok_result(start, rows))
    return starts


@pytest.fixture
def events():
    return []


@pytest.fixture
def scheduler(events):
    scheduler = BatchScheduler()
    scheduler.subscribe(events.append)
    return scheduler


# ===================
# TESTS
# ===================

class TestChunking:
    """Tests for slicing and progress."""

    def test_slices_fixed_size_chunks(self, scheduler):
        """10 rows in chunks of 4 gives starts 0, 4, 8."""
        scheduler.start(CanonicalRowFactory.create_batch(10), chunk_size=4)

        assert drain(scheduler) == [0, 4, 8]
        assert scheduler.state == SchedulerState.COMPLETED

    def test_progress_events_then_terminal(self, scheduler, events):
        """One progress event per chunk, then exactly one terminal event."""
        scheduler.start(CanonicalRowFactory.create_batch(4), chunk_size=2)
        drain(scheduler)

        assert [type(e) for e in events] == [ProgressEvent, ProgressEvent, TerminalEvent]
        assert [e.percent_complete for e in events[:2]] == [50, 100]
        assert events[-1].processed_row_count == 4

    def test_terminal_event_carries_errors_and_skips(self, scheduler, events):
        """Errors and skips from every chunk are accumulated."""
        row = CanonicalRowFactory.create(product_code="NOPE")
        scheduler.start([row, row], chunk_size=1)

        scheduler.complete_chunk(ChunkResult(
            start_index=0, row_count=1,
            errors=[ChunkError(type="customer", message="denied")],
        ))
        scheduler.complete_chunk(ChunkResult(
            start_index=1, row_count=1,
            skipped=[SkippedItem.from_row(1, row, SkipReason.NOT_A_PRODUCT)],
        ))

        terminal = events[-1]
        assert terminal.errors == [{"type": "customer", "message": "denied"}]
        assert terminal.skipped_items[0]["reason"] == "Not a recognized product"

    def test_empty_run_completes_immediately(self, scheduler, events):
        scheduler.start([], chunk_size=10)

        assert scheduler.state == SchedulerState.COMPLETED
        assert scheduler.next_chunk() is None
        assert isinstance(events[0], TerminalEvent)
        assert scheduler.percent_complete == 100

    def test_rejects_non_positive_chunk_size(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.start(CanonicalRowFactory.create_batch(1), chunk_size=0)


class TestTransitions:
    """Tests for pause, resume and cancel."""

    def test_cannot_start_twice(self, scheduler):
        scheduler.start(CanonicalRowFactory.create_batch(1), chunk_size=1)

        with pytest.raises(InvalidSchedulerStateError):
            scheduler.start(CanonicalRowFactory.create_batch(1), chunk_size=1)

    def test_fail_pauses_at_failed_chunk(self, scheduler, events):
        """The cursor stays on the chunk that failed."""
        scheduler.start(CanonicalRowFactory.create_batch(6), chunk_size=2)
        start, rows = scheduler.next_chunk()
        scheduler.complete_chunk(ok_result(start, rows))

        scheduler.fail(RuntimeError("boom"))

        assert scheduler.state == SchedulerState.PAUSED_ON_ERROR
        assert scheduler.next_chunk() is None
        assert events[-1] == PausedEvent(next_index=2, error="boom")

    def test_resume_retries_failed_chunk(self, scheduler):
        """Resuming without an index reprocesses the failed chunk only."""
        scheduler.start(CanonicalRowFactory.create_batch(6), chunk_size=2)
        start, rows = scheduler.next_chunk()
        scheduler.complete_chunk(ok_result(start, rows))
        scheduler.fail(RuntimeError("boom"))

        scheduler.resume()

        assert drain(scheduler) == [2, 4]

    def test_resume_to_index_skips_rows(self, scheduler):
        """Resuming past the failed chunk never processes its rows; they are failed."""
        scheduler.start(CanonicalRowFactory.create_batch(6), chunk_size=2)
        scheduler.fail(RuntimeError("boom"))

        scheduler.resume(3)

        assert drain(scheduler) == [3, 5]
        assert scheduler.outcomes == {
            0: RowOutcome.FAILED,
            1: RowOutcome.FAILED,
            2: RowOutcome.FAILED,
            3: RowOutcome.CREATED,
            4: RowOutcome.CREATED,
            5: RowOutcome.CREATED,
        }

    def test_resume_backwards_keeps_outcomes(self, scheduler):
        """Going back to reprocess rows does not mark anything failed."""
        scheduler.start(CanonicalRowFactory.create_batch(4), chunk_size=2)
        start, rows = scheduler.next_chunk()
        scheduler.complete_chunk(ok_result(start, rows))
        scheduler.fail(RuntimeError("boom"))

        scheduler.resume(0)

        assert drain(scheduler) == [0, 2]
        assert set(scheduler.outcomes.values()) == {RowOutcome.CREATED}

    def test_resume_past_end_completes(self, scheduler, events):
        scheduler.start(CanonicalRowFactory.create_batch(2), chunk_size=2)
        scheduler.fail(RuntimeError("boom"))

        scheduler.resume(99)

        assert scheduler.state == SchedulerState.COMPLETED
        assert isinstance(events[-1], TerminalEvent)

    def test_resume_requires_pause(self, scheduler):
        scheduler.start(CanonicalRowFactory.create_batch(2), chunk_size=2)

        with pytest.raises(InvalidSchedulerStateError):
            scheduler.resume(0)

    def test_cancel_stops_scheduling(self, scheduler, events):
        """After cancel there is no next chunk and no terminal event."""
        scheduler.start(CanonicalRowFactory.create_batch(4), chunk_size=2)
        start, rows = scheduler.next_chunk()
        scheduler.complete_chunk(ok_result(start, rows))

        scheduler.cancel()

        assert scheduler.state == SchedulerState.CANCELLED
        assert scheduler.next_chunk() is None
        assert not any(isinstance(e, TerminalEvent) for e in events)

    def test_cancel_when_completed_is_rejected(self, scheduler):
        scheduler.start([], chunk_size=1)

        with pytest.raises(InvalidSchedulerStateError):
            scheduler.cancel()


class TestListeners:
    """Tests for listener isolation."""

    def test_listeners_are_per_scheduler(self):
        """Two schedulers never see each other's events."""
        seen_a, seen_b = [], []
        a, b = BatchScheduler(), BatchScheduler()
        a.subscribe(seen_a.append)
        b.subscribe(seen_b.append)

        a.start([], chunk_size=1)

        assert len(seen_a) == 1
        assert seen_b == []

    def test_failing_listener_does_not_stop_run(self, scheduler, events):
        def broken(event):
            raise RuntimeError("ui gone")

        scheduler.subscribe(broken)
        scheduler.start(CanonicalRowFactory.create_batch(2), chunk_size=1)

        drain(scheduler)

        assert scheduler.state == SchedulerState.COMPLETED
        assert isinstance(events[-1], TerminalEvent)

    def test_unsubscribe(self, scheduler, events):
        scheduler.unsubscribe(events.append)

        scheduler.start([], chunk_size=1)

        assert events == []
