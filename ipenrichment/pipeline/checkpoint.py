"""Batch buffering and durable checkpointing of enrichment results."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..enrichment.models import EnrichmentOutcome, EnrichmentTally, Row
from ..errors import CheckpointCircuitBreakerError, CheckpointFlushError, IpEnrichmentError
from ..store.base import JobStore, ResultRecord
from ..telemetry import start_span

logger = logging.getLogger(__name__)

# Failures a store may raise for a write that did not happen
STORE_WRITE_ERRORS = (SQLAlchemyError, OSError, IpEnrichmentError, ValueError)


@dataclass(slots=True)
class BatchCheckpoint:
    """Snapshot emitted after each committed batch."""

    job_id: int
    batch_index: int
    rows_flushed: int
    first_row_index: int
    last_row_index: int
    checkpoint: int
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(slots=True)
class FlushEvent:
    """Outcome of a single flush attempt, successful or not."""

    job_id: int
    rows: int
    success: bool
    checkpoint: int
    error: Optional[str] = None


class BatchCheckpointer:
    """Accumulate enriched rows and persist them in fixed-size batches.

    After every successful flush, every row with ``row_index < checkpoint``
    has a stored :class:`ResultRecord`. A failed write keeps the buffer; the
    next attempt happens once another ``batch_size`` rows have accumulated
    (or at end-of-stream). Job counters are pushed to the store on every
    attempt so progress stays truthful even while persistence is failing.

    Args:
        store: Job store receiving result batches and counter updates
        job_id: Job being checkpointed
        batch_size: Rows per batch
        max_failure_streak: Consecutive failed flushes tolerated while streaming
        checkpoint_cb: Called with a :class:`BatchCheckpoint` after each committed batch
        flush_cb: Called with a :class:`FlushEvent` after every attempt
    """

    def __init__(
        self,
        store: JobStore,
        job_id: int,
        *,
        batch_size: int = 100,
        max_failure_streak: int = 10,
        checkpoint_cb: Optional[Callable[[BatchCheckpoint], None]] = None,
        flush_cb: Optional[Callable[[FlushEvent], None]] = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.store = store
        self.job_id = job_id
        self.batch_size = batch_size
        self.max_failure_streak = max(1, max_failure_streak)
        self.checkpoint_cb = checkpoint_cb
        self.flush_cb = flush_cb

        self.tally = EnrichmentTally()
        self.batches_committed = 0
        self.flush_failures = 0
        self._buffer: List[ResultRecord] = []
        self._checkpoint = 0
        self._failure_streak = 0
        self._next_flush_at = batch_size

    @property
    def checkpoint(self) -> int:
        """Index just past the last durably persisted row."""
        return self._checkpoint

    @property
    def pending(self) -> int:
        """Rows buffered but not yet persisted."""
        return len(self._buffer)

    def append(self, row: Row, outcome: EnrichmentOutcome) -> None:
        self.tally.record(outcome)
        self._buffer.append(
            ResultRecord(job_id=self.job_id, row_index=row.index, original_data=dict(row.data), outcome=outcome)
        )

    def flush_if_full(self) -> bool:
        """Flush once the buffer reaches the next batch boundary.

        Returns:
            True if a batch was committed

        Raises:
            CheckpointCircuitBreakerError: ``max_failure_streak`` consecutive
                flushes have failed
        """
        if len(self._buffer) < self._next_flush_at:
            return False
        if self._flush():
            return True

        if self._failure_streak >= self.max_failure_streak:
            raise CheckpointCircuitBreakerError(
                f"Checkpoint circuit breaker tripped after {self._failure_streak} consecutive flush failures",
                unflushed=len(self._buffer),
            )
        # Retry once another batch worth of rows has accumulated
        self._next_flush_at = len(self._buffer) + self.batch_size
        return False

    def flush_remaining(self, retries: int = 3, backoff: float = 1.5, initial_delay: float = 1.0) -> None:
        """Flush everything still buffered, retrying with multiplicative backoff.

        Called at end-of-stream (and on cancellation). With an empty buffer
        this only pushes the final counters.

        Raises:
            CheckpointFlushError: Rows remain unpersisted after all retries
        """
        delay = initial_delay
        attempt = 0
        while not self._flush():
            attempt += 1
            if attempt > retries:
                raise CheckpointFlushError(
                    f"{len(self._buffer)} rows could not be persisted after {attempt} attempts "
                    f"(checkpoint {self._checkpoint})",
                    unflushed=len(self._buffer),
                )
            logger.warning(
                f"Final flush for job {self.job_id} failed (attempt {attempt}/{retries + 1}); retrying in {delay:.2f}s"
            )
            time.sleep(max(0.0, delay))
            delay *= backoff

    def _counter_fields(self) -> dict[str, int]:
        return {
            "processed_rows": self.tally.processed,
            "successful_rows": self.tally.successful,
            "failed_rows": self.tally.failed,
            "filtered_rows": self.tally.filtered,
        }

    def _push_counters(self, **extra: object) -> None:
        try:
            self.store.update_job(self.job_id, **self._counter_fields(), **extra)
        except STORE_WRITE_ERRORS as e:
            logger.error(f"Failed to update counters for job {self.job_id}: {e}")

    def _flush(self) -> bool:
        batch = list(self._buffer)
        if not batch:
            self._push_counters()
            return True

        with start_span(
            "ipenrich.pipeline.flush",
            {"job.id": self.job_id, "batch.index": self.batches_committed + 1, "records": len(batch)},
        ) as span:
            try:
                self.store.append_result_batch(self.job_id, batch)
            except STORE_WRITE_ERRORS as e:
                self.flush_failures += 1
                self._failure_streak += 1
                span.set_attribute("flush.success", False)
                logger.error(
                    f"Failed to persist {len(batch)} results for job {self.job_id} "
                    f"(streak {self._failure_streak}): {e}"
                )
                self._push_counters()
                self._emit_flush(len(batch), success=False, error=str(e))
                return False
            span.set_attribute("flush.success", True)

        self._buffer.clear()
        self._failure_streak = 0
        self._next_flush_at = self.batch_size
        self._checkpoint = batch[-1].row_index + 1
        self.batches_committed += 1
        self._push_counters(checkpoint=self._checkpoint, partial_results_available=True)
        logger.debug(f"Job {self.job_id}: committed {len(batch)} rows, checkpoint {self._checkpoint}")

        self._emit_flush(len(batch), success=True)
        if self.checkpoint_cb:
            self.checkpoint_cb(
                BatchCheckpoint(
                    job_id=self.job_id,
                    batch_index=self.batches_committed,
                    rows_flushed=len(batch),
                    first_row_index=batch[0].row_index,
                    last_row_index=batch[-1].row_index,
                    checkpoint=self._checkpoint,
                )
            )
        return True

    def _emit_flush(self, rows: int, *, success: bool, error: Optional[str] = None) -> None:
        if self.flush_cb:
            self.flush_cb(
                FlushEvent(job_id=self.job_id, rows=rows, success=success, checkpoint=self._checkpoint, error=error)
            )


__all__ = ["BatchCheckpoint", "BatchCheckpointer", "FlushEvent", "STORE_WRITE_ERRORS"]
