"""Batch enrichment pipeline: stream, enrich, checkpoint, write artifacts."""

from __future__ import annotations

import csv
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..enrichment.models import EnrichmentOptions, EnrichmentOutcome, Row
from ..enrichment.row_enricher import RowEnricher
from ..errors import CheckpointCircuitBreakerError, CheckpointFlushError, InvalidJobStateError, JobNotFoundError
from ..settings import EnrichmentSettings
from ..store.base import Job, JobStatus, JobStore
from ..telemetry import start_span
from .checkpoint import STORE_WRITE_ERRORS, BatchCheckpoint, BatchCheckpointer, FlushEvent
from .csv_source import CsvRowSource, CsvSourceInput
from .output import ArtifactWriter, artifact_stem

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "Cancelled"

# Errors that mean the source stream itself is unusable
STREAM_ERRORS = (OSError, csv.Error, UnicodeDecodeError)

TelemetryCallback = Callable[["PipelineMetrics"], None]
ProgressCallback = Callable[[Row, EnrichmentOutcome], None]


@dataclass(slots=True)
class PipelineConfig:
    """Configuration knobs for the enrichment pipeline."""

    batch_size: int = 100
    output_dir: Path = Path.home() / ".cache" / "ipenrichment" / "output"
    max_flush_retries: int = 3
    flush_retry_delay: float = 1.0
    flush_retry_backoff: float = 1.5
    max_failure_streak: int = 10
    write_artifacts: bool = True

    @classmethod
    def from_settings(cls, settings: EnrichmentSettings) -> "PipelineConfig":
        return cls(
            batch_size=settings.batch_size,
            output_dir=settings.output_dir,
            max_flush_retries=settings.max_flush_retries,
            flush_retry_backoff=settings.flush_retry_backoff,
            max_failure_streak=settings.max_failure_streak,
        )


@dataclass(slots=True)
class PipelineMetrics:
    """Telemetry emitted while a job runs."""

    job_id: int
    source: str = ""
    status: str = JobStatus.PENDING.value
    rows_processed: int = 0
    rows_successful: int = 0
    rows_failed: int = 0
    rows_filtered: int = 0
    checkpoint: int = 0
    batches_committed: int = 0
    flush_failures: int = 0
    circuit_break_active: bool = False
    duration_seconds: float = 0.0
    error_counts: Dict[str, int] = field(default_factory=dict)


class EnrichmentPipeline:
    """Run one enrichment job from its CSV source to a terminal state.

    Rows are processed strictly in stream order, one at a time. Row-level
    failures are recorded in the row's outcome and never change the job's
    status; only an unusable source stream or unrecoverable persistence
    failure fails the job.
    """

    def __init__(
        self,
        store: JobStore,
        enricher: RowEnricher,
        config: Optional[PipelineConfig] = None,
        *,
        telemetry_cb: Optional[TelemetryCallback] = None,
        checkpoint_cb: Optional[Callable[[BatchCheckpoint], None]] = None,
    ) -> None:
        self.store = store
        self.enricher = enricher
        self.config = config or PipelineConfig()
        self.telemetry_cb = telemetry_cb
        self.checkpoint_cb = checkpoint_cb

    def run(
        self,
        job_id: int,
        source: CsvSourceInput,
        cancel_event: Optional[threading.Event] = None,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> Job:
        """Process ``source`` for ``job_id`` and return the final job snapshot.

        Raises:
            JobNotFoundError: Unknown job
            InvalidJobStateError: The job is not pending
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.PENDING:
            raise InvalidJobStateError(f"Job {job_id} is {job.status.value}; only pending jobs can be started")

        options = EnrichmentOptions.from_job(job)
        csv_source = CsvRowSource(source)
        metrics = PipelineMetrics(job_id=job_id, source=csv_source.name)
        start_time = time.perf_counter()

        with start_span("ipenrich.pipeline.run", {"job.id": job_id, "source": csv_source.name}) as span:
            job = self._require(self.store.update_job(job_id, status=JobStatus.PROCESSING), job_id)
            metrics.status = JobStatus.PROCESSING.value
            try:
                csv_source.open()
            except STREAM_ERRORS as e:
                logger.error(f"Job {job_id}: cannot read source {csv_source.name}: {e}")
                span.set_attribute("job.status", JobStatus.FAILED.value)
                return self._finish(job, metrics, start_time, status=JobStatus.FAILED, error=str(e))

            try:
                job = self._require(self.store.update_job(job_id, csv_headers=csv_source.headers), job_id)
                logger.info(f"Job {job_id}: processing {job.display_name} (ip column {job.ip_column_name!r})")
                if job.ip_column_name not in csv_source.headers:
                    logger.warning(
                        f"Job {job_id}: column {job.ip_column_name!r} not in headers {list(csv_source.headers)}; "
                        "every row will be rejected"
                    )
                final = self._process(job, options, csv_source, metrics, start_time, cancel_event, progress_cb)
            finally:
                csv_source.close()
            span.set_attribute("job.status", final.status.value)
            span.set_attribute("rows.processed", final.processed_rows)
            return final

    def _process(
        self,
        job: Job,
        options: EnrichmentOptions,
        csv_source: CsvRowSource,
        metrics: PipelineMetrics,
        start_time: float,
        cancel_event: Optional[threading.Event],
        progress_cb: Optional[ProgressCallback],
    ) -> Job:
        checkpointer = BatchCheckpointer(
            self.store,
            job.id,
            batch_size=self.config.batch_size,
            max_failure_streak=self.config.max_failure_streak,
            checkpoint_cb=self.checkpoint_cb,
            flush_cb=lambda event: self._on_flush(event, checkpointer, metrics, start_time),
        )
        writer: Optional[ArtifactWriter] = None
        if self.config.write_artifacts:
            writer = ArtifactWriter(
                self.config.output_dir,
                artifact_stem(job.display_name, job.id),
                csv_source.headers,
                options,
            )

        cancelled = False
        try:
            if writer is not None:
                writer.open()
            for row in csv_source.rows():
                # Checked only once another row exists so a drained stream still completes
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                outcome = self.enricher.enrich(row, job.ip_column_name, options)
                checkpointer.append(row, outcome)
                if writer is not None:
                    writer.write(row.data, outcome)
                if progress_cb:
                    progress_cb(row, outcome)
                checkpointer.flush_if_full()

            if cancelled:
                logger.info(f"Job {job.id}: cancellation requested after {checkpointer.tally.processed} rows")
                self._discard(writer)
                self._flush_best_effort(checkpointer)
                return self._finish(job, metrics, start_time, status=JobStatus.FAILED, error=CANCELLED_ERROR)

            total_rows = checkpointer.tally.processed
            checkpointer.flush_remaining(
                retries=self.config.max_flush_retries,
                backoff=self.config.flush_retry_backoff,
                initial_delay=self.config.flush_retry_delay,
            )
            fields: Dict[str, Any] = {"total_rows": total_rows}
            if writer is not None:
                enriched_path, filtered_path = writer.commit()
                fields.update(output_path=str(enriched_path), filtered_output_path=str(filtered_path))
            return self._finish(
                job,
                metrics,
                start_time,
                status=JobStatus.COMPLETED,
                completed_at=datetime.now(UTC),
                partial_results_available=True,
                **fields,
            )

        except CheckpointCircuitBreakerError as e:
            logger.error(f"Job {job.id}: {e}")
            self._discard(writer)
            metrics.circuit_break_active = True
            return self._finish(job, metrics, start_time, status=JobStatus.FAILED, error=str(e))

        except CheckpointFlushError as e:
            # The stream was fully read; only the final flush gave up
            logger.error(f"Job {job.id}: {e}")
            self._discard(writer)
            return self._finish(
                job,
                metrics,
                start_time,
                status=JobStatus.FAILED,
                error=str(e),
                total_rows=checkpointer.tally.processed,
            )

        except STREAM_ERRORS as e:
            logger.error(f"Job {job.id}: source stream failed after {checkpointer.tally.processed} rows: {e}")
            self._discard(writer)
            self._flush_best_effort(checkpointer)
            return self._finish(job, metrics, start_time, status=JobStatus.FAILED, error=str(e))

        except Exception as e:
            self._discard(writer)
            logger.exception(f"Job {job.id}: unexpected failure")
            self._finish(job, metrics, start_time, status=JobStatus.FAILED, error=f"{type(e).__name__}: {e}")
            raise

    def _flush_best_effort(self, checkpointer: BatchCheckpointer) -> None:
        try:
            checkpointer.flush_remaining(
                retries=self.config.max_flush_retries,
                backoff=self.config.flush_retry_backoff,
                initial_delay=self.config.flush_retry_delay,
            )
        except CheckpointFlushError as e:
            logger.error(f"Job {checkpointer.job_id}: {e}")

    @staticmethod
    def _discard(writer: Optional[ArtifactWriter]) -> None:
        if writer is not None:
            writer.abort()

    def _on_flush(
        self,
        event: FlushEvent,
        checkpointer: BatchCheckpointer,
        metrics: PipelineMetrics,
        start_time: float,
    ) -> None:
        tally = checkpointer.tally
        metrics.rows_processed = tally.processed
        metrics.rows_successful = tally.successful
        metrics.rows_failed = tally.failed
        metrics.rows_filtered = tally.filtered
        metrics.error_counts = dict(tally.error_counts)
        metrics.checkpoint = checkpointer.checkpoint
        metrics.batches_committed = checkpointer.batches_committed
        metrics.flush_failures = checkpointer.flush_failures
        metrics.duration_seconds = time.perf_counter() - start_time
        if self.telemetry_cb:
            self.telemetry_cb(metrics)

    def _finish(
        self,
        job: Job,
        metrics: PipelineMetrics,
        start_time: float,
        *,
        status: JobStatus,
        error: Optional[str] = None,
        **fields: Any,
    ) -> Job:
        metrics.status = status.value
        metrics.duration_seconds = time.perf_counter() - start_time
        try:
            updated = self.store.update_job(job.id, status=status, error=error, **fields)
        except STORE_WRITE_ERRORS as e:
            logger.error(f"Job {job.id}: could not record final status {status.value}: {e}")
            updated = None
        if self.telemetry_cb:
            self.telemetry_cb(metrics)

        final = updated or self.store.get_job(job.id) or job
        if status == JobStatus.COMPLETED:
            logger.info(
                f"Job {job.id} completed: {final.processed_rows} rows, {final.successful_rows} enriched, "
                f"{final.failed_rows} failed, {final.filtered_rows} consumer ISP in {metrics.duration_seconds:.1f}s"
            )
        else:
            logger.warning(f"Job {job.id} failed at checkpoint {final.checkpoint}: {error}")
        return final

    @staticmethod
    def _require(job: Optional[Job], job_id: int) -> Job:
        if job is None:
            raise JobNotFoundError(job_id)
        return job


__all__ = ["CANCELLED_ERROR", "EnrichmentPipeline", "PipelineConfig", "PipelineMetrics"]
