"""Caller-facing job runner: create, start, poll, cancel and export jobs."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..enrichment.classification import ConsumerIspClassifier
from ..enrichment.gateway import LookupGateway, create_lookup_gateway
from ..enrichment.models import INVALID_ADDRESS_ERROR, EnrichmentOptions, EnrichmentOutcome
from ..enrichment.row_enricher import RowEnricher
from ..enrichment.validation import is_valid_address
from ..errors import ArtifactNotReadyError, InvalidJobStateError, JobNotFoundError
from ..settings import EnrichmentSettings
from ..store.base import Job, JobSpec, JobStatus, JobStore, ResultRecord
from .checkpoint import BatchCheckpoint
from .csv_source import CsvSourceInput
from .output import render_records_csv
from .pipeline import EnrichmentPipeline, PipelineConfig, ProgressCallback, TelemetryCallback

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RecentResults:
    """Page of results for incremental tailing; poll again from ``next_index``."""

    results: List[ResultRecord]
    next_index: int


class JobRunner:
    """Run enrichment jobs on a worker pool and answer status queries.

    Each job runs on its own worker thread; rows within a job stay
    sequential. Jobs share only the store and the process-wide rate
    limiters.

    Example:
        >>> runner = JobRunner(store, pipeline)
        >>> job = runner.create_job(JobSpec(file_name="hosts.csv", ip_column_name="ip"))
        >>> future = runner.start(job.id, Path("hosts.csv"))
        >>> runner.get_status(job.id).processed_rows
    """

    def __init__(self, store: JobStore, pipeline: EnrichmentPipeline, *, max_workers: int = 4) -> None:
        self.store = store
        self.pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="ipenrich-job")
        self._lock = threading.Lock()
        self._cancel_events: Dict[int, threading.Event] = {}

    @property
    def enricher(self) -> RowEnricher:
        return self.pipeline.enricher

    def create_job(self, spec: JobSpec) -> Job:
        job = self.store.create_job(spec)
        logger.info(f"Created job {job.id} for {job.display_name}")
        return job

    def get_status(self, job_id: int) -> Job:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _claim(self, job_id: int) -> threading.Event:
        job = self.get_status(job_id)
        if job.status != JobStatus.PENDING:
            raise InvalidJobStateError(f"Job {job_id} is {job.status.value}; only pending jobs can be started")
        with self._lock:
            if job_id in self._cancel_events:
                raise InvalidJobStateError(f"Job {job_id} is already running")
            event = threading.Event()
            self._cancel_events[job_id] = event
            return event

    def _release(self, job_id: int) -> None:
        with self._lock:
            self._cancel_events.pop(job_id, None)

    def start(
        self,
        job_id: int,
        source: CsvSourceInput,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> Future[Job]:
        """Start processing in the background and return immediately.

        Raises:
            JobNotFoundError: Unknown job
            InvalidJobStateError: The job is not pending or already running
        """
        cancel_event = self._claim(job_id)

        def work() -> Job:
            try:
                return self.pipeline.run(job_id, source, cancel_event=cancel_event, progress_cb=progress_cb)
            finally:
                self._release(job_id)

        try:
            future = self._executor.submit(work)
        except RuntimeError:
            self._release(job_id)
            raise
        logger.debug(f"Job {job_id} submitted to worker pool")
        return future

    def run(self, job_id: int, source: CsvSourceInput, progress_cb: Optional[ProgressCallback] = None) -> Job:
        """Process a job on the calling thread and return its final snapshot."""
        cancel_event = self._claim(job_id)
        try:
            return self.pipeline.run(job_id, source, cancel_event=cancel_event, progress_cb=progress_cb)
        finally:
            self._release(job_id)

    def cancel(self, job_id: int) -> bool:
        """Request cancellation; honored between rows. Returns False if the job is not running."""
        with self._lock:
            event = self._cancel_events.get(job_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    def is_running(self, job_id: int) -> bool:
        with self._lock:
            return job_id in self._cancel_events

    def recent_results(self, job_id: int, since: int = 0, limit: int = 50) -> RecentResults:
        """Results with ``row_index >= since``, oldest first.

        Row indices are contiguous from zero, so ``since`` doubles as the
        offset into the ordered result list.
        """
        self.get_status(job_id)
        since = max(0, since)
        results = self.store.list_results(job_id, offset=since, limit=max(0, limit))
        return RecentResults(results=results, next_index=since + len(results))

    def artifact_path(self, job_id: int, filtered: bool = False) -> Path:
        """Path of the enriched (or filtered) CSV for a completed job.

        Raises:
            ArtifactNotReadyError: The job has not completed or the file is gone
        """
        job = self.get_status(job_id)
        if job.status != JobStatus.COMPLETED:
            raise ArtifactNotReadyError(f"Job {job_id} is {job.status.value}; artifacts exist only after completion")
        raw_path = job.filtered_output_path if filtered else job.output_path
        if not raw_path or not Path(raw_path).exists():
            raise ArtifactNotReadyError(f"Artifact for job {job_id} is not available")
        return Path(raw_path)

    def partial_results_csv(self, job_id: int) -> str:
        """CSV of everything persisted so far, in artifact layout."""
        job = self.get_status(job_id)
        records = self.store.list_results(job_id)
        return render_records_csv(records, job.csv_headers, EnrichmentOptions.from_job(job))

    def list_jobs(self) -> List[Job]:
        return self.store.list_jobs()

    def delete_job(self, job_id: int) -> bool:
        """Delete a job, its results and its artifacts.

        Raises:
            InvalidJobStateError: The job is currently running
        """
        if self.is_running(job_id):
            raise InvalidJobStateError(f"Job {job_id} is running; cancel it before deleting")
        job = self.store.get_job(job_id)
        if job is None:
            return False
        for raw_path in (job.output_path, job.filtered_output_path):
            if raw_path:
                Path(raw_path).unlink(missing_ok=True)
        return self.store.delete_job(job_id)

    def enrich_address(self, ip: str, options: Optional[EnrichmentOptions] = None) -> EnrichmentOutcome:
        """Enrich a single address synchronously."""
        options = options or EnrichmentOptions()
        candidate = ip.strip() if isinstance(ip, str) else ""
        if not is_valid_address(candidate, allow_ipv6=self.enricher.allow_ipv6):
            return EnrichmentOutcome.failure(candidate, INVALID_ADDRESS_ERROR)
        return self.enricher.enrich_address(candidate, options)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; without ``wait`` running jobs are asked to cancel."""
        if not wait:
            with self._lock:
                events = list(self._cancel_events.values())
            for event in events:
                event.set()
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        if wait:
            self.enricher.gateway.close()

    def __enter__(self) -> "JobRunner":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)


def build_job_runner(
    settings: EnrichmentSettings,
    store: JobStore,
    *,
    gateway: Optional[LookupGateway] = None,
    telemetry_cb: Optional[TelemetryCallback] = None,
    checkpoint_cb: Optional[Callable[[BatchCheckpoint], None]] = None,
) -> JobRunner:
    """Wire a runner from settings: gateway, classifier, enricher, pipeline."""
    enricher = RowEnricher(
        gateway or create_lookup_gateway(settings),
        ConsumerIspClassifier(settings.consumer_isp_keywords),
    )
    pipeline = EnrichmentPipeline(
        store,
        enricher,
        PipelineConfig.from_settings(settings),
        telemetry_cb=telemetry_cb,
        checkpoint_cb=checkpoint_cb,
    )
    return JobRunner(store, pipeline, max_workers=settings.max_workers)


__all__ = ["JobRunner", "RecentResults", "build_job_runner"]
