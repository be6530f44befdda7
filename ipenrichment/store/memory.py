"""Non-durable in-process job store."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Optional, Sequence

from ..errors import JobNotFoundError
from .base import Job, JobSpec, ResultRecord, validate_job_update

logger = logging.getLogger(__name__)


class InMemoryJobStore:
    """Job store holding everything in process memory.

    Useful for tests and one-shot CLI runs. Nothing survives a restart, so a
    warning is logged whenever one is created.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._jobs: dict[int, Job] = {}
        self._results: dict[int, list[ResultRecord]] = {}
        logger.warning("Using in-memory job store; jobs and results are lost when the process exits")

    def create_job(self, spec: JobSpec) -> Job:
        with self._lock:
            job_id = next(self._ids)
            job = Job(
                id=job_id,
                file_name=spec.file_name,
                original_file_name=spec.original_file_name,
                ip_column_name=spec.ip_column_name,
                include_geolocation=spec.include_geolocation,
                include_domain=spec.include_domain,
                include_company=spec.include_company,
                include_network=spec.include_network,
                created_at=datetime.now(UTC),
            )
            self._jobs[job_id] = job
            self._results[job_id] = []
            return job

    def get_job(self, job_id: int) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def update_job(self, job_id: int, **fields: Any) -> Optional[Job]:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                return None
            updated = replace(current, **validate_job_update(current, fields))
            self._jobs[job_id] = updated
            return updated

    def append_result_batch(self, job_id: int, records: Sequence[ResultRecord]) -> int:
        """Append ``records`` atomically.

        Raises:
            JobNotFoundError: Unknown job
            ValueError: A record belongs to another job or repeats a row index
        """
        with self._lock:
            existing = self._results.get(job_id)
            if existing is None:
                raise JobNotFoundError(job_id)

            seen = {record.row_index for record in existing}
            stamped: list[ResultRecord] = []
            now = datetime.now(UTC)
            for record in records:
                if record.job_id != job_id:
                    raise ValueError(f"Record for job {record.job_id} appended to job {job_id}")
                if record.row_index in seen:
                    raise ValueError(f"Duplicate row index {record.row_index} for job {job_id}")
                seen.add(record.row_index)
                stamped.append(record if record.created_at else replace(record, created_at=now))

            existing.extend(stamped)
            existing.sort(key=lambda record: record.row_index)
            return len(stamped)

    def list_results(self, job_id: int, offset: int = 0, limit: Optional[int] = None) -> list[ResultRecord]:
        with self._lock:
            records = self._results.get(job_id, [])
            start = max(0, offset)
            end = None if limit is None else start + max(0, limit)
            return list(records[start:end])

    def count_results(self, job_id: int) -> int:
        with self._lock:
            return len(self._results.get(job_id, []))

    def list_jobs(self) -> list[Job]:
        with self._lock:
            return sorted(self._jobs.values(), key=lambda job: job.id, reverse=True)

    def delete_job(self, job_id: int) -> bool:
        with self._lock:
            if self._jobs.pop(job_id, None) is None:
                return False
            self._results.pop(job_id, None)
            return True


__all__ = ["InMemoryJobStore"]
