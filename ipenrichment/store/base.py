"""Job store interface and the records it exchanges with the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Protocol, Sequence

from ..enrichment.models import EnrichmentOutcome
from ..errors import InvalidJobStateError


class JobStatus(str, Enum):
    """Lifecycle state of an enrichment job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition(self, target: "JobStatus") -> bool:
        """Return True if moving from this status to ``target`` is allowed.

        Transitions only move forward (pending -> processing -> completed or
        failed). Staying in the same non-terminal state is a no-op and allowed.
        """
        if self.is_terminal:
            return False
        if target == self:
            return True
        if self == JobStatus.PENDING:
            return target == JobStatus.PROCESSING
        return target in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass(slots=True, frozen=True)
class JobSpec:
    """What the caller submits to create a job."""

    file_name: str
    ip_column_name: str
    original_file_name: Optional[str] = None
    include_geolocation: bool = True
    include_domain: bool = True
    include_company: bool = True
    include_network: bool = True


@dataclass(slots=True, frozen=True)
class Job:
    """Point-in-time snapshot of a job row.

    Invariants maintained by the stores:
        - ``processed_rows == successful_rows + failed_rows``
        - ``checkpoint <= processed_rows`` and never decreases
        - ``total_rows`` is ``None`` until end-of-stream, then fixed
        - ``status`` only moves forward (see :meth:`JobStatus.can_transition`)
    """

    id: int
    file_name: str
    ip_column_name: str
    original_file_name: Optional[str] = None
    include_geolocation: bool = True
    include_domain: bool = True
    include_company: bool = True
    include_network: bool = True
    status: JobStatus = JobStatus.PENDING
    total_rows: Optional[int] = None
    processed_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    filtered_rows: int = 0
    checkpoint: int = 0
    partial_results_available: bool = False
    error: Optional[str] = None
    csv_headers: tuple[str, ...] = ()
    output_path: Optional[str] = None
    filtered_output_path: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.original_file_name or self.file_name

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view used by the CLI and status files."""
        return {
            "id": self.id,
            "file_name": self.file_name,
            "original_file_name": self.original_file_name,
            "ip_column_name": self.ip_column_name,
            "include_geolocation": self.include_geolocation,
            "include_domain": self.include_domain,
            "include_company": self.include_company,
            "include_network": self.include_network,
            "status": self.status.value,
            "total_rows": self.total_rows,
            "processed_rows": self.processed_rows,
            "successful_rows": self.successful_rows,
            "failed_rows": self.failed_rows,
            "filtered_rows": self.filtered_rows,
            "checkpoint": self.checkpoint,
            "partial_results_available": self.partial_results_available,
            "error": self.error,
            "csv_headers": list(self.csv_headers),
            "output_path": self.output_path,
            "filtered_output_path": self.filtered_output_path,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(slots=True, frozen=True)
class ResultRecord:
    """Durable pairing of one input row and its outcome, keyed by ``(job_id, row_index)``."""

    job_id: int
    row_index: int
    original_data: dict[str, str]
    outcome: EnrichmentOutcome
    created_at: Optional[datetime] = field(default=None, compare=False)


# Fields a store accepts in ``update_job``
MUTABLE_JOB_FIELDS = frozenset(
    {
        "status",
        "total_rows",
        "processed_rows",
        "successful_rows",
        "failed_rows",
        "filtered_rows",
        "checkpoint",
        "partial_results_available",
        "error",
        "csv_headers",
        "output_path",
        "filtered_output_path",
        "completed_at",
    }
)


def validate_job_update(current: Job, fields: Mapping[str, Any]) -> dict[str, Any]:
    """Check ``fields`` against ``current`` and return the normalized update.

    Raises:
        InvalidJobStateError: Unknown field, backward status move, checkpoint
            regression, or an attempt to change ``total_rows`` once set.
    """
    unknown = set(fields) - MUTABLE_JOB_FIELDS
    if unknown:
        raise InvalidJobStateError(f"Cannot update job fields: {', '.join(sorted(unknown))}")

    update = dict(fields)

    if "status" in update:
        target = JobStatus(update["status"])
        if not current.status.can_transition(target):
            raise InvalidJobStateError(
                f"Job {current.id} cannot move from {current.status.value} to {target.value}"
            )
        update["status"] = target

    if "checkpoint" in update and update["checkpoint"] < current.checkpoint:
        raise InvalidJobStateError(
            f"Job {current.id} checkpoint cannot move backward ({current.checkpoint} -> {update['checkpoint']})"
        )

    if "total_rows" in update and current.total_rows is not None and update["total_rows"] != current.total_rows:
        raise InvalidJobStateError(f"Job {current.id} total_rows is already set to {current.total_rows}")

    if "csv_headers" in update and update["csv_headers"] is not None:
        update["csv_headers"] = tuple(update["csv_headers"])

    return update


class JobStore(Protocol):
    """Persistence boundary for jobs and their result records.

    Implementations must accept concurrent appends for different jobs and
    keep ``list_results`` ordered by ``row_index``.
    """

    def create_job(self, spec: JobSpec) -> Job: ...

    def get_job(self, job_id: int) -> Optional[Job]: ...

    def update_job(self, job_id: int, **fields: Any) -> Optional[Job]: ...

    def append_result_batch(self, job_id: int, records: Sequence[ResultRecord]) -> int: ...

    def list_results(self, job_id: int, offset: int = 0, limit: Optional[int] = None) -> list[ResultRecord]: ...

    def count_results(self, job_id: int) -> int: ...

    def list_jobs(self) -> list[Job]: ...

    def delete_job(self, job_id: int) -> bool: ...


__all__ = [
    "Job",
    "JobSpec",
    "JobStatus",
    "JobStore",
    "MUTABLE_JOB_FIELDS",
    "ResultRecord",
    "validate_job_update",
]
