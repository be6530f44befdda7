"""Exception hierarchy shared by the enrichment pipeline and its collaborators."""

from __future__ import annotations


class IpEnrichmentError(Exception):
    """Base class for all package errors."""


class JobNotFoundError(IpEnrichmentError, LookupError):
    """Raised when a job id does not resolve to a stored job."""

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidJobStateError(IpEnrichmentError):
    """Raised when an operation is not valid for the job's current status."""


class ArtifactNotReadyError(IpEnrichmentError):
    """Raised when an output artifact is requested before the job completed."""


class CheckpointFlushError(IpEnrichmentError):
    """Raised when buffered results could not be persisted at end-of-stream."""

    def __init__(self, message: str, unflushed: int) -> None:
        super().__init__(message)
        self.unflushed = unflushed


class CheckpointCircuitBreakerError(CheckpointFlushError):
    """Raised when too many consecutive batch flushes fail while streaming."""


class GeoLookupError(IpEnrichmentError):
    """Provider-reported geolocation failure (bad address, reserved range, quota)."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


__all__ = [
    "IpEnrichmentError",
    "JobNotFoundError",
    "InvalidJobStateError",
    "ArtifactNotReadyError",
    "CheckpointFlushError",
    "CheckpointCircuitBreakerError",
    "GeoLookupError",
]
