"""Job stores: durable SQLAlchemy backend and non-durable in-memory fallback."""

from .base import Job, JobSpec, JobStatus, JobStore, ResultRecord
from .memory import InMemoryJobStore
from .sqlalchemy_store import SqlAlchemyJobStore

__all__ = [
    "InMemoryJobStore",
    "Job",
    "JobSpec",
    "JobStatus",
    "JobStore",
    "ResultRecord",
    "SqlAlchemyJobStore",
]
