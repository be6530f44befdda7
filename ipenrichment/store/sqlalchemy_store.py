"""Durable job store backed by SQLAlchemy (SQLite or PostgreSQL)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Optional, Sequence, cast

from sqlalchemy import Table, delete, func, select
from sqlalchemy.dialects import postgresql as postgres_dialect
from sqlalchemy.dialects import sqlite as sqlite_dialect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ..db import EnrichmentJobModel, EnrichmentResultModel, apply_migrations, create_session_maker
from ..enrichment.models import EnrichmentOutcome
from ..errors import JobNotFoundError
from .base import Job, JobSpec, JobStatus, ResultRecord, validate_job_update

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _job_from_model(model: EnrichmentJobModel) -> Job:
    return Job(
        id=int(model.id),
        file_name=model.file_name,
        original_file_name=model.original_file_name,
        ip_column_name=model.ip_column_name,
        include_geolocation=bool(model.include_geolocation),
        include_domain=bool(model.include_domain),
        include_company=bool(model.include_company),
        include_network=bool(model.include_network),
        status=JobStatus(model.status),
        total_rows=model.total_rows,
        processed_rows=int(model.processed_rows or 0),
        successful_rows=int(model.successful_rows or 0),
        failed_rows=int(model.failed_rows or 0),
        filtered_rows=int(model.filtered_rows or 0),
        checkpoint=int(model.checkpoint or 0),
        partial_results_available=bool(model.partial_results_available),
        error=model.error,
        csv_headers=tuple(model.csv_headers or ()),
        output_path=model.output_path,
        filtered_output_path=model.filtered_output_path,
        created_at=_as_utc(model.created_at),
        completed_at=_as_utc(model.completed_at),
    )


def _record_from_model(model: EnrichmentResultModel) -> ResultRecord:
    return ResultRecord(
        job_id=int(model.job_id),
        row_index=int(model.row_index),
        original_data=dict(model.original_data or {}),
        outcome=EnrichmentOutcome.from_dict(model.enrichment_data or {}),
        created_at=_as_utc(model.created_at),
    )


class SqlAlchemyJobStore:
    """Relational job store.

    Each ``append_result_batch`` call is one transaction, so a batch is
    either fully persisted or not at all. Inserts skip rows whose
    ``(job_id, row_index)`` already exists, which makes a retried batch
    idempotent.

    Args:
        engine: Engine created by :func:`ipenrichment.db.create_engine_from_settings`
        migrate: Create or upgrade the schema on construction
    """

    def __init__(self, engine: Engine, *, migrate: bool = True) -> None:
        self.engine = engine
        if migrate:
            apply_migrations(engine)
        self._session_factory: sessionmaker[Session] = create_session_maker(engine)

    def create_job(self, spec: JobSpec) -> Job:
        with self._session_factory() as session, session.begin():
            model = EnrichmentJobModel(
                file_name=spec.file_name,
                original_file_name=spec.original_file_name,
                ip_column_name=spec.ip_column_name,
                include_geolocation=spec.include_geolocation,
                include_domain=spec.include_domain,
                include_company=spec.include_company,
                include_network=spec.include_network,
                status=JobStatus.PENDING.value,
                processed_rows=0,
                successful_rows=0,
                failed_rows=0,
                filtered_rows=0,
                checkpoint=0,
                partial_results_available=False,
                created_at=datetime.now(UTC),
            )
            session.add(model)
            session.flush()
            job = _job_from_model(model)
        logger.debug(f"Created job {job.id} for {job.display_name}")
        return job

    def get_job(self, job_id: int) -> Optional[Job]:
        with self._session_factory() as session:
            model = session.get(EnrichmentJobModel, job_id)
            return _job_from_model(model) if model is not None else None

    def update_job(self, job_id: int, **fields: Any) -> Optional[Job]:
        with self._session_factory() as session, session.begin():
            stmt = select(EnrichmentJobModel).where(EnrichmentJobModel.id == job_id)
            if self.engine.dialect.name == "postgresql":
                stmt = stmt.with_for_update()
            model = session.execute(stmt).scalar_one_or_none()
            if model is None:
                return None

            update = validate_job_update(_job_from_model(model), fields)
            for key, value in update.items():
                if key == "status":
                    value = value.value
                elif key == "csv_headers" and value is not None:
                    value = list(value)
                setattr(model, key, value)
            session.flush()
            return _job_from_model(model)

    def append_result_batch(self, job_id: int, records: Sequence[ResultRecord]) -> int:
        """Persist ``records`` in one transaction and return the inserted count.

        Raises:
            JobNotFoundError: Unknown job
            ValueError: A record belongs to another job
            sqlalchemy.exc.SQLAlchemyError: The write failed; nothing was persisted
        """
        if not records:
            return 0

        rows: list[dict[str, Any]] = []
        now = datetime.now(UTC)
        for record in records:
            if record.job_id != job_id:
                raise ValueError(f"Record for job {record.job_id} appended to job {job_id}")
            outcome = record.outcome
            rows.append(
                {
                    "job_id": job_id,
                    "row_index": record.row_index,
                    "original_data": dict(record.original_data),
                    "enrichment_data": outcome.to_dict(),
                    "success": outcome.success,
                    "error": outcome.error,
                    "created_at": record.created_at or now,
                }
            )

        table = cast(Table, EnrichmentResultModel.__table__)
        with self._session_factory() as session, session.begin():
            if session.get(EnrichmentJobModel, job_id) is None:
                raise JobNotFoundError(job_id)

            dialect_name = self.engine.dialect.name
            if dialect_name == "sqlite":
                stmt = sqlite_dialect.insert(table).values(rows)
                stmt = stmt.on_conflict_do_nothing(index_elements=["job_id", "row_index"])
                result = session.execute(stmt)
                return int(result.rowcount or 0)
            if dialect_name == "postgresql":
                pg_stmt = postgres_dialect.insert(table).values(rows)
                pg_stmt = pg_stmt.on_conflict_do_nothing(index_elements=["job_id", "row_index"])
                result = session.execute(pg_stmt)
                return int(result.rowcount or 0)

            session.execute(table.insert(), rows)
            return len(rows)

    def list_results(self, job_id: int, offset: int = 0, limit: Optional[int] = None) -> list[ResultRecord]:
        stmt = (
            select(EnrichmentResultModel)
            .where(EnrichmentResultModel.job_id == job_id)
            .order_by(EnrichmentResultModel.row_index)
            .offset(max(0, offset))
        )
        if limit is not None:
            stmt = stmt.limit(max(0, limit))
        with self._session_factory() as session:
            return [_record_from_model(model) for model in session.execute(stmt).scalars()]

    def count_results(self, job_id: int) -> int:
        stmt = select(func.count()).select_from(EnrichmentResultModel).where(EnrichmentResultModel.job_id == job_id)
        with self._session_factory() as session:
            return int(session.execute(stmt).scalar_one())

    def list_jobs(self) -> list[Job]:
        stmt = select(EnrichmentJobModel).order_by(EnrichmentJobModel.created_at.desc(), EnrichmentJobModel.id.desc())
        with self._session_factory() as session:
            return [_job_from_model(model) for model in session.execute(stmt).scalars()]

    def delete_job(self, job_id: int) -> bool:
        with self._session_factory() as session, session.begin():
            # Explicit result delete keeps backends without FK enforcement consistent
            session.execute(delete(EnrichmentResultModel).where(EnrichmentResultModel.job_id == job_id))
            result = session.execute(delete(EnrichmentJobModel).where(EnrichmentJobModel.id == job_id))
            deleted = bool(result.rowcount)
        if deleted:
            logger.info(f"Deleted job {job_id} and its results")
        return deleted


__all__ = ["SqlAlchemyJobStore"]
