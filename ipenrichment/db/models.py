"""ORM models for enrichment jobs and their per-row results."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    false,
    true,
)

from .base import Base


class SchemaState(Base):
    """Key/value metadata used to track schema versions and flags."""

    __tablename__ = "schema_state"

    key = Column(String(128), primary_key=True)
    value = Column(String(256), nullable=False)


class EnrichmentJobModel(Base):
    """One batch enrichment submission and its aggregate counters."""

    __tablename__ = "enrichment_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_name = Column(String(1024), nullable=False)
    original_file_name = Column(String(1024), nullable=True)
    ip_column_name = Column(String(256), nullable=False)

    include_geolocation = Column(Boolean, nullable=False, server_default=true())
    include_domain = Column(Boolean, nullable=False, server_default=true())
    include_company = Column(Boolean, nullable=False, server_default=true())
    include_network = Column(Boolean, nullable=False, server_default=true())

    status = Column(String(16), nullable=False, server_default="pending", index=True)
    total_rows = Column(Integer, nullable=True)
    processed_rows = Column(Integer, nullable=False, server_default="0")
    successful_rows = Column(Integer, nullable=False, server_default="0")
    failed_rows = Column(Integer, nullable=False, server_default="0")
    filtered_rows = Column(Integer, nullable=False, server_default="0")
    checkpoint = Column(Integer, nullable=False, server_default="0")
    partial_results_available = Column(Boolean, nullable=False, server_default=false())
    error = Column(Text, nullable=True)

    csv_headers = Column(JSON, nullable=True)
    output_path = Column(String(1024), nullable=True)
    filtered_output_path = Column(String(1024), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)


class EnrichmentResultModel(Base):
    """Persisted pairing of an input row with its enrichment outcome."""

    __tablename__ = "enrichment_results"
    __table_args__ = (
        UniqueConstraint("job_id", "row_index", name="uq_enrichment_results_job_row"),
        Index("ix_enrichment_results_job_success", "job_id", "success"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(
        Integer,
        ForeignKey("enrichment_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    row_index = Column(Integer, nullable=False)
    original_data = Column(JSON, nullable=False)
    enrichment_data = Column(JSON, nullable=False)
    success = Column(Boolean, nullable=False)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


__all__ = ["EnrichmentJobModel", "EnrichmentResultModel", "SchemaState"]
