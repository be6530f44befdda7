"""Schema bootstrap and upgrade helpers for the job store database."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, cast

from sqlalchemy import Table, inspect, select, text, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .base import Base
from .models import SchemaState

SCHEMA_VERSION_KEY = "schema_version"
CURRENT_SCHEMA_VERSION = 2

logger = logging.getLogger(__name__)


def _safe_execute_sql(connection: Connection, sql: str, description: str = "") -> bool:
    """Execute ``sql``, logging instead of raising on failure.

    Returns:
        True if successful, False otherwise
    """
    try:
        connection.execute(text(sql))
    except SQLAlchemyError as e:
        logger.error(f"Failed to execute SQL: {description} - {e}")
        return False
    if description:
        logger.info(f"Successfully executed: {description}")
    return True


def _column_exists(connection: Connection, table_name: str, column_name: str) -> bool:
    inspector = inspect(connection)
    if not inspector.has_table(table_name):
        return False
    return column_name in {col["name"] for col in inspector.get_columns(table_name)}


@contextmanager
def begin_connection(engine: Engine) -> Iterator[Connection]:
    """Context manager that yields a transactional connection."""
    with engine.begin() as connection:
        yield connection


def _get_schema_version(connection: Connection) -> int:
    result = connection.execute(
        select(SchemaState.value).where(SchemaState.key == SCHEMA_VERSION_KEY)
    ).scalar_one_or_none()
    if result is None:
        return 0
    try:
        return int(result)
    except (TypeError, ValueError):
        return 0


def _set_schema_version(connection: Connection, version: int) -> None:
    stmt = update(SchemaState).where(SchemaState.key == SCHEMA_VERSION_KEY).values(value=str(version))
    result = connection.execute(stmt)
    if result.rowcount == 0:
        schema_table = cast(Table, SchemaState.__table__)
        connection.execute(schema_table.insert().values(key=SCHEMA_VERSION_KEY, value=str(version)))


def apply_migrations(engine: Engine) -> int:
    """Create or upgrade the database schema and return the resulting version."""
    with begin_connection(engine) as connection:
        Base.metadata.create_all(bind=connection)
        version = _get_schema_version(connection)

        if version < 1:
            _set_schema_version(connection, 1)
            version = 1

        if version < 2:
            _upgrade_to_v2(connection)
            _set_schema_version(connection, 2)
            version = 2

    logger.debug(f"Job store schema at version {version}")
    return version


def _upgrade_to_v2(connection: Connection) -> None:
    """Add the header snapshot and display-name columns to ``enrichment_jobs``."""
    json_type = "JSONB" if connection.dialect.name == "postgresql" else "JSON"
    if not _column_exists(connection, "enrichment_jobs", "csv_headers"):
        _safe_execute_sql(
            connection,
            f"ALTER TABLE enrichment_jobs ADD COLUMN csv_headers {json_type}",
            "Add csv_headers column",
        )
    if not _column_exists(connection, "enrichment_jobs", "original_file_name"):
        _safe_execute_sql(
            connection,
            "ALTER TABLE enrichment_jobs ADD COLUMN original_file_name VARCHAR(1024)",
            "Add original_file_name column",
        )


__all__ = ["CURRENT_SCHEMA_VERSION", "apply_migrations"]
