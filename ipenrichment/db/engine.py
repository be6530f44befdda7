"""Engine and session helpers for the job store."""

from __future__ import annotations

import sqlite3
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..settings import DatabaseSettings

_SQLITE_MEMORY_IDENTIFIERS = {":memory:", "file::memory:"}


def detect_postgresql_support() -> bool:
    """Return True when the psycopg driver is importable."""
    try:
        import psycopg  # noqa: F401

        return True
    except ImportError:
        return False


def _is_postgresql_url(url: str) -> bool:
    return url.startswith("postgresql://") or url.startswith("postgres://") or url.startswith("postgresql+")


def _is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite:")


def _needs_static_pool(url: str) -> bool:
    return url in {"sqlite://", "sqlite:///"} or any(identifier in url for identifier in _SQLITE_MEMORY_IDENTIFIERS)


def _sqlite_on_connect(settings: DatabaseSettings):
    def configure(dbapi_connection: sqlite3.Connection, _: Any) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA busy_timeout=5000")
            # Result rows are removed with their job through ON DELETE CASCADE
            cursor.execute("PRAGMA foreign_keys=ON")
            if settings.sqlite_wal:
                try:
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.fetchone()
                except sqlite3.DatabaseError:
                    pass
            cursor.execute(f"PRAGMA synchronous={settings.sqlite_synchronous}")
            cursor.execute(f"PRAGMA cache_size={settings.sqlite_cache_size}")
        finally:
            cursor.close()

    return configure


def create_engine_from_settings(settings: DatabaseSettings) -> Engine:
    """Create a SQLAlchemy engine configured for the target backend.

    Raises:
        ValueError: A PostgreSQL URL was given but psycopg is not installed.
    """
    url = settings.url

    if _is_postgresql_url(url):
        if not detect_postgresql_support():
            raise ValueError("PostgreSQL driver not installed. Install with: pip install -e '.[postgres]'")
        if not url.startswith("postgresql+psycopg://"):
            url = url.replace("postgresql://", "postgresql+psycopg://", 1).replace(
                "postgres://", "postgresql+psycopg://", 1
            )

    engine_kwargs: dict[str, Any] = {
        "echo": settings.echo,
        "future": True,
        "pool_pre_ping": True,
    }

    if settings.pool_size:
        engine_kwargs["pool_size"] = settings.pool_size
    if settings.pool_timeout is not None:
        engine_kwargs["pool_timeout"] = settings.pool_timeout

    if _is_sqlite_url(url):
        connect_args: dict[str, Any] = {"check_same_thread": False}
        if _needs_static_pool(url):
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs.pop("pool_timeout", None)
            engine_kwargs.pop("pool_size", None)
        engine = create_engine(url, connect_args=connect_args, **engine_kwargs)
        event.listen(engine, "connect", _sqlite_on_connect(settings))
        return engine

    return create_engine(url, **engine_kwargs)


def create_session_maker(engine: Engine) -> sessionmaker[Session]:
    """Return a configured session factory for the given engine."""
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False, future=True)


def is_postgresql(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"


__all__ = [
    "create_engine_from_settings",
    "create_session_maker",
    "detect_postgresql_support",
    "is_postgresql",
]
