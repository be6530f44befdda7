"""Shared database configuration for CLI tools."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from ..settings import DatabaseSettings, load_database_settings


def resolve_database_settings(
    db_arg: str | None = None,
    config: Mapping[str, Any] | None = None,
) -> DatabaseSettings:
    """Resolve database settings from argument or configuration.

    Priority order:
    1. Explicit --db-url argument
    2. ``[database]`` table of ipenrich.toml
    3. Environment variables (IPENRICH_DB_URL, IPENRICH_DB_PATH)
    4. Default SQLite database

    Args:
        db_arg: Database URL or SQLite path from the CLI
        config: ``[database]`` table loaded from the configuration file

    Returns:
        Database settings object configured for the target database
    """
    if not db_arg:
        return load_database_settings(config=config or None)

    overrides = dict(config or {})
    if db_arg.startswith("sqlite:"):
        overrides["url"] = db_arg
        return load_database_settings(config=overrides)

    db_path = Path(db_arg)
    if db_path.exists() or db_arg.endswith(".sqlite"):
        overrides["url"] = f"sqlite:///{db_path.resolve()}"
        return load_database_settings(config=overrides)

    overrides["url"] = db_arg
    return load_database_settings(config=overrides)


def add_database_argument(parser: Any, help_text: str | None = None) -> None:
    """Add standard database argument to an argument parser.

    Args:
        parser: ArgumentParser instance to add the argument to
        help_text: Custom help text for the database argument
    """
    default_help = (
        "Database connection URL or SQLite path. If not provided, reads ipenrich.toml, "
        "then IPENRICH_DB_URL, then uses the default SQLite file."
    )

    parser.add_argument("--db-url", default=None, help=help_text or default_help)


__all__ = ["add_database_argument", "resolve_database_settings"]
