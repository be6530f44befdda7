"""Configuration loading utilities for ipenrich.toml."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_CONFIG_CANDIDATES = (Path("config/ipenrich.toml"), Path("ipenrich.toml"))


def _resolve_config_path(path: str | Path | None) -> Path | None:
    if path is not None:
        candidate = Path(path).expanduser()
        return candidate if candidate.exists() else None
    for candidate in _CONFIG_CANDIDATES:
        if candidate.exists():
            return candidate
    return None


def load_config_file(path: str | Path | None = None) -> dict[str, dict[str, Any]]:
    """Load the ``[enrichment]`` and ``[database]`` tables from a TOML file.

    Looks in ``config/ipenrich.toml`` first, then ``ipenrich.toml`` in the
    current directory, unless an explicit path is given.

    Args:
        path: Optional explicit configuration file

    Returns:
        Mapping with ``enrichment`` and ``database`` keys (empty dicts when the
        file is absent or unreadable)
    """
    result: dict[str, dict[str, Any]] = {"enrichment": {}, "database": {}}

    config_path = _resolve_config_path(path)
    if config_path is None:
        if path is not None:
            logger.warning(f"Configuration file not found: {path}")
        return result

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except OSError as e:
        logger.debug(f"Could not read {config_path}: {e}")
        return result
    except tomllib.TOMLDecodeError as e:
        logger.warning(f"Failed to parse {config_path}: {e}. Using defaults.")
        return result

    for section in ("enrichment", "database"):
        table = data.get(section, {})
        if isinstance(table, dict):
            result[section] = dict(table)
        else:
            logger.warning(f"Ignoring non-table [{section}] in {config_path}")

    # Allow the database URL to be given as a top-level shortcut
    db_url = data.get("db")
    if isinstance(db_url, str) and db_url and "url" not in result["database"]:
        result["database"]["url"] = db_url

    return result


__all__ = ["load_config_file"]
