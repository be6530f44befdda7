"""Runtime configuration helpers for the IP enrichment service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from ipenrichment.enrichment.classification import DEFAULT_CONSUMER_ISP_KEYWORDS

_DEFAULT_DB_PATH = Path("ipenrichment.sqlite")
_DEFAULT_ENV_PREFIX = "IPENRICH_"


def _coerce_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _coerce_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _coerce_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _coerce_keywords(value: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    keywords = tuple(part.strip().lower() for part in value.split(",") if part.strip())
    return keywords or default


@dataclass(slots=True)
class DatabaseSettings:
    """Normalized database configuration used by the job store."""

    url: str
    echo: bool = False
    pool_size: int | None = None
    pool_timeout: int = 30
    sqlite_wal: bool = True
    sqlite_cache_size: int = -64000
    sqlite_synchronous: str = "NORMAL"

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, Any] | None = None,
        env_prefix: str = _DEFAULT_ENV_PREFIX,
    ) -> "DatabaseSettings":
        """Build settings from defaults, optional config mapping, and environment variables.

        Precedence order (highest to lowest):
        1. Explicit config mapping values
        2. Environment variables
        3. Default values
        """
        cfg: dict[str, Any] = {
            "url": f"sqlite:///{_DEFAULT_DB_PATH.resolve()}",
            "echo": False,
            "pool_size": None,
            "pool_timeout": 30,
            "sqlite_wal": True,
            "sqlite_cache_size": -64000,
            "sqlite_synchronous": "NORMAL",
        }

        config_keys: set[str] = set()
        if config:
            config_keys = {k for k, v in config.items() if v is not None and k in cfg}
            cfg.update({k: v for k, v in config.items() if v is not None and k in cfg})

        env = os.environ
        prefix = env_prefix.upper()

        if "url" not in config_keys:
            url_override = env.get(f"{prefix}DB_URL")
            if url_override:
                cfg["url"] = url_override
            else:
                path_override = env.get(f"{prefix}DB_PATH")
                if path_override:
                    cfg["url"] = f"sqlite:///{Path(path_override).resolve()}"

        if "echo" not in config_keys:
            cfg["echo"] = _coerce_bool(env.get(f"{prefix}DB_ECHO"), bool(cfg["echo"]))

        if "pool_size" not in config_keys:
            pool_size = env.get(f"{prefix}DB_POOL_SIZE")
            if pool_size is not None:
                coerced = _coerce_int(pool_size, -1)
                cfg["pool_size"] = coerced if coerced >= 0 else None

        if "pool_timeout" not in config_keys:
            cfg["pool_timeout"] = _coerce_int(env.get(f"{prefix}DB_POOL_TIMEOUT"), int(cfg["pool_timeout"]))

        if "sqlite_wal" not in config_keys:
            cfg["sqlite_wal"] = _coerce_bool(env.get(f"{prefix}DB_SQLITE_WAL"), bool(cfg["sqlite_wal"]))

        if "sqlite_cache_size" not in config_keys:
            cfg["sqlite_cache_size"] = _coerce_int(
                env.get(f"{prefix}DB_SQLITE_CACHE_SIZE"), int(cfg["sqlite_cache_size"])
            )

        if "sqlite_synchronous" not in config_keys:
            sqlite_sync_override = env.get(f"{prefix}DB_SQLITE_SYNCHRONOUS")
            if sqlite_sync_override:
                cfg["sqlite_synchronous"] = sqlite_sync_override.strip().upper()

        return cls(**cfg)


def load_database_settings(
    config: Mapping[str, Any] | None = None,
    env_prefix: str = _DEFAULT_ENV_PREFIX,
) -> DatabaseSettings:
    """Convenience wrapper used by CLI entry points."""
    return DatabaseSettings.from_sources(config=config, env_prefix=env_prefix)


@dataclass(slots=True)
class EnrichmentSettings:
    """Runtime configuration controlling lookups, batching and output."""

    batch_size: int = 100
    geo_provider: str = "ip-api"
    ipapi_base_url: str = "http://ip-api.com"
    geo_timeout: float = 10.0
    dns_timeout: float = 5.0
    lookup_retries: int = 2
    rate_limit: float = 0.75
    rate_burst: int = 1
    maxmind_db_path: Path = Path.home() / ".cache" / "ipenrichment" / "maxmind"
    output_dir: Path = Path.home() / ".cache" / "ipenrichment" / "output"
    status_dir: Path | None = None
    consumer_isp_keywords: tuple[str, ...] = field(default_factory=lambda: DEFAULT_CONSUMER_ISP_KEYWORDS)
    max_workers: int = 4
    max_flush_retries: int = 3
    flush_retry_backoff: float = 1.5
    max_failure_streak: int = 10

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, Any] | None = None,
        env_prefix: str = _DEFAULT_ENV_PREFIX,
    ) -> "EnrichmentSettings":
        """Build settings with the same precedence rules as :class:`DatabaseSettings`."""
        defaults = cls()
        provided = {k: v for k, v in (config or {}).items() if v is not None}
        env = os.environ
        prefix = env_prefix.upper()

        def pick(key: str, coerce: Any, default: Any) -> Any:
            if key in provided:
                return provided[key]
            return coerce(env.get(f"{prefix}{key.upper()}"), default)

        def pick_str(key: str, default: str) -> str:
            if key in provided:
                return str(provided[key])
            return env.get(f"{prefix}{key.upper()}") or default

        def pick_path(key: str, default: Path | None) -> Path | None:
            if key in provided:
                return Path(provided[key]).expanduser()
            raw = env.get(f"{prefix}{key.upper()}")
            return Path(raw).expanduser() if raw else default

        keywords = provided.get("consumer_isp_keywords")
        if keywords is None:
            keywords = _coerce_keywords(env.get(f"{prefix}CONSUMER_ISP_KEYWORDS"), defaults.consumer_isp_keywords)
        elif isinstance(keywords, str):
            keywords = _coerce_keywords(keywords, defaults.consumer_isp_keywords)
        else:
            keywords = tuple(str(k).strip().lower() for k in keywords if str(k).strip())

        return cls(
            batch_size=pick("batch_size", _coerce_int, defaults.batch_size),
            geo_provider=pick_str("geo_provider", defaults.geo_provider).strip().lower(),
            ipapi_base_url=pick_str("ipapi_base_url", defaults.ipapi_base_url).rstrip("/"),
            geo_timeout=pick("geo_timeout", _coerce_float, defaults.geo_timeout),
            dns_timeout=pick("dns_timeout", _coerce_float, defaults.dns_timeout),
            lookup_retries=pick("lookup_retries", _coerce_int, defaults.lookup_retries),
            rate_limit=pick("rate_limit", _coerce_float, defaults.rate_limit),
            rate_burst=pick("rate_burst", _coerce_int, defaults.rate_burst),
            maxmind_db_path=pick_path("maxmind_db_path", defaults.maxmind_db_path) or defaults.maxmind_db_path,
            output_dir=pick_path("output_dir", defaults.output_dir) or defaults.output_dir,
            status_dir=pick_path("status_dir", defaults.status_dir),
            consumer_isp_keywords=keywords,
            max_workers=pick("max_workers", _coerce_int, defaults.max_workers),
            max_flush_retries=pick("max_flush_retries", _coerce_int, defaults.max_flush_retries),
            flush_retry_backoff=pick("flush_retry_backoff", _coerce_float, defaults.flush_retry_backoff),
            max_failure_streak=pick("max_failure_streak", _coerce_int, defaults.max_failure_streak),
        )


def load_enrichment_settings(
    config: Mapping[str, Any] | None = None,
    env_prefix: str = _DEFAULT_ENV_PREFIX,
) -> EnrichmentSettings:
    """Convenience wrapper mirroring :func:`load_database_settings`."""
    return EnrichmentSettings.from_sources(config=config, env_prefix=env_prefix)


__all__ = [
    "DatabaseSettings",
    "EnrichmentSettings",
    "load_database_settings",
    "load_enrichment_settings",
]
