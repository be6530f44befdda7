"""Tests for runtime settings resolution."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from ipenrichment.enrichment.classification import DEFAULT_CONSUMER_ISP_KEYWORDS
from ipenrichment.settings import (
    DatabaseSettings,
    EnrichmentSettings,
    load_database_settings,
    load_enrichment_settings,
)


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("IPENRICH_"):
            monkeypatch.delenv(key, raising=False)


class TestDatabaseSettings:
    """Test DatabaseSettings.from_sources precedence."""

    def test_defaults_to_sqlite_file(self) -> None:
        settings = load_database_settings()
        assert settings.url.startswith("sqlite:///")
        assert settings.url.endswith("ipenrichment.sqlite")
        assert settings.sqlite_wal is True

    def test_env_url_overrides_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IPENRICH_DB_URL", "postgresql://user@db/enrich")
        assert load_database_settings().url == "postgresql://user@db/enrich"

    def test_env_path_builds_sqlite_url(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("IPENRICH_DB_PATH", str(tmp_path / "jobs.sqlite"))
        assert load_database_settings().url == f"sqlite:///{(tmp_path / 'jobs.sqlite').resolve()}"

    def test_config_beats_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IPENRICH_DB_URL", "sqlite:///env.sqlite")
        settings = DatabaseSettings.from_sources({"url": "sqlite:///config.sqlite"})
        assert settings.url == "sqlite:///config.sqlite"

    def test_env_coercion(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IPENRICH_DB_ECHO", "yes")
        monkeypatch.setenv("IPENRICH_DB_POOL_SIZE", "8")
        monkeypatch.setenv("IPENRICH_DB_SQLITE_SYNCHRONOUS", "full")
        settings = load_database_settings()
        assert settings.echo is True
        assert settings.pool_size == 8
        assert settings.sqlite_synchronous == "FULL"


class TestEnrichmentSettings:
    """Test EnrichmentSettings.from_sources precedence and coercion."""

    def test_defaults(self) -> None:
        settings = load_enrichment_settings()
        assert settings.batch_size == 100
        assert settings.geo_provider == "ip-api"
        assert settings.ipapi_base_url == "http://ip-api.com"
        assert settings.rate_limit == 0.75
        assert settings.max_flush_retries == 3
        assert settings.max_failure_streak == 10
        assert settings.consumer_isp_keywords == DEFAULT_CONSUMER_ISP_KEYWORDS
        assert settings.status_dir is None

    def test_env_values_are_coerced(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("IPENRICH_BATCH_SIZE", "250")
        monkeypatch.setenv("IPENRICH_GEO_TIMEOUT", "2.5")
        monkeypatch.setenv("IPENRICH_GEO_PROVIDER", " MaxMind ")
        monkeypatch.setenv("IPENRICH_OUTPUT_DIR", str(tmp_path))
        monkeypatch.setenv("IPENRICH_CONSUMER_ISP_KEYWORDS", "Comcast, Example ,")

        settings = load_enrichment_settings()

        assert settings.batch_size == 250
        assert settings.geo_timeout == 2.5
        assert settings.geo_provider == "maxmind"
        assert settings.output_dir == tmp_path
        assert settings.consumer_isp_keywords == ("comcast", "example")

    def test_invalid_env_number_falls_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IPENRICH_BATCH_SIZE", "lots")
        assert load_enrichment_settings().batch_size == 100

    def test_config_mapping_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IPENRICH_BATCH_SIZE", "250")
        settings = EnrichmentSettings.from_sources({"batch_size": 50, "consumer_isp_keywords": ["Foo", " "]})
        assert settings.batch_size == 50
        assert settings.consumer_isp_keywords == ("foo",)

    def test_trailing_slash_trimmed(self) -> None:
        settings = load_enrichment_settings({"ipapi_base_url": "https://pro.ip-api.com/"})
        assert settings.ipapi_base_url == "https://pro.ip-api.com"
