"""Shared pytest fixtures for IP enrichment tests."""

from __future__ import annotations

import csv
import sys
from pathlib import Path
from typing import Callable, Generator, Iterable, Sequence

import pytest
from sqlalchemy import Engine

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ipenrichment.db import create_engine_from_settings  # noqa: E402
from ipenrichment.enrichment.classification import ConsumerIspClassifier  # noqa: E402
from ipenrichment.enrichment.gateway import LookupGateway  # noqa: E402
from ipenrichment.enrichment.rate_limiting import reset_shared_rate_limiters  # noqa: E402
from ipenrichment.enrichment.row_enricher import RowEnricher  # noqa: E402
from ipenrichment.pipeline.pipeline import PipelineConfig  # noqa: E402
from ipenrichment.settings import DatabaseSettings  # noqa: E402
from ipenrichment.store.memory import InMemoryJobStore  # noqa: E402
from tests.fixtures.lookup_doubles import FakeDnsResolver, FakeGeoProvider  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_rate_limiters() -> Generator[None, None, None]:
    """Keep process-wide limiters from leaking between tests."""
    reset_shared_rate_limiters()
    yield
    reset_shared_rate_limiters()


# ============================================================================
# Enrichment Fixtures
# ============================================================================


@pytest.fixture
def geo_provider() -> FakeGeoProvider:
    """Geolocation double knowing Google DNS, Cloudflare DNS and a Comcast host."""
    return FakeGeoProvider()


@pytest.fixture
def dns_resolver() -> FakeDnsResolver:
    return FakeDnsResolver()


@pytest.fixture
def gateway(geo_provider: FakeGeoProvider, dns_resolver: FakeDnsResolver) -> LookupGateway:
    return LookupGateway(geo_provider, dns_resolver)


@pytest.fixture
def enricher(gateway: LookupGateway) -> RowEnricher:
    return RowEnricher(gateway, ConsumerIspClassifier())


@pytest.fixture
def memory_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PipelineConfig:
    """Pipeline configuration that never sleeps between flush retries."""
    return PipelineConfig(
        batch_size=100,
        output_dir=tmp_path / "output",
        max_flush_retries=2,
        flush_retry_delay=0.0,
        flush_retry_backoff=1.0,
        max_failure_streak=10,
    )


# ============================================================================
# CSV Fixtures
# ============================================================================


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[..., Path]:
    """Return a helper that writes ``rows`` under ``headers`` to a temp CSV file."""

    def _write(
        rows: Iterable[Sequence[str]],
        headers: Sequence[str] = ("host", "ip"),
        name: str = "hosts.csv",
    ) -> Path:
        path = tmp_path / name
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(headers)
            writer.writerows(rows)
        return path

    return _write


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def database_settings(tmp_path: Path) -> DatabaseSettings:
    """SQLite settings pointing at a throwaway file."""
    return DatabaseSettings(url=f"sqlite:///{tmp_path / 'jobs.sqlite'}")


@pytest.fixture
def db_engine(database_settings: DatabaseSettings) -> Generator[Engine, None, None]:
    engine = create_engine_from_settings(database_settings)
    yield engine
    engine.dispose()
