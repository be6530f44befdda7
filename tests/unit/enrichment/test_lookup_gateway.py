"""Tests for the lookup gateway's error translation."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock

import dns.exception
import dns.resolver
import pytest
import requests

from ipenrichment.enrichment.gateway import LookupGateway, create_geo_provider, create_lookup_gateway
from ipenrichment.enrichment.ipapi_client import IpApiClient
from ipenrichment.enrichment.maxmind_client import MaxMindGeoProvider
from ipenrichment.enrichment.models import GeoOrgRecord, LookupFailure
from ipenrichment.errors import GeoLookupError
from ipenrichment.settings import EnrichmentSettings
from tests.fixtures.lookup_doubles import GOOGLE_DNS, GOOGLE_RECORD, FakeDnsResolver, FakeGeoProvider


class TestFetchGeoOrg:
    """Test LookupGateway.fetch_geo_org."""

    def test_success_returns_record(self, gateway: LookupGateway) -> None:
        assert gateway.fetch_geo_org(GOOGLE_DNS) == GOOGLE_RECORD

    def test_provider_failure_keeps_reason(self, gateway: LookupGateway) -> None:
        result = gateway.fetch_geo_org("10.0.0.1")
        assert result == LookupFailure(reason="private range")

    @pytest.mark.parametrize(
        "error",
        [
            requests.Timeout("read timed out"),
            requests.ConnectionError("connection refused"),
            requests.HTTPError("503 Service Unavailable"),
            OSError("network unreachable"),
        ],
    )
    def test_transport_failures_become_network(self, error: Exception) -> None:
        """Transport exceptions never escape the gateway.

        Given: A provider raising a transport-level exception
        When: fetch_geo_org is called
        Then: A LookupFailure with reason "network" is returned
        """
        gateway = LookupGateway(FakeGeoProvider({GOOGLE_DNS: error}), FakeDnsResolver())
        assert gateway.fetch_geo_org(GOOGLE_DNS) == LookupFailure(reason="network")

    def test_unparsable_payload_is_invalid_response(self) -> None:
        gateway = LookupGateway(FakeGeoProvider({GOOGLE_DNS: ValueError("bad json")}), FakeDnsResolver())
        assert gateway.fetch_geo_org(GOOGLE_DNS) == LookupFailure(reason="invalid response")

    def test_rate_limit_reason_passes_through(self) -> None:
        gateway = LookupGateway(FakeGeoProvider({GOOGLE_DNS: GeoLookupError("rate limited")}), FakeDnsResolver())
        assert gateway.fetch_geo_org(GOOGLE_DNS) == LookupFailure(reason="rate limited")


class TestReverseDns:
    """Test LookupGateway.reverse_dns."""

    def test_returns_hostname(self, gateway: LookupGateway) -> None:
        assert gateway.reverse_dns(GOOGLE_DNS) == "dns.google"

    def test_no_ptr_is_none(self, gateway: LookupGateway) -> None:
        assert gateway.reverse_dns("192.0.2.1") is None

    @pytest.mark.parametrize(
        "error",
        [
            OSError("socket closed"),
            dns.exception.Timeout(),
            dns.resolver.NoNameservers(),
            RuntimeError("resolver backend crashed"),
        ],
    )
    def test_resolver_errors_are_swallowed(self, error: Exception) -> None:
        """Any resolver failure means no hostname, never a failed row.

        Given: A resolver raising a DNS library or unexpected exception
        When: reverse_dns is called
        Then: None is returned
        """
        resolver = Mock()
        resolver.reverse.side_effect = error
        gateway = LookupGateway(FakeGeoProvider(), resolver)
        assert gateway.reverse_dns(GOOGLE_DNS) is None


def test_close_closes_provider(geo_provider: FakeGeoProvider, gateway: LookupGateway) -> None:
    gateway.close()
    assert geo_provider.closed is True


def test_close_tolerates_provider_without_close() -> None:
    provider = Mock(spec=["lookup"])
    provider.lookup.return_value = GeoOrgRecord()
    LookupGateway(provider, FakeDnsResolver()).close()


class TestFactories:
    """Test provider selection from settings."""

    def test_default_is_ip_api(self) -> None:
        provider = create_geo_provider(EnrichmentSettings(geo_timeout=4.0, lookup_retries=1))
        assert isinstance(provider, IpApiClient)
        assert provider.timeout == 4.0
        provider.close()

    def test_maxmind(self, tmp_path: Path) -> None:
        provider = create_geo_provider(EnrichmentSettings(geo_provider="maxmind", maxmind_db_path=tmp_path))
        assert isinstance(provider, MaxMindGeoProvider)
        assert provider.db_path == tmp_path

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown geolocation provider"):
            create_geo_provider(EnrichmentSettings(geo_provider="carrier-pigeon"))

    def test_gateway_uses_dns_timeout(self) -> None:
        gateway = create_lookup_gateway(EnrichmentSettings(dns_timeout=1.5))
        assert gateway.dns_resolver.timeout == 1.5
        gateway.close()
