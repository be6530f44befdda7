"""Tests for enrichment value types."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from ipenrichment.enrichment.models import (
    CompanyInfo,
    DomainInfo,
    EnrichmentOptions,
    EnrichmentOutcome,
    EnrichmentTally,
    GeoLocation,
    NetworkInfo,
)


def _full_outcome(isp_filtered: bool = False) -> EnrichmentOutcome:
    return EnrichmentOutcome(
        ip="8.8.8.8",
        success=True,
        geolocation=GeoLocation(country="United States", region="Virginia", city="Ashburn", latitude=39.03, longitude=-77.5),
        domain=DomainInfo(name="dns.google"),
        company=CompanyInfo(name="Google Public DNS", isp_filtered=isp_filtered),
        network=NetworkInfo(isp="Google LLC", asn="AS15169 Google LLC"),
        isp_filtered=isp_filtered,
    )


class TestEnrichmentOutcome:
    """Test outcome invariants and the persisted dictionary form."""

    def test_failure_cannot_carry_parts(self) -> None:
        with pytest.raises(ValueError):
            EnrichmentOutcome(ip="8.8.8.8", success=False, error="network", domain=DomainInfo(name="x"))

    def test_failure_cannot_be_filtered(self) -> None:
        with pytest.raises(ValueError):
            EnrichmentOutcome(ip="8.8.8.8", success=False, error="network", isp_filtered=True)

    def test_failure_dict_has_only_ip_and_error(self) -> None:
        data = EnrichmentOutcome.failure("999.1.1.1", "Invalid IP address").to_dict()
        assert data == {"ip": "999.1.1.1", "success": False, "error": "Invalid IP address"}

    def test_dict_keys_follow_parts(self) -> None:
        """Only requested parts appear in the flat dictionary.

        Given: An outcome with only the network part
        When: Converted with to_dict
        Then: No geolocation, domain or company keys are present
        """
        outcome = EnrichmentOutcome(
            ip="8.8.8.8", success=True, network=NetworkInfo(isp="Google LLC", asn="AS15169 Google LLC")
        )
        assert outcome.to_dict() == {
            "ip": "8.8.8.8",
            "success": True,
            "isp": "Google LLC",
            "asn": "AS15169 Google LLC",
            "isp_filtered": False,
        }

    def test_absent_domain_survives_as_none(self) -> None:
        outcome = EnrichmentOutcome(ip="8.8.8.8", success=True, domain=DomainInfo(name=None))
        restored = EnrichmentOutcome.from_dict(outcome.to_dict())
        assert restored.domain == DomainInfo(name=None)

    @pytest.mark.parametrize("isp_filtered", [False, True])
    def test_from_dict_restores_outcome(self, isp_filtered: bool) -> None:
        outcome = _full_outcome(isp_filtered)
        assert EnrichmentOutcome.from_dict(outcome.to_dict()) == outcome

    def test_from_dict_failure_defaults_error(self) -> None:
        restored = EnrichmentOutcome.from_dict({"ip": "1.2.3.4", "success": False})
        assert restored.success is False
        assert restored.error == "Unknown error"


class TestEnrichmentTally:
    """Test running counters."""

    def test_counts_by_outcome(self) -> None:
        tally = EnrichmentTally()
        tally.record(_full_outcome())
        tally.record(_full_outcome(isp_filtered=True))
        tally.record(EnrichmentOutcome.failure("x", "Invalid IP address"))
        tally.record(EnrichmentOutcome.failure("10.0.0.1", "private range"))
        tally.record(EnrichmentOutcome.failure("y", "Invalid IP address"))

        assert tally.processed == 5
        assert tally.successful == 2
        assert tally.failed == 3
        assert tally.filtered == 1
        assert tally.processed == tally.successful + tally.failed
        assert tally.error_counts == {"Invalid IP address": 2, "private range": 1}


def test_options_from_job() -> None:
    job = SimpleNamespace(include_geolocation=True, include_domain=False, include_company=1, include_network=0)
    assert EnrichmentOptions.from_job(job) == EnrichmentOptions(
        include_geolocation=True, include_domain=False, include_company=True, include_network=False
    )
