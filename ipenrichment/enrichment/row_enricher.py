"""Per-row enrichment: validate, geolocate, resolve, classify."""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from .classification import ConsumerIspClassifier
from .gateway import LookupGateway
from .models import (
    INVALID_ADDRESS_ERROR,
    CompanyInfo,
    DomainInfo,
    EnrichmentOptions,
    EnrichmentOutcome,
    GeoLocation,
    LookupFailure,
    NetworkInfo,
    Row,
)
from .validation import is_valid_address

logger = logging.getLogger(__name__)


class RowEnricher:
    """Turn one CSV row into an :class:`EnrichmentOutcome`.

    Row-level problems (bad address, provider failure) are captured in the
    outcome's ``error`` field and never raised. Only the parts whose flag is
    set in :class:`EnrichmentOptions` appear on a successful outcome.

    Args:
        gateway: Lookup gateway for geolocation and reverse DNS
        classifier: Consumer ISP classifier; defaults to the built-in keyword set
        allow_ipv6: Accept IPv6 addresses in addition to dotted-quad IPv4
    """

    def __init__(
        self,
        gateway: LookupGateway,
        classifier: Optional[ConsumerIspClassifier] = None,
        allow_ipv6: bool = False,
    ) -> None:
        self.gateway = gateway
        self.classifier = classifier or ConsumerIspClassifier()
        self.allow_ipv6 = allow_ipv6

    def enrich(self, row: Row | Mapping[str, str], ip_column_name: str, options: EnrichmentOptions) -> EnrichmentOutcome:
        """Enrich a single row.

        Args:
            row: The row (or its raw column mapping)
            ip_column_name: Column holding the address
            options: Which enrichment parts to produce

        Returns:
            A successful outcome with the requested parts, or a failed one
            carrying the reason.
        """
        data = row.data if isinstance(row, Row) else row
        raw_value = data.get(ip_column_name)
        ip = raw_value.strip() if isinstance(raw_value, str) else ""

        if not ip or not is_valid_address(ip, allow_ipv6=self.allow_ipv6):
            logger.debug(f"Rejecting invalid address {raw_value!r} in column {ip_column_name!r}")
            return EnrichmentOutcome.failure(ip, INVALID_ADDRESS_ERROR)

        return self.enrich_address(ip, options)

    def enrich_address(self, ip: str, options: EnrichmentOptions) -> EnrichmentOutcome:
        """Enrich an address already known to be syntactically valid."""
        result = self.gateway.fetch_geo_org(ip)
        if isinstance(result, LookupFailure):
            logger.debug(f"Geolocation failed for {ip}: {result.reason}")
            return EnrichmentOutcome.failure(ip, result.reason)

        geolocation = None
        if options.include_geolocation:
            geolocation = GeoLocation(
                country=result.country,
                region=result.region,
                city=result.city,
                latitude=result.lat,
                longitude=result.lon,
            )

        domain = None
        if options.include_domain:
            domain = DomainInfo(name=self.gateway.reverse_dns(ip))

        isp_filtered = self.classifier.is_common_consumer_isp(result.isp, result.org)

        company = CompanyInfo(name=result.org, isp_filtered=isp_filtered) if options.include_company else None
        network = NetworkInfo(isp=result.isp, asn=result.as_number) if options.include_network else None

        return EnrichmentOutcome(
            ip=ip,
            success=True,
            geolocation=geolocation,
            domain=domain,
            company=company,
            network=network,
            isp_filtered=isp_filtered,
        )


__all__ = ["RowEnricher", "EnrichmentOptions", "EnrichmentOutcome"]
