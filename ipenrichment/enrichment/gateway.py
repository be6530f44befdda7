"""Lookup gateway combining a geolocation provider with reverse DNS.

The gateway is the only place where provider exceptions are turned into
typed values: geolocation failures become :class:`LookupFailure` with a
short reason, reverse DNS failures become ``None``. Everything above it
works with plain results.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, Union, runtime_checkable

import requests

from ..errors import GeoLookupError
from ..telemetry import start_span
from .ipapi_client import IpApiClient
from .maxmind_client import MaxMindGeoProvider
from .models import GeoOrgRecord, LookupFailure
from .rate_limiting import shared_rate_limiter
from .reverse_dns import ReverseDnsResolver

if TYPE_CHECKING:
    from ..settings import EnrichmentSettings

logger = logging.getLogger(__name__)

GeoResult = Union[GeoOrgRecord, LookupFailure]


@runtime_checkable
class GeoProvider(Protocol):
    """Anything that can geolocate a single address."""

    def lookup(self, ip_address: str) -> GeoOrgRecord:
        """Return geo/org data or raise :class:`GeoLookupError`."""
        ...


@runtime_checkable
class DnsResolver(Protocol):
    def reverse(self, ip_address: str) -> str | None: ...


class LookupGateway:
    """Adapter over the external lookup services used by the row enricher.

    Args:
        geo_provider: Geolocation backend
        dns_resolver: Reverse DNS backend
    """

    def __init__(self, geo_provider: GeoProvider, dns_resolver: DnsResolver) -> None:
        self.geo_provider = geo_provider
        self.dns_resolver = dns_resolver

    def fetch_geo_org(self, ip_address: str) -> GeoResult:
        """Geolocate ``ip_address``.

        Returns:
            GeoOrgRecord on success, LookupFailure with a reason otherwise.
            Provider errors never propagate.
        """
        with start_span("ipenrich.lookup.geo", {"ip.address": ip_address}) as span:
            try:
                record = self.geo_provider.lookup(ip_address)
            except GeoLookupError as e:
                reason = e.reason
            except requests.Timeout:
                reason = "network"
            except (requests.RequestException, OSError) as e:
                logger.debug(f"Geolocation transport failure for {ip_address}: {e}")
                reason = "network"
            except ValueError as e:
                logger.debug(f"Geolocation returned unparsable data for {ip_address}: {e}")
                reason = "invalid response"
            else:
                span.set_attribute("lookup.success", True)
                return record

            span.set_attribute("lookup.success", False)
            span.set_attribute("lookup.reason", reason)
            return LookupFailure(reason=reason)

    def reverse_dns(self, ip_address: str) -> str | None:
        """First PTR hostname for ``ip_address`` or ``None``."""
        try:
            return self.dns_resolver.reverse(ip_address)
        except Exception as e:
            logger.debug(f"Reverse DNS failed for {ip_address}: {e}")
            return None

    def close(self) -> None:
        """Release provider resources (HTTP sessions, database readers)."""
        close = getattr(self.geo_provider, "close", None)
        if callable(close):
            close()


def create_geo_provider(settings: EnrichmentSettings) -> GeoProvider:
    """Build the geolocation provider named by ``settings.geo_provider``.

    Raises:
        ValueError: Unknown provider name
    """
    provider = settings.geo_provider
    if provider == "ip-api":
        limiter = shared_rate_limiter(IpApiClient.SERVICE, settings.rate_limit, settings.rate_burst)
        return IpApiClient(
            base_url=settings.ipapi_base_url,
            timeout=settings.geo_timeout,
            retries=settings.lookup_retries,
            rate_limiter=limiter,
        )
    if provider == "maxmind":
        return MaxMindGeoProvider(settings.maxmind_db_path)
    raise ValueError(f"Unknown geolocation provider: {provider!r} (expected 'ip-api' or 'maxmind')")


def create_lookup_gateway(settings: EnrichmentSettings) -> LookupGateway:
    """Wire the configured geolocation provider and a reverse DNS resolver."""
    geo_provider = create_geo_provider(settings)
    dns_resolver = ReverseDnsResolver(timeout=settings.dns_timeout)
    logger.info(f"Lookup gateway using {settings.geo_provider} geolocation, DNS timeout {settings.dns_timeout}s")
    return LookupGateway(geo_provider, dns_resolver)


__all__ = [
    "DnsResolver",
    "GeoProvider",
    "GeoResult",
    "LookupGateway",
    "create_geo_provider",
    "create_lookup_gateway",
]
