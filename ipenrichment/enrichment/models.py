"""Data models for per-row IP enrichment.

This module provides the value types passed between the lookup gateway, the
row enricher and the batch checkpointer. Enrichment parts are grouped so a
part that is ``None`` was not requested (flag off), while a requested part
may still carry ``None`` fields when the provider had nothing to say (for
example no PTR record for the domain).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

INVALID_ADDRESS_ERROR = "Invalid IP address"


@dataclass(slots=True, frozen=True)
class Row:
    """One CSV record and its 0-based position in the stream."""

    index: int
    data: dict[str, str]


@dataclass(slots=True, frozen=True)
class EnrichmentOptions:
    """Feature flags selecting which enrichment parts are produced."""

    include_geolocation: bool = True
    include_domain: bool = True
    include_company: bool = True
    include_network: bool = True

    @classmethod
    def from_job(cls, job: Any) -> "EnrichmentOptions":
        """Copy the four flags from a job snapshot."""
        return cls(
            include_geolocation=bool(job.include_geolocation),
            include_domain=bool(job.include_domain),
            include_company=bool(job.include_company),
            include_network=bool(job.include_network),
        )


@dataclass(slots=True)
class GeoOrgRecord:
    """Geolocation and organization data returned by a geolocation provider."""

    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    isp: Optional[str] = None
    org: Optional[str] = None
    as_number: Optional[str] = None


@dataclass(slots=True, frozen=True)
class LookupFailure:
    """Typed geolocation failure; ``reason`` ends up in the row's error field."""

    reason: str


@dataclass(slots=True, frozen=True)
class GeoLocation:
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(slots=True, frozen=True)
class DomainInfo:
    name: Optional[str] = None


@dataclass(slots=True, frozen=True)
class CompanyInfo:
    name: Optional[str] = None
    isp_filtered: bool = False


@dataclass(slots=True, frozen=True)
class NetworkInfo:
    isp: Optional[str] = None
    asn: Optional[str] = None


@dataclass(slots=True, frozen=True)
class EnrichmentOutcome:
    """Immutable result of enriching one row.

    Attributes:
        ip: The address string taken from the row (empty if missing)
        success: Whether geolocation succeeded
        error: Failure reason when ``success`` is False
        geolocation: Present only when geolocation was requested
        domain: Present only when domain resolution was requested
        company: Present only when company data was requested
        network: Present only when network data was requested
        isp_filtered: Consumer ISP classification, computed for every
            successful row regardless of flags

    Note:
        A failed outcome never carries enrichment parts. Use :meth:`failure`
        to build one.
    """

    ip: str
    success: bool
    error: Optional[str] = None
    geolocation: Optional[GeoLocation] = None
    domain: Optional[DomainInfo] = None
    company: Optional[CompanyInfo] = None
    network: Optional[NetworkInfo] = None
    isp_filtered: bool = False

    def __post_init__(self) -> None:
        """Reject enrichment parts on failed outcomes."""
        if not self.success and any(
            part is not None for part in (self.geolocation, self.domain, self.company, self.network)
        ):
            raise ValueError("failed outcome must not carry enrichment data")
        if not self.success and self.isp_filtered:
            raise ValueError("failed outcome cannot be ISP filtered")

    @classmethod
    def failure(cls, ip: str, reason: str) -> "EnrichmentOutcome":
        return cls(ip=ip, success=False, error=reason)

    def to_dict(self) -> dict[str, Any]:
        """Flatten into the JSON shape persisted with each result record."""
        data: dict[str, Any] = {"ip": self.ip, "success": self.success}
        if not self.success:
            data["error"] = self.error
            return data
        if self.geolocation is not None:
            data.update(
                country=self.geolocation.country,
                region=self.geolocation.region,
                city=self.geolocation.city,
                latitude=self.geolocation.latitude,
                longitude=self.geolocation.longitude,
            )
        if self.domain is not None:
            data["domain"] = self.domain.name
        if self.company is not None:
            data["company"] = self.company.name
        if self.network is not None:
            data["isp"] = self.network.isp
            data["asn"] = self.network.asn
        data["isp_filtered"] = self.isp_filtered
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EnrichmentOutcome":
        """Rebuild an outcome from :meth:`to_dict` output."""
        ip = str(data.get("ip") or "")
        if not data.get("success"):
            return cls.failure(ip, str(data.get("error") or "Unknown error"))

        isp_filtered = bool(data.get("isp_filtered", False))
        geolocation = None
        if any(key in data for key in ("country", "region", "city", "latitude", "longitude")):
            geolocation = GeoLocation(
                country=data.get("country"),
                region=data.get("region"),
                city=data.get("city"),
                latitude=data.get("latitude"),
                longitude=data.get("longitude"),
            )
        domain = DomainInfo(name=data.get("domain")) if "domain" in data else None
        company = CompanyInfo(name=data.get("company"), isp_filtered=isp_filtered) if "company" in data else None
        network = NetworkInfo(isp=data.get("isp"), asn=data.get("asn")) if "isp" in data or "asn" in data else None
        return cls(
            ip=ip,
            success=True,
            geolocation=geolocation,
            domain=domain,
            company=company,
            network=network,
            isp_filtered=isp_filtered,
        )


@dataclass(slots=True)
class EnrichmentTally:
    """Running per-job counters derived from outcomes."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
    filtered: int = 0
    error_counts: dict[str, int] = field(default_factory=dict)

    def record(self, outcome: EnrichmentOutcome) -> None:
        self.processed += 1
        if outcome.success:
            self.successful += 1
            if outcome.isp_filtered:
                self.filtered += 1
        else:
            self.failed += 1
            reason = outcome.error or "Unknown error"
            self.error_counts[reason] = self.error_counts.get(reason, 0) + 1


__all__ = [
    "INVALID_ADDRESS_ERROR",
    "CompanyInfo",
    "DomainInfo",
    "EnrichmentOptions",
    "EnrichmentOutcome",
    "EnrichmentTally",
    "GeoLocation",
    "GeoOrgRecord",
    "LookupFailure",
    "NetworkInfo",
    "Row",
]
