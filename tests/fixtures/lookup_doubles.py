"""Test doubles for lookup backends and job stores."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ipenrichment.enrichment.models import GeoOrgRecord
from ipenrichment.errors import GeoLookupError
from ipenrichment.store.base import ResultRecord

GOOGLE_DNS = "8.8.8.8"
CLOUDFLARE_DNS = "1.1.1.1"
COMCAST_HOST = "73.0.0.1"
PRIVATE_HOST = "10.0.0.1"

GOOGLE_RECORD = GeoOrgRecord(
    country="United States",
    region="Virginia",
    city="Ashburn",
    lat=39.03,
    lon=-77.5,
    isp="Google LLC",
    org="Google Public DNS",
    as_number="AS15169 Google LLC",
)
CLOUDFLARE_RECORD = GeoOrgRecord(
    country="Australia",
    region="Queensland",
    city="Brisbane",
    lat=-27.47,
    lon=153.02,
    isp="Cloudflare, Inc",
    org="APNIC and Cloudflare DNS Resolver project",
    as_number="AS13335 Cloudflare, Inc.",
)
COMCAST_RECORD = GeoOrgRecord(
    country="United States",
    region="Pennsylvania",
    city="Philadelphia",
    lat=39.95,
    lon=-75.16,
    isp="Comcast Cable Communications",
    org="Comcast Cable Communications, LLC",
    as_number="AS7922 Comcast Cable Communications, LLC",
)

DEFAULT_RECORDS: Dict[str, GeoOrgRecord] = {
    GOOGLE_DNS: GOOGLE_RECORD,
    CLOUDFLARE_DNS: CLOUDFLARE_RECORD,
    COMCAST_HOST: COMCAST_RECORD,
}
DEFAULT_HOSTNAMES: Dict[str, str] = {
    GOOGLE_DNS: "dns.google",
    CLOUDFLARE_DNS: "one.one.one.one",
    COMCAST_HOST: "c-73-0-0-1.hsd1.pa.comcast.net",
}


class FakeGeoProvider:
    """In-process geolocation provider with a call log.

    Addresses missing from ``records`` fail with ``"private range"`` the way
    ip-api.com answers for RFC 1918 space. A value that is an exception
    instance is raised instead of returned.
    """

    def __init__(self, records: Optional[Dict[str, Any]] = None) -> None:
        self.records: Dict[str, Any] = dict(DEFAULT_RECORDS if records is None else records)
        self.calls: List[str] = []
        self.closed = False

    def lookup(self, ip_address: str) -> GeoOrgRecord:
        self.calls.append(ip_address)
        value = self.records.get(ip_address)
        if value is None:
            raise GeoLookupError("private range")
        if isinstance(value, BaseException):
            raise value
        return value

    def close(self) -> None:
        self.closed = True


class FakeDnsResolver:
    """Reverse DNS double returning canned PTR names."""

    def __init__(self, hostnames: Optional[Dict[str, str]] = None) -> None:
        self.hostnames = dict(DEFAULT_HOSTNAMES if hostnames is None else hostnames)
        self.calls: List[str] = []

    def reverse(self, ip_address: str) -> Optional[str]:
        self.calls.append(ip_address)
        return self.hostnames.get(ip_address)


class FailingStore:
    """Wrap a job store and refuse result writes past a row index.

    Args:
        inner: Store that receives every call that is not failed
        fail_from_row: Batches containing a row at or above this index raise
            ``OSError``; ``None`` disables failures
    """

    def __init__(self, inner: Any, fail_from_row: Optional[int] = None) -> None:
        self.inner = inner
        self.fail_from_row = fail_from_row
        self.append_calls: List[int] = []
        self.checkpoints: List[int] = []
        self.snapshots: List[Any] = []

    def append_result_batch(self, job_id: int, records: Sequence[ResultRecord]) -> int:
        self.append_calls.append(len(records))
        if self.fail_from_row is not None and any(r.row_index >= self.fail_from_row for r in records):
            raise OSError("disk I/O error")
        return self.inner.append_result_batch(job_id, records)

    def update_job(self, job_id: int, **fields: Any) -> Any:
        job = self.inner.update_job(job_id, **fields)
        if job is not None:
            self.checkpoints.append(job.checkpoint)
            self.snapshots.append(job)
        return job

    def __getattr__(self, name: str) -> Any:
        return getattr(self.inner, name)


def address_rows(count: int) -> List[List[str]]:
    """``count`` rows cycling through the addresses the fake provider knows."""
    cycle = (GOOGLE_DNS, CLOUDFLARE_DNS, COMCAST_HOST)
    return [[f"host-{index}", cycle[index % len(cycle)]] for index in range(count)]


def read_csv(path: Path) -> List[Dict[str, str]]:
    with path.open("r", encoding="utf-8", newline="") as handle:
        return list(csv.DictReader(handle))
