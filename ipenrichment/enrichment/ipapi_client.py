"""ip-api.com client for geolocation and organization lookups.

JSON endpoint format:
    GET http://ip-api.com/json/8.8.8.8?fields=status,message,country,regionName,city,lat,lon,isp,org,as
    Response: {"status": "success", "country": "United States", "regionName": "Virginia",
               "city": "Ashburn", "lat": 39.03, "lon": -77.5, "isp": "Google LLC",
               "org": "Google Public DNS", "as": "AS15169 Google LLC"}

Failures are reported in-band: {"status": "fail", "message": "private range"}.

The free tier allows 45 requests per minute per source address. The
remaining quota is advertised in ``X-Rl`` and the seconds until the window
resets in ``X-Ttl``; when the quota hits zero the shared limiter is paused
for the whole process.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from ..errors import GeoLookupError
from .models import GeoOrgRecord
from .rate_limiting import RateLimiter, shared_rate_limiter, with_retries

logger = logging.getLogger(__name__)


class IpApiClient:
    """HTTP geolocation provider backed by ip-api.com.

    Usage:
        client = IpApiClient(timeout=10.0)
        record = client.lookup("8.8.8.8")
        print(record.country, record.isp)

    Raises from :meth:`lookup`:
        GeoLookupError: the provider answered but reported a failure
        requests.RequestException: transport failure after retries
    """

    FIELDS = "status,message,country,regionName,city,lat,lon,isp,org,as"
    SERVICE = "ip-api"

    def __init__(
        self,
        base_url: str = "http://ip-api.com",
        timeout: float = 10.0,
        retries: int = 2,
        rate_limiter: RateLimiter | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Service root; override for the pro endpoint or a mirror
            timeout: Per-request timeout in seconds
            retries: Transport-level retries per lookup
            rate_limiter: Limiter to draw from; defaults to the process-wide ip-api limiter
            session: Optional preconfigured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limiter = rate_limiter or shared_rate_limiter(self.SERVICE)
        self.session = session or requests.Session()
        self._request_with_retries = with_retries(max_retries=retries, backoff_base=1.0)(self._request)

        self.stats: dict[str, int] = {
            'lookups': 0,
            'success': 0,
            'provider_failures': 0,
            'rate_limited': 0,
            'errors': 0,
        }

    def lookup(self, ip_address: str) -> GeoOrgRecord:
        """Look up geolocation and organization data for one address."""
        self.stats['lookups'] += 1

        try:
            payload = self._request_with_retries(ip_address)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 429:
                self.stats['rate_limited'] += 1
                raise GeoLookupError("rate limited") from e
            self.stats['errors'] += 1
            raise
        except requests.RequestException:
            self.stats['errors'] += 1
            raise

        if not isinstance(payload, dict):
            self.stats['errors'] += 1
            raise GeoLookupError("invalid response")

        if payload.get("status") != "success":
            self.stats['provider_failures'] += 1
            message = payload.get("message") or "lookup failed"
            logger.debug(f"ip-api reported failure for {ip_address}: {message}")
            raise GeoLookupError(str(message))

        self.stats['success'] += 1
        return self._payload_to_record(payload)

    def _request(self, ip_address: str) -> Any:
        self.rate_limiter.acquire_sync()
        response = self.session.get(
            f"{self.base_url}/json/{ip_address}",
            params={"fields": self.FIELDS},
            timeout=self.timeout,
        )
        self._observe_quota(response)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"ip-api returned non-JSON body for {ip_address}: {e}")
            return None

    def _observe_quota(self, response: requests.Response) -> None:
        """Pause the shared limiter when the provider says the window is spent."""
        remaining = response.headers.get("X-Rl")
        reset_in = response.headers.get("X-Ttl")
        if remaining is None or reset_in is None:
            return
        try:
            if int(remaining) <= 0:
                self.rate_limiter.pause(float(reset_in))
        except ValueError:
            logger.debug(f"Ignoring malformed quota headers X-Rl={remaining!r} X-Ttl={reset_in!r}")

    @staticmethod
    def _payload_to_record(payload: dict[str, Any]) -> GeoOrgRecord:
        def text(key: str) -> str | None:
            value = payload.get(key)
            return str(value) if value not in (None, "") else None

        def number(key: str) -> float | None:
            value = payload.get(key)
            if isinstance(value, bool) or value is None:
                return None
            try:
                return float(value)
            except (TypeError, ValueError):
                return None

        return GeoOrgRecord(
            country=text("country"),
            region=text("regionName"),
            city=text("city"),
            lat=number("lat"),
            lon=number("lon"),
            isp=text("isp"),
            org=text("org"),
            as_number=text("as"),
        )

    def get_stats(self) -> dict[str, int]:
        """Get client statistics."""
        return dict(self.stats)

    def close(self) -> None:
        """Close the underlying session."""
        self.session.close()


__all__ = ["IpApiClient"]
