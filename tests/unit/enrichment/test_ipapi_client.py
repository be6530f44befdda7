"""Unit tests for the ip-api.com geolocation client."""

from __future__ import annotations

from typing import Any, Dict, Optional
from unittest.mock import Mock

import pytest
import requests

from ipenrichment.enrichment.ipapi_client import IpApiClient
from ipenrichment.enrichment.rate_limiting import RateLimiter
from ipenrichment.errors import GeoLookupError

SUCCESS_PAYLOAD = {
    "status": "success",
    "country": "United States",
    "regionName": "Virginia",
    "city": "Ashburn",
    "lat": 39.03,
    "lon": -77.5,
    "isp": "Google LLC",
    "org": "Google Public DNS",
    "as": "AS15169 Google LLC",
}


def _response(
    payload: Any = None,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
    json_error: bool = False,
) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    if json_error:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error", response=response)
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def limiter() -> Mock:
    return Mock(spec=RateLimiter)


@pytest.fixture
def session() -> Mock:
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session: Mock, limiter: Mock) -> IpApiClient:
    return IpApiClient(timeout=3.0, retries=0, rate_limiter=limiter, session=session)


class TestIpApiLookup:
    """Test IpApiClient.lookup."""

    def test_success_maps_every_field(self, client: IpApiClient, session: Mock, limiter: Mock) -> None:
        """A success payload becomes a full GeoOrgRecord.

        Given: ip-api answers with status success
        When: lookup is called
        Then: All fields are mapped and one token is drawn
        """
        session.get.return_value = _response(SUCCESS_PAYLOAD)

        record = client.lookup("8.8.8.8")

        assert record.country == "United States"
        assert record.region == "Virginia"
        assert record.city == "Ashburn"
        assert record.lat == 39.03
        assert record.lon == -77.5
        assert record.isp == "Google LLC"
        assert record.org == "Google Public DNS"
        assert record.as_number == "AS15169 Google LLC"
        limiter.acquire_sync.assert_called_once()
        session.get.assert_called_once_with(
            "http://ip-api.com/json/8.8.8.8",
            params={"fields": IpApiClient.FIELDS},
            timeout=3.0,
        )
        assert client.get_stats()["success"] == 1

    def test_empty_strings_become_none(self, client: IpApiClient, session: Mock) -> None:
        session.get.return_value = _response({**SUCCESS_PAYLOAD, "city": "", "org": ""})
        record = client.lookup("8.8.8.8")
        assert record.city is None
        assert record.org is None

    def test_provider_failure_carries_message(self, client: IpApiClient, session: Mock) -> None:
        session.get.return_value = _response({"status": "fail", "message": "private range"})

        with pytest.raises(GeoLookupError) as exc_info:
            client.lookup("10.0.0.1")

        assert exc_info.value.reason == "private range"
        assert client.get_stats()["provider_failures"] == 1

    def test_http_429_is_rate_limited(self, client: IpApiClient, session: Mock) -> None:
        session.get.return_value = _response(status_code=429)

        with pytest.raises(GeoLookupError) as exc_info:
            client.lookup("8.8.8.8")

        assert exc_info.value.reason == "rate limited"
        assert client.get_stats()["rate_limited"] == 1

    def test_other_http_errors_propagate(self, client: IpApiClient, session: Mock) -> None:
        session.get.return_value = _response(status_code=503)
        with pytest.raises(requests.HTTPError):
            client.lookup("8.8.8.8")

    def test_transport_error_propagates(self, client: IpApiClient, session: Mock) -> None:
        session.get.side_effect = requests.ConnectionError("connection refused")
        with pytest.raises(requests.ConnectionError):
            client.lookup("8.8.8.8")
        assert client.get_stats()["errors"] == 1

    def test_non_json_body_is_invalid_response(self, client: IpApiClient, session: Mock) -> None:
        session.get.return_value = _response(json_error=True)
        with pytest.raises(GeoLookupError) as exc_info:
            client.lookup("8.8.8.8")
        assert exc_info.value.reason == "invalid response"

    def test_exhausted_quota_pauses_limiter(self, client: IpApiClient, session: Mock, limiter: Mock) -> None:
        """Quota headers pause the shared bucket.

        Given: A response with X-Rl 0 and X-Ttl 42
        When: lookup is called
        Then: The limiter is paused for 42 seconds
        """
        session.get.return_value = _response(SUCCESS_PAYLOAD, headers={"X-Rl": "0", "X-Ttl": "42"})
        client.lookup("8.8.8.8")
        limiter.pause.assert_called_once_with(42.0)

    def test_remaining_quota_does_not_pause(self, client: IpApiClient, session: Mock, limiter: Mock) -> None:
        session.get.return_value = _response(SUCCESS_PAYLOAD, headers={"X-Rl": "44", "X-Ttl": "60"})
        client.lookup("8.8.8.8")
        limiter.pause.assert_not_called()

    def test_base_url_trailing_slash(self, session: Mock, limiter: Mock) -> None:
        client = IpApiClient(base_url="https://pro.ip-api.com/", retries=0, rate_limiter=limiter, session=session)
        session.get.return_value = _response(SUCCESS_PAYLOAD)
        client.lookup("1.1.1.1")
        assert session.get.call_args[0][0] == "https://pro.ip-api.com/json/1.1.1.1"

    def test_close_closes_session(self, client: IpApiClient, session: Mock) -> None:
        client.close()
        session.close.assert_called_once()
