"""Tests for syntactic IP address validation."""

from __future__ import annotations

import pytest

from ipenrichment.enrichment.validation import is_valid_address, is_valid_ipv4, is_valid_ipv6


class TestIsValidAddress:
    """Test is_valid_address over IPv4 and opt-in IPv6."""

    @pytest.mark.parametrize("candidate", ["8.8.8.8", "0.0.0.0", "255.255.255.255", "10.0.0.1", "192.168.001.010"])
    def test_accepts_dotted_quad(self, candidate: str) -> None:
        assert is_valid_address(candidate) is True

    @pytest.mark.parametrize(
        "candidate",
        [
            "",
            "999.999.999.999",
            "256.1.1.1",
            "1.2.3",
            "1.2.3.4.5",
            "a.b.c.d",
            " 8.8.8.8",
            "8.8.8.8 ",
            "8.8.8.8/32",
            "1234.1.1.1",
            "1..2.3",
        ],
    )
    def test_rejects_malformed_ipv4(self, candidate: str) -> None:
        assert is_valid_address(candidate) is False

    def test_never_raises_on_non_strings(self) -> None:
        """Non-string input is simply invalid.

        Given: None and an integer
        When: is_valid_address is called
        Then: Returns False without raising
        """
        assert is_valid_address(None) is False  # type: ignore[arg-type]
        assert is_valid_address(12345) is False  # type: ignore[arg-type]

    def test_ipv6_is_opt_in(self) -> None:
        """IPv6 forms are rejected unless explicitly allowed.

        Given: A valid IPv6 address
        When: Validated with and without allow_ipv6
        Then: Only the opt-in call accepts it
        """
        assert is_valid_address("2001:db8::1") is False
        assert is_valid_address("2001:db8::1", allow_ipv6=True) is True

    def test_ipv4_still_accepted_with_ipv6_enabled(self) -> None:
        assert is_valid_address("1.1.1.1", allow_ipv6=True) is True


def test_ipv6_helper_rejects_garbage() -> None:
    assert is_valid_ipv6("not:an:address") is False
    assert is_valid_ipv6("8.8.8.8") is False
    assert is_valid_ipv6("::1") is True


def test_ipv4_helper_checks_every_octet() -> None:
    assert is_valid_ipv4("1.2.3.255") is True
    assert is_valid_ipv4("1.2.3.256") is False
