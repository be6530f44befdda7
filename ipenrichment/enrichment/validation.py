"""Syntactic validation of candidate IP address strings."""

from __future__ import annotations

import ipaddress
import re

_IPV4_PATTERN = re.compile(r"([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})")


def is_valid_ipv4(candidate: str) -> bool:
    """Return True for a dotted-quad IPv4 address with every octet in [0, 255]."""
    if not isinstance(candidate, str):
        return False
    match = _IPV4_PATTERN.fullmatch(candidate)
    if match is None:
        return False
    return all(int(octet) <= 255 for octet in match.groups())


def is_valid_ipv6(candidate: str) -> bool:
    """Return True for any textual IPv6 form accepted by :mod:`ipaddress`."""
    if not isinstance(candidate, str) or ":" not in candidate:
        return False
    try:
        ipaddress.IPv6Address(candidate)
    except ValueError:
        return False
    return True


def is_valid_address(candidate: str, *, allow_ipv6: bool = False) -> bool:
    """Classify ``candidate`` as a syntactically valid IP address.

    IPv4 dotted-quad is always accepted. IPv6 is opt-in; without it any
    non-IPv4 form is simply invalid. Never raises.

    Examples:
        >>> is_valid_address("8.8.8.8")
        True
        >>> is_valid_address("999.999.999.999")
        False
        >>> is_valid_address("2001:db8::1", allow_ipv6=True)
        True
    """
    if is_valid_ipv4(candidate):
        return True
    if allow_ipv6:
        return is_valid_ipv6(candidate)
    return False


__all__ = ["is_valid_address", "is_valid_ipv4", "is_valid_ipv6"]
