"""Reverse DNS (PTR) resolution for enriched addresses."""

from __future__ import annotations

import logging
from typing import Dict, Optional

import dns.exception
import dns.resolver

from .rate_limiting import RateLimiter, shared_rate_limiter

logger = logging.getLogger(__name__)


class ReverseDnsResolver:
    """Resolve an address to its first PTR hostname.

    Every failure (NXDOMAIN, no answer, timeout, no nameservers) yields
    ``None``; a missing hostname never fails the row it belongs to.

    Usage:
        resolver = ReverseDnsResolver(timeout=5.0)
        resolver.reverse("8.8.8.8")  # "dns.google"
    """

    SERVICE = "dns"

    def __init__(
        self,
        timeout: float = 5.0,
        resolver: dns.resolver.Resolver | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            timeout: Total seconds allowed per reverse lookup
            resolver: Optional preconfigured dnspython resolver
            rate_limiter: Limiter to draw from; defaults to the shared dns limiter
        """
        self.timeout = timeout
        self._resolver = resolver
        self.rate_limiter = rate_limiter or shared_rate_limiter(self.SERVICE)
        self.stats: Dict[str, int] = {
            'lookups': 0,
            'resolved': 0,
            'nxdomain': 0,
            'no_answer': 0,
            'timeouts': 0,
            'errors': 0,
        }

    @property
    def resolver(self) -> dns.resolver.Resolver:
        """System resolver, created on first use so construction never reads resolv.conf."""
        if self._resolver is None:
            self._resolver = dns.resolver.Resolver()
        return self._resolver

    def reverse(self, ip_address: str) -> Optional[str]:
        """Return the first PTR hostname for ``ip_address`` without a trailing dot."""
        self.stats['lookups'] += 1
        self.rate_limiter.acquire_sync()

        try:
            answers = self.resolver.resolve_address(ip_address, lifetime=self.timeout)
        except dns.resolver.NXDOMAIN:
            logger.debug(f"No PTR record for {ip_address}")
            self.stats['nxdomain'] += 1
            return None
        except dns.resolver.NoAnswer:
            logger.debug(f"Empty PTR answer for {ip_address}")
            self.stats['no_answer'] += 1
            return None
        except dns.exception.Timeout:
            logger.debug(f"PTR lookup timed out for {ip_address}")
            self.stats['timeouts'] += 1
            return None
        except (dns.exception.DNSException, ValueError) as e:
            logger.debug(f"PTR lookup failed for {ip_address}: {e}")
            self.stats['errors'] += 1
            return None

        for rdata in answers:
            hostname = rdata.target.to_text(omit_final_dot=True)
            if hostname:
                self.stats['resolved'] += 1
                return hostname

        self.stats['no_answer'] += 1
        return None

    def get_stats(self) -> Dict[str, int]:
        """Get resolver statistics."""
        return dict(self.stats)


__all__ = ['ReverseDnsResolver']
