"""Rate limiting and retry utilities for external lookup services."""

from __future__ import annotations

import logging
import random
import threading
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

import requests

T = TypeVar('T')

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def _get_retry_after_seconds(response: requests.Response) -> Optional[float]:
    """Extract the server-requested delay in seconds.

    Supports both HTTP Retry-After header formats per RFC 7231 plus the
    ``X-Ttl`` header ip-api.com sends alongside HTTP 429:
    - Delay-seconds: "Retry-After: 30"
    - HTTP-date: "Retry-After: Wed, 21 Oct 2015 07:28:00 GMT"
    - Quota window: "X-Ttl: 42"

    Args:
        response: HTTP response object potentially containing the headers

    Returns:
        Number of seconds to wait before retrying, or None if no header is
        present or parsable. Returns 0.0 if the HTTP-date is in the past.

    Examples:
        >>> response = Mock(headers={"Retry-After": "30"})
        >>> _get_retry_after_seconds(response)
        30.0

        >>> response = Mock(headers={})
        >>> _get_retry_after_seconds(response) is None
        True
    """
    retry_after = response.headers.get("Retry-After") or response.headers.get("X-Ttl")
    if not retry_after:
        return None

    try:
        return max(0.0, float(retry_after))
    except ValueError:
        pass

    try:
        retry_datetime = parsedate_to_datetime(retry_after)
        if retry_datetime is None:
            return None
        delay_seconds = (retry_datetime - datetime.now(timezone.utc)).total_seconds()
        # Past dates mean the server clock is off; don't wait
        return max(0.0, delay_seconds)
    except (ValueError, TypeError, OverflowError, AttributeError):
        return None


class RateLimiter:
    """Token bucket rate limiter shared by every caller of one service.

    Acquisition is serialized under a lock so concurrent jobs running on
    worker threads draw from a single bucket. A provider-signalled quota
    exhaustion can pause the bucket for everyone via :meth:`pause`.
    """

    def __init__(self, rate: float, burst: int):
        """Initialize rate limiter.

        Args:
            rate: Tokens per second
            burst: Maximum burst capacity
        """
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        self.rate = rate
        self.burst = max(1, burst)
        self.tokens: float = float(self.burst)
        self.last_update = time.monotonic()
        self._blocked_until = 0.0
        self._lock = threading.Lock()

    def acquire_sync(self) -> None:
        """Acquire a token, sleeping while the bucket is empty or paused."""
        with self._lock:
            now = time.monotonic()
            if self._blocked_until > now:
                time.sleep(self._blocked_until - now)
                now = time.monotonic()

            elapsed = now - self.last_update
            self.tokens = min(self.burst, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                time.sleep(wait_time)
                self.tokens = 0
                self.last_update = time.monotonic()
            else:
                self.tokens -= 1

    def pause(self, seconds: float) -> None:
        """Block all acquirers for ``seconds`` (quota window exhausted)."""
        if seconds <= 0:
            return
        with self._lock:
            self._blocked_until = max(self._blocked_until, time.monotonic() + seconds)
            self.tokens = 0
        logger.warning(f"Rate limiter paused for {seconds:.1f}s")


def with_retries(
    max_retries: int = 3,
    backoff_base: float = 1.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    respect_retry_after: bool = True,
    max_backoff: float = 60.0,
) -> Callable:
    """Decorator for retry logic with exponential backoff and optional Retry-After support.

    Transport errors (connection failures, timeouts) and HTTP errors with a
    retryable status (429 and 5xx) are retried; any other HTTP error is
    raised immediately.

    Args:
        max_retries: Maximum number of retry attempts
        backoff_base: Base backoff time in seconds
        backoff_factor: Multiplier for exponential backoff
        jitter: Whether to add random jitter to backoff times
        respect_retry_after: If True, honors server-provided delay headers
        max_backoff: Upper bound for any single sleep

    Returns:
        Decorator function that wraps the target function with retry logic

    Examples:
        @with_retries(max_retries=2)
        def api_call():
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception: Optional[BaseException] = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except (requests.RequestException, ConnectionError, TimeoutError) as e:
                    last_exception = e

                    response = getattr(e, "response", None) if isinstance(e, requests.HTTPError) else None
                    if response is not None and response.status_code not in RETRYABLE_STATUS_CODES:
                        raise

                    if attempt == max_retries:
                        break

                    backoff = backoff_base * (backoff_factor**attempt)
                    should_apply_jitter = jitter

                    if response is not None and respect_retry_after:
                        retry_after_delay = _get_retry_after_seconds(response)
                        if retry_after_delay is not None:
                            # Explicit server guidance, no jitter
                            backoff = retry_after_delay
                            should_apply_jitter = False

                    if should_apply_jitter:
                        backoff *= 0.5 + random.random() * 0.5

                    backoff = min(backoff, max_backoff)
                    logger.debug(f"{func.__name__} attempt {attempt + 1} failed ({e}); retrying in {backoff:.2f}s")
                    time.sleep(backoff)

            if last_exception is not None:
                raise last_exception
            raise RuntimeError("Retry loop completed without exception")

        return wrapper

    return decorator


# Service-specific rate limits based on provider documentation
SERVICE_RATE_LIMITS = {
    "ip-api": {"rate": 0.75, "burst": 1},  # Free tier allows 45 requests/minute
    "dns": {"rate": 50.0, "burst": 50},
}

_shared_limiters: dict[str, RateLimiter] = {}
_shared_limiters_lock = threading.Lock()


def get_service_rate_limit(service: str) -> tuple[float, int]:
    """Get rate limit configuration for a service."""
    config = SERVICE_RATE_LIMITS.get(service, {"rate": 1.0, "burst": 2})
    return float(config["rate"]), int(config["burst"])


def shared_rate_limiter(service: str, rate: float | None = None, burst: int | None = None) -> RateLimiter:
    """Return the process-wide limiter for ``service``, creating it on first use.

    The first caller's ``rate``/``burst`` win; later callers receive the
    existing instance so every job draws from one bucket.
    """
    with _shared_limiters_lock:
        limiter = _shared_limiters.get(service)
        if limiter is None:
            default_rate, default_burst = get_service_rate_limit(service)
            limiter = RateLimiter(rate or default_rate, burst or default_burst)
            _shared_limiters[service] = limiter
        return limiter


def reset_shared_rate_limiters() -> None:
    """Drop all shared limiters (used by tests and after reconfiguration)."""
    with _shared_limiters_lock:
        _shared_limiters.clear()


__all__ = [
    "RateLimiter",
    "SERVICE_RATE_LIMITS",
    "get_service_rate_limit",
    "reset_shared_rate_limiters",
    "shared_rate_limiter",
    "with_retries",
]
