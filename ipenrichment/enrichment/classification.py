"""Consumer ISP classifier based on organization name fragments.

Rows whose ISP or organization name contains one of the configured
residential-provider fragments are flagged so they can be removed from the
filtered output artifact, leaving business and institutional addresses.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

# Lowercase substrings, matched case-insensitively anywhere in the name
DEFAULT_CONSUMER_ISP_KEYWORDS: tuple[str, ...] = (
    "telstra",
    "comcast",
    "cox",
    "verizon",
    "bt",
    "at&t",
    "spectrum",
    "charter",
    "time warner",
    "virgin media",
    "sprint",
    "t-mobile",
    "deutsche telekom",
    "vodafone",
    "orange",
    "rogers",
    "bell",
    "shaw",
    "telecom",
)


class ConsumerIspClassifier:
    """Decide whether an ISP/organization pair looks like a consumer ISP.

    The keyword set is injected so it can be tuned without touching the
    matching logic. Matching is a single compiled union of the escaped
    keywords; any hit short-circuits to True.

    Thread Safety:
        This class is thread-safe (no mutable state after init).

    Example:
        >>> classifier = ConsumerIspClassifier()
        >>> classifier.is_common_consumer_isp("Comcast Cable Communications", None)
        True
        >>> classifier.is_common_consumer_isp("Google LLC", "Google Public DNS")
        False
    """

    def __init__(self, keywords: Iterable[str] | None = None) -> None:
        """Compile the keyword union.

        Args:
            keywords: Name fragments to match; defaults to ``DEFAULT_CONSUMER_ISP_KEYWORDS``
        """
        source = DEFAULT_CONSUMER_ISP_KEYWORDS if keywords is None else keywords
        # Preserve configured order while dropping blanks and duplicates
        self.keywords: tuple[str, ...] = tuple(dict.fromkeys(k.strip().lower() for k in source if k and k.strip()))
        if self.keywords:
            self._pattern: Optional[re.Pattern[str]] = re.compile(
                "|".join(re.escape(keyword) for keyword in self.keywords), re.IGNORECASE
            )
        else:
            logger.warning("Consumer ISP classifier configured with no keywords; nothing will be filtered")
            self._pattern = None

    def is_common_consumer_isp(self, isp_name: Optional[str] = None, org_name: Optional[str] = None) -> bool:
        """Return True if either name contains a configured consumer ISP fragment."""
        if self._pattern is None:
            return False
        for name in (isp_name, org_name):
            if isinstance(name, str) and name and self._pattern.search(name):
                return True
        return False

    __call__ = is_common_consumer_isp


__all__ = ["ConsumerIspClassifier", "DEFAULT_CONSUMER_ISP_KEYWORDS"]
