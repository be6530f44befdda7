"""Address validation, lookup backends and per-row enrichment."""

from __future__ import annotations

from .classification import DEFAULT_CONSUMER_ISP_KEYWORDS, ConsumerIspClassifier
from .models import EnrichmentOptions, EnrichmentOutcome, Row
from .validation import is_valid_address

__all__ = [
    "DEFAULT_CONSUMER_ISP_KEYWORDS",
    "ConsumerIspClassifier",
    "EnrichmentOptions",
    "EnrichmentOutcome",
    "LookupGateway",
    "RowEnricher",
    "Row",
    "is_valid_address",
]


def __getattr__(name: str) -> type:
    if name == "LookupGateway":
        from .gateway import LookupGateway as gateway

        return gateway
    if name == "RowEnricher":
        from .row_enricher import RowEnricher as enricher

        return enricher
    raise AttributeError(f"module 'ipenrichment.enrichment' has no attribute {name!r}")
