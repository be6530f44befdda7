"""Database utilities for the enrichment job store."""

from .base import Base
from .engine import create_engine_from_settings, create_session_maker, is_postgresql
from .migrations import CURRENT_SCHEMA_VERSION, apply_migrations
from .models import EnrichmentJobModel, EnrichmentResultModel, SchemaState

__all__ = [
    "Base",
    "create_engine_from_settings",
    "create_session_maker",
    "is_postgresql",
    "apply_migrations",
    "CURRENT_SCHEMA_VERSION",
    "EnrichmentJobModel",
    "EnrichmentResultModel",
    "SchemaState",
]
