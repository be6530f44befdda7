"""Batch and single-address IP enrichment with durable checkpointing."""

from importlib.metadata import PackageNotFoundError, version

__all__ = ["get_version"]


def get_version() -> str:
    """Return the installed package version or a development marker."""
    try:
        return version("ipenrichment")
    except PackageNotFoundError:
        return "0.0.0-dev"
