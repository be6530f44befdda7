"""Command line entry points for the IP enrichment service."""
