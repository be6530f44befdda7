"""Batch enrichment pipeline and the job runner built on it."""

from .checkpoint import BatchCheckpoint, BatchCheckpointer, FlushEvent
from .csv_source import CsvRowSource, iter_rows
from .pipeline import CANCELLED_ERROR, EnrichmentPipeline, PipelineConfig, PipelineMetrics
from .runner import JobRunner, RecentResults, build_job_runner

__all__ = [
    "BatchCheckpoint",
    "BatchCheckpointer",
    "CANCELLED_ERROR",
    "CsvRowSource",
    "EnrichmentPipeline",
    "FlushEvent",
    "JobRunner",
    "PipelineConfig",
    "PipelineMetrics",
    "RecentResults",
    "build_job_runner",
    "iter_rows",
]
