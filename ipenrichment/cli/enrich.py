"""Command line interface for IP enrichment jobs."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from tqdm import tqdm

from ..db import create_engine_from_settings
from ..enrichment.classification import ConsumerIspClassifier
from ..enrichment.gateway import create_lookup_gateway
from ..enrichment.models import EnrichmentOptions
from ..enrichment.row_enricher import RowEnricher
from ..errors import IpEnrichmentError
from ..pipeline import JobRunner, build_job_runner
from ..settings import EnrichmentSettings, load_enrichment_settings
from ..status_emitter import StatusEmitter
from ..store import JobSpec, JobStatus, SqlAlchemyJobStore
from ..utils.config import load_config_file
from .db_config import add_database_argument, resolve_database_settings

logger = logging.getLogger(__name__)


def _options_from_args(args: argparse.Namespace) -> EnrichmentOptions:
    return EnrichmentOptions(
        include_geolocation=not args.no_geolocation,
        include_domain=not args.no_domain,
        include_company=not args.no_company,
        include_network=not args.no_network,
    )


def _load_settings(args: argparse.Namespace) -> tuple[EnrichmentSettings, dict[str, Any]]:
    config = load_config_file(args.config)
    overrides = dict(config["enrichment"])
    if args.output_dir:
        overrides["output_dir"] = args.output_dir
    if args.status_dir:
        overrides["status_dir"] = args.status_dir
    if getattr(args, "batch_size", None):
        overrides["batch_size"] = args.batch_size
    if getattr(args, "geo_provider", None):
        overrides["geo_provider"] = args.geo_provider
    return load_enrichment_settings(config=overrides), config["database"]


def _open_runner(
    args: argparse.Namespace,
    settings: EnrichmentSettings,
    db_config: dict[str, Any],
    emitter: Optional[StatusEmitter] = None,
) -> JobRunner:
    db_settings = resolve_database_settings(args.db_url, db_config)
    engine = create_engine_from_settings(db_settings)
    store = SqlAlchemyJobStore(engine)
    return build_job_runner(
        settings,
        store,
        gateway=create_lookup_gateway(settings),
        telemetry_cb=emitter.record_metrics if emitter else None,
        checkpoint_cb=emitter.record_checkpoint if emitter else None,
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_job(args: argparse.Namespace) -> int:
    """Create a job for a CSV file and process it to a terminal state."""
    source = Path(args.csv)
    settings, db_config = _load_settings(args)
    emitter = StatusEmitter("enrichment", status_dir=settings.status_dir)
    options = _options_from_args(args)

    with _open_runner(args, settings, db_config, emitter) as runner:
        job = runner.create_job(
            JobSpec(
                file_name=source.name,
                ip_column_name=args.ip_column,
                original_file_name=args.name,
                include_geolocation=options.include_geolocation,
                include_domain=options.include_domain,
                include_company=options.include_company,
                include_network=options.include_network,
            )
        )
        emitter.record_job(job)

        with tqdm(desc=f"Enriching {source.name}", unit="rows", disable=not args.progress) as progress_bar:
            future = runner.start(job.id, source, progress_cb=lambda row, outcome: progress_bar.update(1))
            try:
                final = future.result()
            except KeyboardInterrupt:
                print("Interrupted; cancelling job...", file=sys.stderr)
                runner.cancel(job.id)
                final = future.result()

        emitter.record_job(final)

    if final.status != JobStatus.COMPLETED:
        print(f"Job {final.id} failed at checkpoint {final.checkpoint}: {final.error}", file=sys.stderr)
        return 1

    print(
        f"Job {final.id} complete: rows={final.processed_rows} enriched={final.successful_rows} "
        f"failed={final.failed_rows} consumer_isp={final.filtered_rows}"
    )
    print(f"Enriched CSV: {final.output_path}")
    print(f"Filtered CSV: {final.filtered_output_path}")
    return 0


def lookup_address(args: argparse.Namespace) -> int:
    """Enrich a single address and print the outcome as JSON."""
    settings, _ = _load_settings(args)
    gateway = create_lookup_gateway(settings)
    try:
        enricher = RowEnricher(gateway, ConsumerIspClassifier(settings.consumer_isp_keywords))
        outcome = enricher.enrich({"ip": args.ip}, "ip", _options_from_args(args))
    finally:
        gateway.close()

    _print_json(outcome.to_dict())
    return 0 if outcome.success else 1


def show_status(args: argparse.Namespace) -> int:
    settings, db_config = _load_settings(args)
    with _open_runner(args, settings, db_config) as runner:
        job = runner.get_status(args.job_id)
    _print_json(job.to_dict())
    return 0


def show_results(args: argparse.Namespace) -> int:
    """Print a page of persisted results, oldest first."""
    settings, db_config = _load_settings(args)
    with _open_runner(args, settings, db_config) as runner:
        page = runner.recent_results(args.job_id, since=args.since, limit=args.limit)
    _print_json(
        {
            "job_id": args.job_id,
            "next_index": page.next_index,
            "results": [
                {
                    "row_index": record.row_index,
                    "original_data": record.original_data,
                    "enrichment": record.outcome.to_dict(),
                }
                for record in page.results
            ],
        }
    )
    return 0


def export_results(args: argparse.Namespace) -> int:
    """Write a job's artifact (or its partial results) to a file or stdout."""
    settings, db_config = _load_settings(args)
    with _open_runner(args, settings, db_config) as runner:
        if args.partial:
            content = runner.partial_results_csv(args.job_id)
        else:
            content = runner.artifact_path(args.job_id, filtered=args.filtered).read_text(encoding="utf-8")

    if args.output:
        Path(args.output).write_text(content, encoding="utf-8", newline="")
        print(f"Wrote {args.output}")
    else:
        sys.stdout.write(content)
    return 0


def list_jobs(args: argparse.Namespace) -> int:
    settings, db_config = _load_settings(args)
    with _open_runner(args, settings, db_config) as runner:
        jobs = runner.list_jobs()

    if not jobs:
        print("No jobs")
        return 0
    for job in jobs:
        total = job.total_rows if job.total_rows is not None else "?"
        print(f"{job.id:>6}  {job.status.value:<10}  {job.processed_rows}/{total}  {job.display_name}")
    return 0


def delete_job(args: argparse.Namespace) -> int:
    settings, db_config = _load_settings(args)
    with _open_runner(args, settings, db_config) as runner:
        deleted = runner.delete_job(args.job_id)
    if not deleted:
        print(f"Job {args.job_id} not found", file=sys.stderr)
        return 1
    print(f"Deleted job {args.job_id}")
    return 0


def _add_option_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--no-geolocation", action="store_true", help="Skip country/region/city/coordinates")
    parser.add_argument("--no-domain", action="store_true", help="Skip reverse DNS lookups")
    parser.add_argument("--no-company", action="store_true", help="Skip company name")
    parser.add_argument("--no-network", action="store_true", help="Skip ISP and ASN")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Enrich IP addresses in CSV files with geolocation and network data")
    add_database_argument(parser)
    parser.add_argument("--config", help="Path to ipenrich.toml (defaults to config/ipenrich.toml or ./ipenrich.toml)")
    parser.add_argument("--output-dir", help="Directory for enriched CSV artifacts")
    parser.add_argument("--status-dir", help="Directory for status JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Enrich every row of a CSV file")
    run_parser.add_argument("csv", help="CSV file to enrich (plain, .gz or .bz2)")
    run_parser.add_argument("--ip-column", required=True, help="Header of the column holding addresses")
    run_parser.add_argument("--name", help="Display name recorded on the job")
    run_parser.add_argument("--batch-size", type=int, help="Rows per checkpoint batch")
    run_parser.add_argument("--geo-provider", choices=("ip-api", "maxmind"), help="Geolocation backend")
    run_parser.add_argument("--progress", action="store_true", help="Show a progress bar")
    _add_option_flags(run_parser)
    run_parser.set_defaults(handler=run_job)

    lookup_parser = subparsers.add_parser("lookup", help="Enrich a single address")
    lookup_parser.add_argument("ip", help="Address to enrich")
    lookup_parser.add_argument("--geo-provider", choices=("ip-api", "maxmind"), help="Geolocation backend")
    _add_option_flags(lookup_parser)
    lookup_parser.set_defaults(handler=lookup_address)

    status_parser = subparsers.add_parser("status", help="Show a job's progress and counters")
    status_parser.add_argument("job_id", type=int)
    status_parser.set_defaults(handler=show_status)

    results_parser = subparsers.add_parser("results", help="Show persisted results")
    results_parser.add_argument("job_id", type=int)
    results_parser.add_argument("--since", type=int, default=0, help="First row index to return")
    results_parser.add_argument("--limit", type=int, default=50, help="Maximum rows to return")
    results_parser.set_defaults(handler=show_results)

    export_parser = subparsers.add_parser("export", help="Export a job's enriched CSV")
    export_group = export_parser.add_mutually_exclusive_group()
    export_group.add_argument("--filtered", action="store_true", help="Export the consumer-ISP filtered artifact")
    export_group.add_argument("--partial", action="store_true", help="Export whatever has been persisted so far")
    export_parser.add_argument("job_id", type=int)
    export_parser.add_argument("-o", "--output", help="Destination file (defaults to stdout)")
    export_parser.set_defaults(handler=export_results)

    jobs_parser = subparsers.add_parser("jobs", help="List jobs, newest first")
    jobs_parser.set_defaults(handler=list_jobs)

    delete_parser = subparsers.add_parser("delete", help="Delete a job, its results and artifacts")
    delete_parser.add_argument("job_id", type=int)
    delete_parser.set_defaults(handler=delete_job)

    return parser


def main(argv: Iterable[str] | None = None) -> int:
    """CLI entry point for the ``ipenrich`` command."""
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not getattr(args, "command", None):
        parser.print_help()
        return 1

    try:
        return int(args.handler(args))
    except IpEnrichmentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except SQLAlchemyError as e:
        logger.debug("Database error", exc_info=True)
        print(f"Database error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
