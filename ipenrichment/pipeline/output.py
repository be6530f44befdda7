"""CSV rendering of enriched rows and the job output artifacts."""

from __future__ import annotations

import csv
import io
import logging
import re
from pathlib import Path
from typing import IO, Any, Iterable, Mapping, Optional, Sequence

from ..enrichment.models import EnrichmentOptions, EnrichmentOutcome
from ..store.base import ResultRecord

logger = logging.getLogger(__name__)

GEOLOCATION_COLUMNS = ("country", "city", "region", "latitude", "longitude")
DOMAIN_COLUMNS = ("domain",)
COMPANY_COLUMNS = ("company", "isp_filtered")
NETWORK_COLUMNS = ("isp", "asn")
STATUS_COLUMNS = ("enrichment_success", "enrichment_error")

_UNSAFE_STEM_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def output_columns(headers: Sequence[str], options: EnrichmentOptions) -> list[str]:
    """Original columns followed by the enrichment columns the flags enable."""
    columns = list(headers)
    if options.include_geolocation:
        columns.extend(GEOLOCATION_COLUMNS)
    if options.include_domain:
        columns.extend(DOMAIN_COLUMNS)
    if options.include_company:
        columns.extend(COMPANY_COLUMNS)
    if options.include_network:
        columns.extend(NETWORK_COLUMNS)
    columns.extend(STATUS_COLUMNS)
    return columns


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def render_row(
    original: Mapping[str, str],
    outcome: EnrichmentOutcome,
    headers: Sequence[str],
    options: EnrichmentOptions,
) -> list[str]:
    """Render one output row; enrichment cells stay empty on failed rows."""
    cells = [_cell(original.get(header)) for header in headers]

    if options.include_geolocation:
        geo = outcome.geolocation
        if geo is None:
            cells.extend([""] * len(GEOLOCATION_COLUMNS))
        else:
            cells.extend(_cell(value) for value in (geo.country, geo.city, geo.region, geo.latitude, geo.longitude))
    if options.include_domain:
        cells.append(_cell(outcome.domain.name) if outcome.domain else "")
    if options.include_company:
        if outcome.company is None:
            cells.extend(["", ""])
        else:
            cells.append(_cell(outcome.company.name))
            cells.append("yes" if outcome.company.isp_filtered else "no")
    if options.include_network:
        network = outcome.network
        cells.extend([_cell(network.isp), _cell(network.asn)] if network else ["", ""])

    cells.append("true" if outcome.success else "false")
    cells.append(_cell(outcome.error))
    return cells


def render_records_csv(
    records: Iterable[ResultRecord],
    headers: Sequence[str],
    options: EnrichmentOptions,
) -> str:
    """Render persisted records as CSV text using the artifact layout."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(output_columns(headers, options))
    for record in records:
        writer.writerow(render_row(record.original_data, record.outcome, headers, options))
    return buffer.getvalue()


def artifact_stem(file_name: str, job_id: int) -> str:
    """File-system safe stem for a job's artifacts."""
    stem = _UNSAFE_STEM_CHARS.sub("_", Path(file_name).name.split(".")[0]) or "upload"
    return f"{stem}_{job_id}"


class ArtifactWriter:
    """Incrementally write the enriched and filtered CSV artifacts.

    Rows go to ``.partial`` files while the job runs. :meth:`commit` renames
    them to their final names; :meth:`abort` removes them so a failed or
    cancelled job never leaves a half-written artifact behind.

    The filtered artifact omits every row classified as a consumer ISP.
    """

    def __init__(
        self,
        output_dir: Path,
        stem: str,
        headers: Sequence[str],
        options: EnrichmentOptions,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.headers = tuple(headers)
        self.options = options
        self.enriched_path = self.output_dir / f"{stem}_enriched.csv"
        self.filtered_path = self.output_dir / f"{stem}_filtered.csv"
        self._enriched_tmp = self.enriched_path.with_name(self.enriched_path.name + ".partial")
        self._filtered_tmp = self.filtered_path.with_name(self.filtered_path.name + ".partial")
        self._enriched_handle: Optional[IO[str]] = None
        self._filtered_handle: Optional[IO[str]] = None
        self._enriched_writer: Any = None
        self._filtered_writer: Any = None
        self.rows_written = 0
        self.rows_filtered_out = 0

    def open(self) -> "ArtifactWriter":
        self.output_dir.mkdir(parents=True, exist_ok=True)
        columns = output_columns(self.headers, self.options)
        self._enriched_handle = self._enriched_tmp.open("w", encoding="utf-8", newline="")
        self._filtered_handle = self._filtered_tmp.open("w", encoding="utf-8", newline="")
        self._enriched_writer = csv.writer(self._enriched_handle)
        self._filtered_writer = csv.writer(self._filtered_handle)
        self._enriched_writer.writerow(columns)
        self._filtered_writer.writerow(columns)
        return self

    def write(self, original: Mapping[str, str], outcome: EnrichmentOutcome) -> None:
        if self._enriched_writer is None:
            raise RuntimeError("Artifact writer is not open")
        cells = render_row(original, outcome, self.headers, self.options)
        self._enriched_writer.writerow(cells)
        self.rows_written += 1
        if outcome.isp_filtered:
            self.rows_filtered_out += 1
        else:
            self._filtered_writer.writerow(cells)

    def _close_handles(self) -> None:
        for handle in (self._enriched_handle, self._filtered_handle):
            if handle is not None:
                handle.close()
        self._enriched_handle = self._filtered_handle = None
        self._enriched_writer = self._filtered_writer = None

    def commit(self) -> tuple[Path, Path]:
        """Finalize both artifacts and return ``(enriched_path, filtered_path)``."""
        self._close_handles()
        self._enriched_tmp.replace(self.enriched_path)
        self._filtered_tmp.replace(self.filtered_path)
        logger.info(
            f"Wrote {self.rows_written} rows to {self.enriched_path} "
            f"({self.rows_filtered_out} consumer ISP rows excluded from {self.filtered_path.name})"
        )
        return self.enriched_path, self.filtered_path

    def abort(self) -> None:
        """Discard partially written artifacts."""
        self._close_handles()
        for path in (self._enriched_tmp, self._filtered_tmp):
            path.unlink(missing_ok=True)


__all__ = [
    "ArtifactWriter",
    "artifact_stem",
    "output_columns",
    "render_records_csv",
    "render_row",
]
