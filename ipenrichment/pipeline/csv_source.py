"""Pull-based CSV row streaming for enrichment jobs."""

from __future__ import annotations

import bz2
import csv
import gzip
import io
import logging
from pathlib import Path
from typing import IO, Any, BinaryIO, Iterator, Optional, Union

from ..enrichment.models import Row

logger = logging.getLogger(__name__)

CsvSourceInput = Union[str, Path, BinaryIO]


def _resolve_opener(path: Path):
    if path.suffix == ".gz":
        return gzip.open
    if path.suffix == ".bz2":
        return bz2.open
    return open


class CsvRowSource:
    """Stream rows from a CSV file or binary stream.

    The source is a context manager; the header row is read on entry and
    exposed as :attr:`headers`. :meth:`rows` yields :class:`Row` objects in
    file order with 0-based indices and can only be consumed once.

    Text is decoded as UTF-8, tolerating a leading byte-order mark. Short
    rows are padded with empty strings and surplus cells are dropped.

    Example:
        >>> with CsvRowSource(Path("hosts.csv")) as source:
        ...     for row in source.rows():
        ...         print(row.index, row.data["ip"])
    """

    def __init__(self, source: CsvSourceInput) -> None:
        self.source = source
        self.headers: tuple[str, ...] = ()
        self._handle: Optional[IO[str]] = None
        self._owns_buffer = False
        self._reader: Optional[csv.DictReader] = None
        self._consumed = False

    @property
    def name(self) -> str:
        if isinstance(self.source, (str, Path)):
            return str(self.source)
        return str(getattr(self.source, "name", "<stream>"))

    def __enter__(self) -> "CsvRowSource":
        self.open()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def open(self) -> None:
        """Open the underlying file and read the header row.

        Raises:
            OSError: The file is missing or unreadable
            UnicodeDecodeError: The header is not valid UTF-8
        """
        if isinstance(self.source, (str, Path)):
            path = Path(self.source)
            opener = _resolve_opener(path)
            self._handle = opener(path, "rt", encoding="utf-8-sig", newline="")
            self._owns_buffer = True
        else:
            self._handle = io.TextIOWrapper(self.source, encoding="utf-8-sig", newline="")
            self._owns_buffer = False

        try:
            self._reader = csv.DictReader(self._handle, restval="")
            fieldnames = self._reader.fieldnames or []
        except BaseException:
            self.close()
            raise
        self.headers = tuple(name.strip() if isinstance(name, str) else "" for name in fieldnames)
        self._reader.fieldnames = list(self.headers)
        logger.debug(f"Opened CSV source {self.name} with {len(self.headers)} columns")

    def rows(self) -> Iterator[Row]:
        """Yield rows in stream order.

        Raises:
            RuntimeError: The source is not open or was already consumed
        """
        if self._reader is None:
            raise RuntimeError("CSV source is not open")
        if self._consumed:
            raise RuntimeError("CSV source can only be iterated once")
        self._consumed = True

        for index, record in enumerate(self._reader):
            # Surplus cells land under the ``None`` key
            data = {
                header: (value if isinstance(value, str) else "")
                for header, value in record.items()
                if header is not None
            }
            yield Row(index=index, data=data)

    def close(self) -> None:
        if self._handle is None:
            return
        if self._owns_buffer:
            self._handle.close()
        else:
            # Leave the caller's stream open
            wrapper = self._handle
            if isinstance(wrapper, io.TextIOWrapper):
                wrapper.detach()
        self._handle = None
        self._reader = None


def iter_rows(source: CsvSourceInput) -> Iterator[Row]:
    """Convenience generator yielding every row of ``source``."""
    with CsvRowSource(source) as csv_source:
        yield from csv_source.rows()


__all__ = ["CsvRowSource", "CsvSourceInput", "iter_rows"]
