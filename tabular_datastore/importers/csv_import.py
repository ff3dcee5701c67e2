"""Import services loading localized delimited files into SQLite tables.

This module provides the ImportServiceFactory, which picks an import service
for a resource by its MIME type, and the CsvImportService family that reads
a localized file in batches into a DatabaseTable while recording progress in
the job store.
"""

from __future__ import annotations

import hashlib
import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, Optional

import pyarrow as pa
from pyarrow import csv as pa_csv

from ..core.listing import IMPORTER_NAMESPACE
from ..core.resource import Resource
from ..core.results import JobResult, JobStatus
from ..core.state import JobStore
from ..utils.logging import ResourceLogAdapter, get_logger
from .database_table import DatabaseTable

# Default configuration
DEFAULT_BATCH_SIZE = 1000
MAX_COLUMN_NAME_LENGTH = 64
TABLE_PREFIX = "datastore_"


def sanitize_headers(headers: list[str]) -> dict[str, dict[str, Any]]:
    """Turn a header row into schema fields.

    Column names are lowercased, every character outside [a-z0-9_] becomes
    "_", names are capped at 64 characters and made unique. The original
    header is kept as the field description.

    Args:
        headers: Header row of the file.

    Returns:
        Column name to {"type": "text", "description": <header>} in header order.

    Examples:
        >>> list(sanitize_headers(["First Name", "Age (years)"]))
        ['first_name', 'age_years']
    """
    fields: dict[str, dict[str, Any]] = {}
    reserved = {"record_number"}

    for position, header in enumerate(headers, start=1):
        original = header.strip()
        name = re.sub(r"[^a-z0-9_]", "_", original.lower())
        name = re.sub(r"_+", "_", name).strip("_") or f"column_{position}"
        if name[0].isdigit():
            name = f"_{name}"
        name = name[:MAX_COLUMN_NAME_LENGTH]

        candidate = name
        suffix = 2
        while candidate in fields or candidate in reserved:
            tail = f"_{suffix}"
            candidate = name[: MAX_COLUMN_NAME_LENGTH - len(tail)] + tail
            suffix += 1

        field: dict[str, Any] = {"type": "text"}
        if original:
            field["description"] = original
        fields[candidate] = field

    return fields


class CsvImportService:
    """Imports one localized comma-separated file into a DatabaseTable.

    The import is skipped when the job is already DONE and the table exists,
    so repeated imports of one resource do not reload it.

    Attributes:
        label: Key of this collaborator's results in import responses, and
            its job store namespace.
        delimiter: Field delimiter of the file.
    """

    label = IMPORTER_NAMESPACE
    delimiter = ","

    def __init__(
        self,
        resource: Resource,
        table: DatabaseTable,
        job_store: JobStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize the import service.

        Args:
            resource: Localized resource; file_path is the local copy.
            table: Storage the rows are loaded into.
            job_store: Job store receiving the import job.
            batch_size: Rows inserted per transaction.
            logger: Optional logger instance. If None, uses default logger.
        """
        self.resource = resource
        self._table = table
        self._job_store = job_store
        self.batch_size = batch_size
        self._logger = ResourceLogAdapter(
            logger or get_logger("importers.csv"), resource.unique_identifier
        )

    @property
    def key(self) -> str:
        return self.resource.unique_identifier

    def import_data(self) -> None:
        """Load the file into the table. Blocking.

        Failures are recorded as an ERROR job result rather than raised.
        """
        previous = self.get_result()
        if previous.status == JobStatus.DONE and self._table.exists():
            self._logger.debug("Already imported, skipping")
            return

        self._save(JobResult(JobStatus.IN_PROGRESS, data={"rows_imported": 0, "percent_done": 0}))
        self._logger.info(f"Importing {self.resource.file_path} into {self._table.table_name}")

        try:
            rows_imported, rows_skipped = self._load()
        except (pa.ArrowException, OSError, ValueError, sqlite3.Error) as e:
            self._logger.error(f"Import failed: {e}")
            self._save(JobResult(JobStatus.ERROR, message=str(e)))
            return

        self._save(
            JobResult(
                JobStatus.DONE,
                data={
                    "rows_imported": rows_imported,
                    "rows_skipped": rows_skipped,
                    "percent_done": 100,
                },
            )
        )
        self._logger.info(f"Imported {rows_imported:,} row(s)")

    def get_result(self) -> JobResult:
        return self._job_store.get_result(self.label, self.key) or JobResult(JobStatus.WAITING)

    def get_storage(self) -> DatabaseTable:
        return self._table

    def _load(self) -> tuple[int, int]:
        path = Path(self.resource.file_path)
        if path.stat().st_size == 0:
            raise ValueError(f"No header row found in {path.name}")

        headers = self._open(path, lambda row: "skip").schema.names
        if not any(h.strip() for h in headers):
            raise ValueError(f"No header row found in {path.name}")

        fields = sanitize_headers(headers)
        self._table.create(fields)
        total_rows = _count_data_lines(path)

        skipped: list[int] = []

        def skip_invalid_row(row: Any) -> str:
            skipped.append(row.number)
            self._logger.warning(
                f"Skipping row {row.number}: expected {row.expected_columns} "
                f"column(s), got {row.actual_columns}"
            )
            return "skip"

        # Every column stays text
        column_types = {name: pa.string() for name in headers}
        reader = self._open(path, skip_invalid_row, column_types)

        rows_imported = 0
        for record_batch in reader:
            for offset in range(0, record_batch.num_rows, self.batch_size):
                chunk = record_batch.slice(offset, self.batch_size)
                rows = list(zip(*(column.to_pylist() for column in chunk.columns)))
                rows_imported += self._table.insert_rows(rows)
                self._report_progress(rows_imported, total_rows)

        return rows_imported, len(skipped)

    def _open(
        self,
        path: Path,
        invalid_row_handler: Any,
        column_types: Optional[dict[str, pa.DataType]] = None,
    ) -> pa_csv.CSVStreamingReader:
        return pa_csv.open_csv(
            str(path),
            read_options=pa_csv.ReadOptions(use_threads=False),
            parse_options=pa_csv.ParseOptions(
                delimiter=self.delimiter,
                invalid_row_handler=invalid_row_handler,
            ),
            convert_options=pa_csv.ConvertOptions(column_types=column_types or {}),
        )

    def _report_progress(self, rows_imported: int, total_rows: int) -> None:
        percent = int(rows_imported * 100 / total_rows) if total_rows else 0
        self._save(
            JobResult(
                JobStatus.IN_PROGRESS,
                data={"rows_imported": rows_imported, "percent_done": min(percent, 99)},
            )
        )

    def _save(self, result: JobResult) -> None:
        self._job_store.save(self.label, self.key, result)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(resource={self.key!r}, table={self._table.table_name!r})"


class TsvImportService(CsvImportService):
    """Imports tab-separated files."""

    delimiter = "\t"


class UnsupportedImportService(CsvImportService):
    """Records an ERROR result for resources of an unsupported type."""

    def import_data(self) -> None:
        message = f"Unsupported file type: {self.resource.mime_type}"
        self._logger.error(message)
        self._save(JobResult(JobStatus.ERROR, message=message))


IMPORT_SERVICES: dict[str, type[CsvImportService]] = {
    "text/csv": CsvImportService,
    "application/csv": CsvImportService,
    "text/tab-separated-values": TsvImportService,
}


class ImportServiceFactory:
    """Builds import services scoped to a resource.

    Attributes:
        db_path: SQLite database holding imported tables.
    """

    def __init__(
        self,
        db_path: Path,
        job_store: JobStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.db_path = Path(db_path)
        self._job_store = job_store
        self.batch_size = batch_size
        self._logger = logger

    def get_instance(self, unique_identifier: str, *, resource: Resource) -> CsvImportService:
        """Return the import service for a resource, chosen by its MIME type."""
        service_class = IMPORT_SERVICES.get(resource.mime_type, UnsupportedImportService)
        table = DatabaseTable(self.db_path, table_name_for(unique_identifier))
        return service_class(
            resource,
            table,
            self._job_store,
            batch_size=self.batch_size,
            logger=self._logger,
        )


def table_name_for(unique_identifier: str) -> str:
    """Name of the table storing a resource.

    Examples:
        >>> table_name_for("abc-123__2").startswith("datastore_")
        True
    """
    return TABLE_PREFIX + hashlib.md5(unique_identifier.encode("utf-8")).hexdigest()


def _count_data_lines(path: Path) -> int:
    with open(path, "rb") as f:
        lines = sum(1 for _ in f)
    return max(lines - 1, 0)
