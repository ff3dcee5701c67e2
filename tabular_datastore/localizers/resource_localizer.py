"""Resource localizer: registry of sources and local copies of their files.

This module provides the ResourceLocalizer class, which records registered
resources in SQLite, copies local files or downloads remote files over HTTP
with retries and progress tracking, and keeps the localization job of each
resource in the job store.
"""

from __future__ import annotations

import logging
import mimetypes
import sqlite3
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional

import requests

from ..core.errors import FetchError
from ..core.listing import LOCALIZER_NAMESPACE
from ..core.resource import Resource, build_unique_identifier
from ..core.results import JobResult, JobStatus
from ..core.state import JobStore, SqliteStore
from ..utils.logging import ResourceLogAdapter, get_logger, mask_url_sensitive_parts
from ..utils.paths import WorkdirManager
from ..utils.sources import (
    SourceType,
    detect_source,
    file_name_from_source,
    local_path_from_source,
    validate_source,
)

# Default configuration
DEFAULT_CHUNK_SIZE = 1024 * 1024  # 1MB
DEFAULT_TIMEOUT = 30  # seconds
DEFAULT_MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 60.0
BACKOFF_MULTIPLIER = 2.0
PROGRESS_INTERVAL_SECONDS = 0.5

mimetypes.add_type("text/csv", ".csv")
mimetypes.add_type("text/tab-separated-values", ".tsv")


class SourceNotFoundError(FetchError):
    """Source file not found (404 or missing local file)."""

    pass


class SourceAccessError(FetchError):
    """Authentication or authorization error (401/403)."""

    pass


class SourceRateLimitError(FetchError):
    """Rate limit exceeded error (429)."""

    def __init__(self, message: str, retry_after: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


@dataclass
class RegisteredSource:
    """A registered resource and the local copy of its file, if any.

    Attributes:
        identifier: Resource UUID.
        version: Resource version.
        source: Source URL or path.
        mime_type: MIME type of the file.
        local_path: Path of the localized copy (None until localized).
        created_at: Registration timestamp.
    """

    identifier: str
    version: str
    source: str
    mime_type: str
    local_path: Optional[str]
    created_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> RegisteredSource:
        return cls(
            identifier=row["identifier"],
            version=row["version"],
            source=row["source"],
            mime_type=row["mime_type"],
            local_path=row["local_path"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @property
    def unique_identifier(self) -> str:
        return build_unique_identifier(self.identifier, self.version)

    def to_resource(self) -> Resource:
        """The source perspective of the resource."""
        return Resource(self.identifier, self.version, self.source, self.mime_type)


class ResourceLocalizer(SqliteStore):
    """Registers resources and localizes their files into the workdir.

    Localization is idempotent: once a resource's job is DONE and its local
    copy exists, localize() returns the stored result without fetching again.

    Attributes:
        label: Key of this collaborator's results in import responses, and
            its job store namespace.
    """

    label = LOCALIZER_NAMESPACE

    def __init__(
        self,
        workdir_manager: WorkdirManager,
        job_store: JobStore,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize the localizer.

        Args:
            workdir_manager: Workdir layout; the registry lives in state.db.
            job_store: Job store receiving localization jobs.
            timeout: HTTP request timeout in seconds.
            max_retries: Maximum fetch attempts for remote sources.
            chunk_size: Size of chunks for streamed copies.
            logger: Optional logger instance. If None, uses default logger.
        """
        super().__init__(workdir_manager.state_db_path)
        self._workdir_manager = workdir_manager
        self._job_store = job_store
        self.timeout = timeout
        self.max_retries = max_retries
        self.chunk_size = chunk_size
        self._logger = logger or get_logger("localizers.resource")

    def init_db(self) -> None:
        """Create the resources table if it doesn't exist."""
        with self._transaction() as (conn, cursor):
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS resources (
                    identifier TEXT NOT NULL,
                    version TEXT NOT NULL,
                    source TEXT NOT NULL,
                    mime_type TEXT NOT NULL DEFAULT 'text/csv',
                    local_path TEXT,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (identifier, version)
                )
            """)

    def register(
        self,
        source: str,
        identifier: Optional[str] = None,
        version: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Resource:
        """Register a source as a resource.

        If the identifier and version are already registered, returns the
        existing resource.

        Args:
            source: URL or local path of the file.
            identifier: Resource UUID; generated when omitted.
            version: Resource version; a timestamp when omitted.
            mime_type: MIME type of the file; guessed from the file name when
                omitted, defaulting to text/csv.

        Returns:
            The source perspective of the registered resource.

        Raises:
            ValueError: If the source is not supported.
        """
        is_valid, error = validate_source(source)
        if not is_valid:
            raise ValueError(error)

        identifier = identifier or str(uuid.uuid4())
        version = version or str(int(time.time()))

        existing = self._get_registered(identifier, version)
        if existing:
            return existing.to_resource()

        source = source.strip()
        if mime_type is None:
            mime_type = mimetypes.guess_type(file_name_from_source(source))[0] or "text/csv"

        with self._transaction() as (conn, cursor):
            cursor.execute(
                """
                INSERT INTO resources (identifier, version, source, mime_type, local_path, created_at)
                VALUES (?, ?, ?, ?, NULL, ?)
                """,
                (identifier, version, source, mime_type, datetime.now().isoformat()),
            )

        key = build_unique_identifier(identifier, version)
        self._job_store.save(
            self.label,
            key,
            JobResult(
                JobStatus.WAITING,
                data={"source": source, "file_name": file_name_from_source(source)},
            ),
        )
        self._logger.info(
            f"Registered {key} from {mask_url_sensitive_parts(source)}"
        )

        return Resource(identifier, version, source, mime_type)

    def get_source(
        self,
        identifier: str,
        version: Optional[str] = None,
    ) -> Optional[Resource]:
        """Return the registered (source) resource, latest version if version is None."""
        registered = self._get_registered(identifier, version)
        return registered.to_resource() if registered else None

    def get(self, identifier: str, version: Optional[str] = None) -> Optional[Resource]:
        """Return the localized resource, or None if not localized yet.

        The returned Resource's file_path is the local copy.
        """
        registered = self._get_registered(identifier, version)
        if registered is None or not registered.local_path:
            return None

        result = self._job_store.get_result(self.label, registered.unique_identifier)
        if result is None or result.status != JobStatus.DONE:
            return None

        if not Path(registered.local_path).exists():
            return None

        return Resource(
            registered.identifier,
            registered.version,
            registered.local_path,
            registered.mime_type,
        )

    def get_result(self, identifier: str, version: Optional[str] = None) -> JobResult:
        """Return the last known localization result (WAITING if none)."""
        registered = self._get_registered(identifier, version)
        if registered is None:
            return JobResult(JobStatus.WAITING)
        return (
            self._job_store.get_result(self.label, registered.unique_identifier)
            or JobResult(JobStatus.WAITING)
        )

    def localize(self, identifier: str, version: Optional[str] = None) -> JobResult:
        """Copy the resource's file into the workdir. Blocking.

        Args:
            identifier: Resource UUID.
            version: Resource version, None for latest.

        Returns:
            JobResult of the localization; ERROR results carry the reason.
        """
        registered = self._get_registered(identifier, version)
        if registered is None:
            return JobResult(
                JobStatus.ERROR,
                message=f"Resource {identifier}:{version} is not registered.",
            )

        key = registered.unique_identifier
        resource_logger = ResourceLogAdapter(self._logger, key)

        previous = self._job_store.get_result(self.label, key)
        if previous and previous.status == JobStatus.DONE and self.get(identifier, registered.version):
            resource_logger.debug("Already localized, skipping fetch")
            return previous

        file_name = file_name_from_source(registered.source)
        base_data = {"source": registered.source, "file_name": file_name}
        self._job_store.save(self.label, key, JobResult(JobStatus.IN_PROGRESS, data=base_data))

        resource_dir = self._workdir_manager.ensure_resource_dir(key)
        final_path = resource_dir / file_name
        temp_path = resource_dir / f"{file_name}.part"

        def on_progress(bytes_copied: int, total_bytes: int) -> None:
            percent = int(bytes_copied * 100 / total_bytes) if total_bytes else 0
            self._job_store.save(
                self.label,
                key,
                JobResult(
                    JobStatus.IN_PROGRESS,
                    data={
                        **base_data,
                        "bytes_copied": bytes_copied,
                        "total_bytes": total_bytes,
                        "percent_done": min(percent, 99),
                    },
                ),
            )

        resource_logger.info(f"Fetching {mask_url_sensitive_parts(registered.source)}")

        try:
            if detect_source(registered.source) == SourceType.HTTP:
                bytes_copied = self._download(registered.source, temp_path, on_progress, resource_logger)
            else:
                bytes_copied = self._copy_local(registered.source, temp_path, on_progress)
            temp_path.replace(final_path)
        except (FetchError, OSError) as e:
            resource_logger.error(f"Localization failed: {e}")
            if temp_path.exists():
                temp_path.unlink()
            result = JobResult(JobStatus.ERROR, message=str(e), data=base_data)
            self._job_store.save(self.label, key, result)
            return result

        with self._transaction() as (conn, cursor):
            cursor.execute(
                "UPDATE resources SET local_path = ? WHERE identifier = ? AND version = ?",
                (str(final_path), registered.identifier, registered.version),
            )

        result = JobResult(
            JobStatus.DONE,
            data={
                **base_data,
                "local_path": str(final_path),
                "bytes_copied": bytes_copied,
                "total_bytes": bytes_copied,
                "percent_done": 100,
            },
        )
        self._job_store.save(self.label, key, result)
        resource_logger.info(f"Localized {bytes_copied:,} bytes to {final_path}")

        return result

    def remove(self, identifier: str, version: Optional[str] = None) -> None:
        """Delete the local copy and the localization job of a resource.

        The registration itself is kept so the resource can be localized again.
        """
        registered = self._get_registered(identifier, version)
        if registered is None:
            return

        key = registered.unique_identifier
        self._workdir_manager.cleanup_resource(key)

        with self._transaction() as (conn, cursor):
            cursor.execute(
                "UPDATE resources SET local_path = NULL WHERE identifier = ? AND version = ?",
                (registered.identifier, registered.version),
            )

        self._job_store.remove(self.label, key)
        self._logger.debug(f"Removed localized copy of {key}")

    def list_sources(self) -> list[Resource]:
        """Return every registered resource, ordered by registration time."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM resources ORDER BY created_at, identifier")
            return [RegisteredSource.from_row(row).to_resource() for row in cursor.fetchall()]

    def _get_registered(
        self,
        identifier: str,
        version: Optional[str],
    ) -> Optional[RegisteredSource]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            if version:
                cursor.execute(
                    "SELECT * FROM resources WHERE identifier = ? AND version = ?",
                    (identifier, version),
                )
            else:
                cursor.execute(
                    """
                    SELECT * FROM resources WHERE identifier = ?
                    ORDER BY created_at DESC, version DESC
                    LIMIT 1
                    """,
                    (identifier,),
                )
            row = cursor.fetchone()
            return RegisteredSource.from_row(row) if row else None

    def _copy_local(
        self,
        source: str,
        temp_path: Path,
        on_progress: Callable[[int, int], None],
    ) -> int:
        """Copy a local file in chunks.

        Returns:
            Number of bytes copied.

        Raises:
            SourceNotFoundError: If the source file doesn't exist.
        """
        source_path = local_path_from_source(source)
        if not source_path.is_file():
            raise SourceNotFoundError(f"File not found: {source_path}")

        total_size = source_path.stat().st_size
        with open(source_path, "rb") as src, open(temp_path, "wb") as dst:
            return self._write_chunks(_iter_file(src, self.chunk_size), dst, total_size, on_progress)

    def _download(
        self,
        url: str,
        temp_path: Path,
        on_progress: Callable[[int, int], None],
        resource_logger: ResourceLogAdapter,
    ) -> int:
        """Download a remote file with retries and exponential backoff.

        Returns:
            Number of bytes downloaded.

        Raises:
            FetchError: When all attempts fail or the source is missing/forbidden.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                response = requests.get(
                    url,
                    headers={"User-Agent": "tabular-datastore/0.1"},
                    stream=True,
                    timeout=self.timeout,
                )
                try:
                    self._handle_response_error(response)
                    total_size = int(response.headers.get("Content-Length") or 0)
                    with open(temp_path, "wb") as dst:
                        return self._write_chunks(
                            response.iter_content(chunk_size=self.chunk_size),
                            dst,
                            total_size,
                            on_progress,
                        )
                finally:
                    response.close()

            except (SourceNotFoundError, SourceAccessError):
                # Don't retry missing or forbidden sources
                raise

            except SourceRateLimitError as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    backoff = self._calculate_backoff(attempt, e.retry_after)
                    resource_logger.info(f"Rate limited, waiting {backoff:.1f}s before retry...")
                    time.sleep(backoff)
                continue

            except (requests.exceptions.RequestException, FetchError) as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    backoff = self._calculate_backoff(attempt)
                    resource_logger.warning(
                        f"Download failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {backoff:.1f}s..."
                    )
                    time.sleep(backoff)
                continue

        raise FetchError(
            f"Download failed after {self.max_retries} attempts: {last_error}"
        ) from last_error

    def _handle_response_error(self, response: requests.Response) -> None:
        """Raise a typed FetchError for error responses.

        Raises:
            SourceAccessError: For 401/403 responses.
            SourceNotFoundError: For 404/410 responses.
            SourceRateLimitError: For 429 responses.
            FetchError: For other error responses.
        """
        if response.ok:
            return

        status_code = response.status_code

        if status_code in (401, 403):
            raise SourceAccessError(f"Access denied: HTTP {status_code}")

        if status_code in (404, 410):
            raise SourceNotFoundError(f"File not found: HTTP {status_code}")

        if status_code == 429:
            retry_after = None
            if "Retry-After" in response.headers:
                try:
                    retry_after = int(response.headers["Retry-After"])
                except ValueError:
                    pass
            raise SourceRateLimitError(f"Rate limited: HTTP {status_code}", retry_after=retry_after)

        raise FetchError(f"HTTP {status_code}")

    def _calculate_backoff(self, attempt: int, retry_after: Optional[int] = None) -> float:
        if retry_after is not None:
            return float(retry_after)

        backoff = INITIAL_BACKOFF_SECONDS * (BACKOFF_MULTIPLIER ** attempt)
        return min(backoff, MAX_BACKOFF_SECONDS)

    @staticmethod
    def _write_chunks(
        chunks: Iterator[bytes],
        dst: BinaryIO,
        total_size: int,
        on_progress: Callable[[int, int], None],
    ) -> int:
        bytes_copied = 0
        last_progress_time = time.time()

        for chunk in chunks:
            if not chunk:
                continue
            dst.write(chunk)
            bytes_copied += len(chunk)

            now = time.time()
            if now - last_progress_time >= PROGRESS_INTERVAL_SECONDS:
                on_progress(bytes_copied, total_size)
                last_progress_time = now

        return bytes_copied


def _iter_file(handle: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    return iter(lambda: handle.read(chunk_size), b"")
