"""Unified status listing of localizer and importer jobs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .contracts import JobStorePort
from .resource import parse_unique_identifier
from .results import JobResult, JobStatus

LOCALIZER_NAMESPACE = "ResourceLocalizer"
IMPORTER_NAMESPACE = "Import"


@dataclass
class JobListEntry:
    """Combined fetcher and importer state of one resource.

    Attributes:
        identifier: Resource UUID.
        version: Resource version or None.
        file_name: Name of the localized or source file.
        fetcher_status: Localizer job status.
        fetcher_bytes: Bytes copied so far.
        fetcher_percent_done: Localization progress, 0-100.
        importer_status: Import job status (WAITING if never started).
        importer_percent_done: Import progress, 0-100.
        importer_error: Import error message, if any.
    """

    identifier: str
    version: Optional[str]
    file_name: str
    fetcher_status: JobStatus
    fetcher_bytes: int
    fetcher_percent_done: int
    importer_status: JobStatus
    importer_percent_done: int
    importer_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "version": self.version,
            "fileName": self.file_name,
            "fileFetcherStatus": self.fetcher_status.value,
            "fileFetcherBytes": self.fetcher_bytes,
            "fileFetcherPercentDone": self.fetcher_percent_done,
            "importerStatus": self.importer_status.value,
            "importerPercentDone": self.importer_percent_done,
            "importerError": self.importer_error,
        }


class JobLister:
    """Projects job store records into JobListEntry objects.

    Every resource with a localizer job is listed; its importer job, if any,
    is looked up under the same key. Nothing is cached between calls.
    """

    def __init__(
        self,
        job_store: JobStorePort,
        localizer_namespace: str = LOCALIZER_NAMESPACE,
        importer_namespace: str = IMPORTER_NAMESPACE,
    ) -> None:
        self._job_store = job_store
        self._localizer_namespace = localizer_namespace
        self._importer_namespace = importer_namespace

    def get_list(self) -> dict[str, JobListEntry]:
        """Build the listing.

        Returns:
            Entries keyed by unique identifier, in job creation order.
        """
        listing: dict[str, JobListEntry] = {}

        for record in self._job_store.retrieve_all(self._localizer_namespace):
            fetcher = record.result
            importer = (
                self._job_store.get_result(self._importer_namespace, record.key)
                or JobResult()
            )
            identifier, version = parse_unique_identifier(record.key)

            listing[record.key] = JobListEntry(
                identifier=identifier,
                version=version,
                file_name=fetcher.data.get("file_name", ""),
                fetcher_status=fetcher.status,
                fetcher_bytes=int(fetcher.data.get("bytes_copied", 0)),
                fetcher_percent_done=fetcher.percent_done,
                importer_status=importer.status,
                importer_percent_done=importer.percent_done,
                importer_error=importer.message if importer.status == JobStatus.ERROR else None,
            )

        return listing
