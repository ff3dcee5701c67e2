"""Datastore service coordinating localization, import, storage and queries.

The DatastoreService keeps no persisted state of its own. Everything it
reports is rebuilt on each call from the localizer's and importers' job
records, reached through the contracts in core.contracts.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Generator, Optional, Union

from .contracts import (
    ImportFactoryPort,
    ImportServicePort,
    JobStorePort,
    LocalizerPort,
    QueuePort,
    StoragePort,
)
from .errors import NotFoundError, QueueUnavailableError
from .listing import JobListEntry, JobLister
from .query import Query, execute_query
from .resource import Resource, build_unique_identifier, parse_unique_identifier
from .results import JobResult, JobStatus
from ..utils.logging import ResourceLogAdapter, get_logger

ImportResponse = dict[str, Union[JobResult, str]]


@dataclass
class DatastoreConfig:
    """Configuration for the datastore.

    Attributes:
        workdir: Working directory for localized files, databases and logs.
        queue_name: Name of the queue receiving deferred imports.
        timeout: HTTP request timeout in seconds for remote sources.
        max_retries: Maximum fetch attempts per remote source (default 3).
        chunk_size: Size of streamed download chunks in bytes.
        batch_size: Rows inserted per transaction during import.
        verbose: If True, log at DEBUG level on the console.
    """

    workdir: Path
    queue_name: str = "datastore_import"
    timeout: int = 30
    max_retries: int = 3
    chunk_size: int = 1024 * 1024
    batch_size: int = 1000
    verbose: bool = False


class ResourceState(Enum):
    """Lifecycle of a resource as reconstructed from job records."""

    UNKNOWN = "unknown"
    LOCALIZING = "localizing"
    LOCALIZED = "localized"
    IMPORTING = "importing"
    IMPORTED = "imported"
    ERROR = "error"


class DatastoreService:
    """Main entry point for importing, dropping, listing and querying resources.

    Imports run either immediately (blocking for localization and import) or
    deferred (enqueued for a queue worker). Immediate imports of the same
    resource are serialized per process.

    Attributes:
        config: Datastore configuration.
        logger: Logger instance for the service.
    """

    def __init__(
        self,
        localizer: LocalizerPort,
        import_factory: ImportFactoryPort,
        queue: QueuePort,
        job_store: JobStorePort,
        config: DatastoreConfig,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize the service.

        Args:
            localizer: Resolves identifiers to localized resources.
            import_factory: Builds import services for resources.
            queue: Queue named config.queue_name receiving deferred imports.
            job_store: Job records of localizer and importers.
            config: Datastore configuration.
            logger: Optional logger. If None, uses the package logger.
        """
        self.config = config
        self.logger = logger or get_logger("service")
        self._localizer = localizer
        self._import_factory = import_factory
        self._queue = queue
        self._job_store = job_store

        # identifier -> [lock, holders and waiters]
        self._locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @property
    def localizer(self) -> LocalizerPort:
        return self._localizer

    def import_resource(
        self,
        identifier: str,
        deferred: bool = False,
        version: Optional[str] = None,
    ) -> ImportResponse:
        """Start the import of a resource.

        Args:
            identifier: Resource identifier.
            deferred: Enqueue for a queue worker instead of importing now.
            version: Resource version, None for latest.

        Returns:
            For deferred imports, {"message": ...}. Otherwise a map of
            collaborator label to JobResult; if the resource could not be
            localized the map only holds the localizer's result.

        Raises:
            QueueUnavailableError: If the queue refuses a deferred import.
        """
        if deferred:
            self._queue_import(identifier, version)
            return {
                "message": f"Resource {identifier}:{version} has been queued to be imported.",
            }

        # Every version of an identifier shares one lock, since version=None
        # resolves to a concrete version only inside get_resource.
        with self._resource_lock(identifier):
            resource, result = self.get_resource(identifier, version)

            if resource is None:
                return result

            result.update(self._do_import(resource))

        return result

    def get_resource(
        self,
        identifier: str,
        version: Optional[str] = None,
    ) -> tuple[Optional[Resource], dict[str, JobResult]]:
        """Resolve a resource, localizing it if needed.

        An already localized resource is returned with the localizer's last
        known result. Otherwise localization runs now, and the resource is
        looked up again only if it finished DONE.

        Returns:
            Tuple of (resource or None, {localizer label: JobResult}).
        """
        label = self._localizer.label
        resource_logger = ResourceLogAdapter(
            self.logger, build_unique_identifier(identifier, version)
        )

        resource = self._localizer.get(identifier, version)
        if resource is not None:
            resource_logger.debug("Already localized")
            return resource, {label: self._localizer.get_result(identifier, version)}

        resource_logger.info("Localizing")
        result = {label: self._localizer.localize(identifier, version)}

        if result[label].status == JobStatus.DONE:
            resource = self._localizer.get(identifier, version)
        else:
            resource_logger.warning(
                f"Localization ended {result[label].status.value}: {result[label].message}"
            )

        return resource, result

    def get_import_service(self, resource: Resource) -> ImportServicePort:
        return self._import_factory.get_instance(
            resource.unique_identifier, resource=resource
        )

    def drop(self, identifier: str, version: Optional[str] = None) -> None:
        """Drop a resource's storage and its localized file.

        Storage is destroyed first, when it exists, because finding it
        requires the localized file. The localized file is always removed.
        """
        resource_logger = ResourceLogAdapter(
            self.logger, build_unique_identifier(identifier, version)
        )

        try:
            storage = self.get_storage(identifier, version)
        except NotFoundError:
            resource_logger.info("No storage to destroy")
        else:
            storage.destroy()
            resource_logger.info("Storage destroyed")

        self._localizer.remove(identifier, version)
        resource_logger.info("Localized file removed")

    def list_jobs(self) -> dict[str, JobListEntry]:
        """List fetcher and importer status of every known resource."""
        return JobLister(self._job_store).get_list()

    def get_storage(self, identifier: str, version: Optional[str] = None) -> StoragePort:
        """Get the storage of an already localized resource.

        Never starts localization.

        Raises:
            NotFoundError: If the resource is not localized.
        """
        resource = self._localizer.get(identifier, version)
        if resource is None:
            raise NotFoundError(
                f"No datastore storage found for {identifier}:{version}."
            )
        return self.get_import_service(resource).get_storage()

    def run_query(self, query: Query) -> dict[str, Any]:
        """Run a query against the storage named by query.collection.

        Raises:
            NotFoundError: If the collection's resource is not localized.
            QueryError: If the query names unknown columns or operators.
        """
        identifier, version = parse_unique_identifier(query.collection)
        storage = self.get_storage(identifier, version)
        return execute_query(storage, query)

    def resource_state(
        self,
        identifier: str,
        version: Optional[str] = None,
    ) -> ResourceState:
        """Reconstruct where a resource is in its lifecycle."""
        fetch_status = self._localizer.get_result(identifier, version).status

        if fetch_status == JobStatus.ERROR:
            return ResourceState.ERROR
        if fetch_status == JobStatus.IN_PROGRESS:
            return ResourceState.LOCALIZING

        resource = self._localizer.get(identifier, version)
        if resource is None:
            return ResourceState.UNKNOWN

        import_status = self.get_import_service(resource).get_result().status
        return {
            JobStatus.WAITING: ResourceState.LOCALIZED,
            JobStatus.IN_PROGRESS: ResourceState.IMPORTING,
            JobStatus.DONE: ResourceState.IMPORTED,
            JobStatus.ERROR: ResourceState.ERROR,
        }[import_status]

    def _do_import(self, resource: Resource) -> dict[str, JobResult]:
        import_service = self.get_import_service(resource)
        import_service.import_data()
        return {import_service.label: import_service.get_result()}

    def _queue_import(self, identifier: str, version: Optional[str]) -> int:
        item_id = self._queue.create_item({"identifier": identifier, "version": version})

        if item_id is None:
            raise QueueUnavailableError(
                f"Failed to create import queue item for {identifier}:{version}"
            )

        self.logger.info(f"Queued import of {identifier}:{version} as item {item_id}")
        return item_id

    @contextmanager
    def _resource_lock(self, identifier: str) -> Generator[None, None, None]:
        with self._locks_guard:
            entry = self._locks.setdefault(identifier, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[identifier]

    def __repr__(self) -> str:
        return (
            f"DatastoreService("
            f"workdir={self.config.workdir!r}, "
            f"queue_name={self.config.queue_name!r})"
        )


def create_service(
    config: DatastoreConfig,
    logger: Optional[logging.Logger] = None,
) -> DatastoreService:
    """Build a DatastoreService wired to the SQLite and filesystem collaborators.

    Args:
        config: Datastore configuration.
        logger: Optional logger passed to the service and collaborators.

    Returns:
        Ready to use DatastoreService.
    """
    from ..importers.csv_import import ImportServiceFactory
    from ..localizers.resource_localizer import ResourceLocalizer
    from ..utils.paths import WorkdirManager
    from .queue import SqliteQueue
    from .state import JobStore

    workdir_manager = WorkdirManager(config.workdir)
    workdir_manager.ensure_dirs()

    job_store = JobStore(workdir_manager.state_db_path)
    job_store.init_db()

    queue = SqliteQueue(workdir_manager.state_db_path, config.queue_name)
    queue.init_db()

    localizer = ResourceLocalizer(
        workdir_manager,
        job_store,
        timeout=config.timeout,
        max_retries=config.max_retries,
        chunk_size=config.chunk_size,
        logger=logger,
    )
    localizer.init_db()

    import_factory = ImportServiceFactory(
        workdir_manager.datastore_db_path,
        job_store,
        batch_size=config.batch_size,
        logger=logger,
    )

    return DatastoreService(
        localizer=localizer,
        import_factory=import_factory,
        queue=queue,
        job_store=job_store,
        config=config,
        logger=logger,
    )
