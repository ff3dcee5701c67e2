"""Collaborator contracts consumed by the datastore service.

The service depends only on these protocols; concrete implementations live
in tabular_datastore.localizers, tabular_datastore.importers and
tabular_datastore.core.queue.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from .resource import Resource
from .results import JobResult
from .state import JobRecord

Row = dict[str, Any]


class StoragePort(Protocol):
    """A queryable table holding one imported resource."""

    def query(self, query: Any) -> list[Row]:
        """Run a query; with query.count set, the last row carries "expression"."""

    def get_schema(self) -> dict[str, Any]:
        """Return {"primary_key": [...], "fields": {column: {...}}}."""

    def destroy(self) -> None:
        """Drop the table and its schema."""


class LocalizerPort(Protocol):
    """Resolves (identifier, version) to a locally stored Resource."""

    label: str

    def get(self, identifier: str, version: Optional[str] = None) -> Optional[Resource]:
        """Return the localized resource, or None if not localized yet."""

    def localize(self, identifier: str, version: Optional[str] = None) -> JobResult:
        """Fetch the resource's file locally. Blocking."""

    def remove(self, identifier: str, version: Optional[str] = None) -> None:
        """Delete the localized copy and its job."""

    def get_result(self, identifier: str, version: Optional[str] = None) -> JobResult:
        """Return the last known localization result."""


class ImportServicePort(Protocol):
    """Imports one localized resource into storage."""

    label: str

    def import_data(self) -> None:
        """Run the import. Blocking; failures are recorded in get_result()."""

    def get_result(self) -> JobResult:
        ...

    def get_storage(self) -> StoragePort:
        ...


class ImportFactoryPort(Protocol):
    """Builds import services scoped to a resource."""

    def get_instance(self, unique_identifier: str, *, resource: Resource) -> ImportServicePort:
        ...


class QueuePort(Protocol):
    """Accepts work items for deferred processing."""

    def create_item(self, payload: dict[str, Any]) -> Optional[int]:
        """Return the new item id, or None when the item was refused."""


class JobStorePort(Protocol):
    """Enumerable job records keyed by namespace and resource key."""

    def get_result(self, namespace: str, key: str) -> Optional[JobResult]:
        ...

    def retrieve_all(self, namespace: str) -> list[JobRecord]:
        ...
