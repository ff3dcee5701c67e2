"""
tabular_datastore.core - Core functionality and business logic.

This module contains the orchestration logic for:
- Localize → import coordination, immediate or deferred
- Query execution over imported tables
- Job status listing
"""

from tabular_datastore.core.errors import (
    DatastoreError,
    NotFoundError,
    QueryError,
    QueueUnavailableError,
)
from tabular_datastore.core.listing import JobListEntry, JobLister
from tabular_datastore.core.query import Condition, Query, Sort, execute_query
from tabular_datastore.core.resource import Resource
from tabular_datastore.core.results import JobResult, JobStatus
from tabular_datastore.core.service import (
    DatastoreConfig,
    DatastoreService,
    ResourceState,
    create_service,
)
from tabular_datastore.core.state import JobStore

__all__ = [
    "Condition",
    "DatastoreConfig",
    "DatastoreError",
    "DatastoreService",
    "JobListEntry",
    "JobLister",
    "JobResult",
    "JobStatus",
    "JobStore",
    "NotFoundError",
    "Query",
    "QueryError",
    "QueueUnavailableError",
    "Resource",
    "ResourceState",
    "Sort",
    "create_service",
    "execute_query",
]
