"""
tabular-datastore: CLI tool for importing tabular resources into a queryable datastore.

Resources (CSV or TSV files identified by UUID and version) are localized
from HTTP(S) or the local filesystem, imported into SQLite tables and
queried with column labels taken from the original headers.
"""

from tabular_datastore.core.query import Query
from tabular_datastore.core.results import JobResult, JobStatus
from tabular_datastore.core.service import DatastoreConfig, DatastoreService, create_service

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "DatastoreConfig",
    "DatastoreService",
    "JobResult",
    "JobStatus",
    "Query",
    "create_service",
]
