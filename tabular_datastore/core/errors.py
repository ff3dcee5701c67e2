"""Exception hierarchy for the datastore.

Infrastructure failures (missing storage, unavailable queue, malformed
queries) are raised. Failures reported by a localize or import step are never
raised to callers of the orchestrator; they travel as JobResult values with
ERROR status.
"""


class DatastoreError(Exception):
    """Base exception for tabular_datastore."""

    pass


class NotFoundError(DatastoreError, LookupError):
    """Raised when a resource has no localized file or storage."""

    pass


class QueueUnavailableError(DatastoreError, RuntimeError):
    """Raised when the import queue refuses an item.

    Not retried internally; callers should treat it as a retryable
    infrastructure failure.
    """

    pass


class QueryError(DatastoreError, ValueError):
    """Raised for queries naming unknown columns or unsupported operators."""

    pass


class FetchError(DatastoreError):
    """Raised inside the localizer when a source cannot be fetched."""

    pass
