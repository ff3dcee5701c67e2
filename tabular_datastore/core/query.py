"""Query description and execution against imported storage.

A Query targets a collection (a resource's unique identifier) and asks for
rows, a row count, or both. Filters, sorts and paging are passed through to
the storage layer unchanged; this module only decides which storage queries
to run and how returned rows are presented.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Optional

from .contracts import Row, StoragePort

# Internal row sequence column added by the importer
RECORD_NUMBER = "record_number"


@dataclass
class Condition:
    """A filter clause: property <operator> value."""

    property: str
    value: Any
    operator: str = "="


@dataclass
class Sort:
    """An ordering clause."""

    property: str
    order: str = "asc"


@dataclass
class Query:
    """Abstract query over one imported resource.

    Attributes:
        collection: Unique identifier of the target resource ("<id>__<version>").
        results: Return matching rows.
        count: Return the number of matching rows.
        show_db_columns: Expose raw column names (and record_number) instead
            of the human labels stored as field descriptions.
        properties: Columns to select; empty selects all.
        conditions: Filter clauses, AND-ed together.
        sorts: Ordering clauses.
        limit: Maximum number of rows.
        offset: Number of rows to skip.
    """

    collection: str
    results: bool = True
    count: bool = False
    show_db_columns: bool = False
    properties: list[str] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)
    sorts: list[Sort] = field(default_factory=list)
    limit: Optional[int] = None
    offset: int = 0

    def copy(self, **changes: Any) -> Query:
        return dataclasses.replace(self, **changes)


def transform_row(row: Row, fields: dict[str, dict], show_db_columns: bool) -> Row:
    """Present a storage row to the caller.

    Without show_db_columns, record_number is dropped and every column whose
    schema field has a non-empty description is renamed to that description.
    Column order is preserved. Columns sharing a description, or a
    description equal to another column's name, collapse into one key that
    holds the later column's value; pass show_db_columns to see them all.

    Args:
        row: Row as returned by storage.
        fields: Schema fields keyed by column name.
        show_db_columns: Keep raw column names.

    Returns:
        New row dictionary.
    """
    if show_db_columns:
        return dict(row)

    new_row: Row = {}
    for field_name, value in row.items():
        if field_name == RECORD_NUMBER:
            continue
        description = fields.get(field_name, {}).get("description")
        new_row[description or field_name] = value
    return new_row


def execute_query(storage: StoragePort, query: Query) -> dict[str, Any]:
    """Execute a query against storage.

    Rows and count are fetched with two independent storage queries when both
    are requested. Keys for flags that are False are absent from the response.

    Args:
        storage: Storage of the resource named by query.collection.
        query: The query to run.

    Returns:
        Dictionary with optional "results" (list of rows) and "count" keys.
    """
    response: dict[str, Any] = {}

    if query.results:
        rows = storage.query(query.copy(count=False))
        fields = storage.get_schema().get("fields", {})
        response["results"] = [
            transform_row(row, fields, query.show_db_columns) for row in rows
        ]

    if query.count:
        rows = storage.query(query)
        response["count"] = rows[-1]["expression"]

    return response
