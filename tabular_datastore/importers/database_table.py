"""SQLite table storage for one imported resource.

Each imported resource gets its own table with an autoincrementing
record_number column followed by one TEXT column per source column. The
table's schema, including the original header of each column as its
description, is kept in the datastore_schemas table.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

from ..core.errors import NotFoundError, QueryError
from ..core.query import RECORD_NUMBER, Condition, Query
from ..core.state import SqliteStore

# Query operators and their SQL spelling
OPERATORS = {
    "=": "=",
    "!=": "!=",
    "<>": "<>",
    "<": "<",
    "<=": "<=",
    ">": ">",
    ">=": ">=",
    "like": "LIKE",
    "in": "IN",
}

SORT_ORDERS = {"asc": "ASC", "desc": "DESC"}


class DatabaseTable(SqliteStore):
    """Storage handle for one imported resource.

    Attributes:
        table_name: Name of the SQLite table.
    """

    def __init__(self, db_path: Path, table_name: str) -> None:
        super().__init__(db_path)
        self.table_name = table_name
        self._init_schema_table()

    def _init_schema_table(self) -> None:
        with self._transaction() as (conn, cursor):
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS datastore_schemas (
                    table_name TEXT PRIMARY KEY,
                    schema TEXT NOT NULL
                )
            """)

    def exists(self) -> bool:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
                (self.table_name,),
            )
            return cursor.fetchone() is not None

    def create(self, fields: dict[str, dict[str, Any]]) -> None:
        """Create the table for the given fields, replacing any previous table.

        Args:
            fields: Column name to field metadata ("type", optional "description").
        """
        schema = {"primary_key": [RECORD_NUMBER], "fields": fields}
        columns = ", ".join(f"{_quote(name)} TEXT" for name in fields)

        with self._transaction() as (conn, cursor):
            cursor.execute(f"DROP TABLE IF EXISTS {_quote(self.table_name)}")
            cursor.execute(
                f"CREATE TABLE {_quote(self.table_name)} ("
                f"{_quote(RECORD_NUMBER)} INTEGER PRIMARY KEY AUTOINCREMENT"
                + (f", {columns}" if columns else "")
                + ")"
            )
            cursor.execute(
                """
                INSERT INTO datastore_schemas (table_name, schema) VALUES (?, ?)
                ON CONFLICT (table_name) DO UPDATE SET schema = excluded.schema
                """,
                (self.table_name, json.dumps(schema)),
            )

    def insert_rows(self, rows: Sequence[Sequence[Any]]) -> int:
        """Append rows in one transaction.

        Args:
            rows: Values in schema field order.

        Returns:
            Number of rows inserted.
        """
        if not rows:
            return 0

        fields = list(self.get_schema()["fields"])
        placeholders = ", ".join("?" * len(fields))
        column_list = ", ".join(_quote(name) for name in fields)

        with self._transaction() as (conn, cursor):
            cursor.executemany(
                f"INSERT INTO {_quote(self.table_name)} ({column_list}) VALUES ({placeholders})",
                rows,
            )
        return len(rows)

    def count(self) -> int:
        self._ensure_exists()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT COUNT(*) FROM {_quote(self.table_name)}")
            return cursor.fetchone()[0]

    def get_schema(self) -> dict[str, Any]:
        """Return the table schema.

        Raises:
            NotFoundError: If the table has not been imported.
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT schema FROM datastore_schemas WHERE table_name = ?",
                (self.table_name,),
            )
            row = cursor.fetchone()

        if row is None:
            raise NotFoundError(f"Table {self.table_name} has not been imported.")
        return json.loads(row["schema"])

    def query(self, query: Query) -> list[dict[str, Any]]:
        """Run a query against the table.

        With query.count set, returns a single computed row
        {"expression": <matching rows>}; limit and offset do not apply.

        Raises:
            NotFoundError: If the table has not been imported.
            QueryError: If the query names unknown columns, operators or orders.
        """
        self._ensure_exists()
        sql, params = self._build_select(query)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(sql, params)
            return [dict(row) for row in cursor.fetchall()]

    def destroy(self) -> None:
        """Drop the table and its schema."""
        with self._transaction() as (conn, cursor):
            cursor.execute(f"DROP TABLE IF EXISTS {_quote(self.table_name)}")
            cursor.execute(
                "DELETE FROM datastore_schemas WHERE table_name = ?",
                (self.table_name,),
            )

    def _ensure_exists(self) -> None:
        if not self.exists():
            raise NotFoundError(f"Table {self.table_name} has not been imported.")

    def _build_select(self, query: Query) -> tuple[str, list[Any]]:
        columns = [RECORD_NUMBER, *self.get_schema()["fields"]]
        params: list[Any] = []

        if query.count:
            select = "COUNT(*) AS expression"
        elif query.properties:
            select = ", ".join(_quote(_check_column(p, columns)) for p in query.properties)
        else:
            select = "*"

        sql = f"SELECT {select} FROM {_quote(self.table_name)}"

        where = [self._build_condition(c, columns, params) for c in query.conditions]
        if where:
            sql += " WHERE " + " AND ".join(where)

        if query.count:
            return sql, params

        if query.sorts:
            order_by = []
            for sort in query.sorts:
                order = SORT_ORDERS.get(sort.order.lower())
                if order is None:
                    raise QueryError(f"Invalid sort order '{sort.order}'. Allowed: asc, desc")
                order_by.append(f"{_quote(_check_column(sort.property, columns))} {order}")
            sql += " ORDER BY " + ", ".join(order_by)

        if query.limit is not None or query.offset:
            # SQLite needs a LIMIT clause before OFFSET; -1 means no limit
            sql += " LIMIT ? OFFSET ?"
            params.extend([query.limit if query.limit is not None else -1, query.offset])

        return sql, params

    @staticmethod
    def _build_condition(condition: Condition, columns: list[str], params: list[Any]) -> str:
        column = _quote(_check_column(condition.property, columns))
        operator = OPERATORS.get(condition.operator.lower())
        if operator is None:
            raise QueryError(
                f"Invalid operator '{condition.operator}'. Allowed: {', '.join(OPERATORS)}"
            )

        if operator == "IN":
            values = _as_list(condition.value)
            if not values:
                raise QueryError(f"Operator 'in' on {condition.property} needs at least one value")
            params.extend(values)
            return f"{column} IN ({', '.join('?' * len(values))})"

        params.append(condition.value)
        return f"{column} {operator} ?"

    def __repr__(self) -> str:
        return f"DatabaseTable(db_path={self.db_path!r}, table_name={self.table_name!r})"


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _check_column(name: str, columns: list[str]) -> str:
    if name not in columns:
        raise QueryError(f"Unknown property '{name}'")
    return name


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [value]

