"""SQLite-based job store for localizer and importer state.

This module provides persistent job records keyed by namespace and resource
key. The localizer and the importers each write into their own namespace;
the job lister reads both.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Generator, Optional

from .results import JobResult, JobStatus


class SqliteStore:
    """Base class for SQLite-backed stores.

    Opens a fresh connection per operation so instances can be shared
    between threads.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._ensure_parent_dir()

    def _ensure_parent_dir(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with row factory configured.

        Yields:
            Configured SQLite connection.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Generator[tuple[sqlite3.Connection, sqlite3.Cursor], None, None]:
        """Get a connection with automatic transaction management.

        Yields:
            Tuple of (connection, cursor) with auto-commit on success.
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            try:
                yield conn, cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def __repr__(self) -> str:
        return f"{type(self).__name__}(db_path={self.db_path!r})"


@dataclass
class JobRecord:
    """A persisted job.

    Attributes:
        namespace: Producer namespace (e.g. "ResourceLocalizer", "Import").
        key: Unique resource identifier the job belongs to.
        result: Latest JobResult of the job.
        created_at: Timestamp when the job was first saved.
        updated_at: Timestamp of last update.
    """

    namespace: str
    key: str
    result: JobResult
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> JobRecord:
        return cls(
            namespace=row["namespace"],
            key=row["job_key"],
            result=JobResult(
                status=JobStatus(row["status"]),
                message=row["message"],
                data=json.loads(row["data"]) if row["data"] else {},
            ),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "namespace": self.namespace,
            "key": self.key,
            "result": self.result.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class JobStore(SqliteStore):
    """SQLite-based job store.

    Supports:
    - Saving the latest result of a job (insert or update)
    - Retrieving one job or every job of a namespace
    - Removing jobs when a resource is dropped

    The database is created automatically if it doesn't exist.
    """

    def init_db(self) -> None:
        """Initialize the database schema.

        Creates the jobs table if it doesn't exist. Safe to call multiple
        times - will not affect existing data.
        """
        with self._transaction() as (conn, cursor):
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    namespace TEXT NOT NULL,
                    job_key TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'waiting',
                    message TEXT,
                    data TEXT DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (namespace, job_key)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status
                ON jobs(namespace, status)
            """)

    def get(self, namespace: str, key: str) -> Optional[JobRecord]:
        """Retrieve a job record.

        Args:
            namespace: Producer namespace.
            key: Unique resource identifier.

        Returns:
            JobRecord if found, None otherwise.
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM jobs WHERE namespace = ? AND job_key = ?",
                (namespace, key),
            )
            row = cursor.fetchone()
            return JobRecord.from_row(row) if row else None

    def get_result(self, namespace: str, key: str) -> Optional[JobResult]:
        record = self.get(namespace, key)
        return record.result if record else None

    def save(self, namespace: str, key: str, result: JobResult) -> None:
        """Store the latest result of a job, creating the job if needed.

        Args:
            namespace: Producer namespace.
            key: Unique resource identifier.
            result: Result to persist.
        """
        now = datetime.now().isoformat()

        with self._transaction() as (conn, cursor):
            cursor.execute(
                """
                INSERT INTO jobs (namespace, job_key, status, message, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (namespace, job_key) DO UPDATE SET
                    status = excluded.status,
                    message = excluded.message,
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (
                    namespace,
                    key,
                    result.status.value,
                    result.message,
                    json.dumps(result.data),
                    now,
                    now,
                ),
            )

    def remove(self, namespace: str, key: str) -> bool:
        """Delete a job.

        Returns:
            True if the job was deleted, False if not found.
        """
        with self._transaction() as (conn, cursor):
            cursor.execute(
                "DELETE FROM jobs WHERE namespace = ? AND job_key = ?",
                (namespace, key),
            )
            return cursor.rowcount > 0

    def retrieve_all(self, namespace: str) -> list[JobRecord]:
        """Retrieve every job of a namespace, ordered by creation time."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM jobs WHERE namespace = ? ORDER BY created_at, job_key",
                (namespace,),
            )
            return [JobRecord.from_row(row) for row in cursor.fetchall()]

    def get_stats(self, namespace: str) -> dict[str, int]:
        """Get job counts by status for a namespace.

        Returns:
            Dictionary mapping status values to counts, plus "total".
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT status, COUNT(*) as count FROM jobs WHERE namespace = ? GROUP BY status",
                (namespace,),
            )
            stats = {row["status"]: row["count"] for row in cursor.fetchall()}

        for status in JobStatus:
            if status.value not in stats:
                stats[status.value] = 0

        stats["total"] = sum(stats.values())
        return stats
