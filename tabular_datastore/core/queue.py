"""SQLite-backed named work queue for deferred imports."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..utils.logging import get_logger
from .state import SqliteStore

logger = get_logger("queue")


@dataclass
class QueueItem:
    """A claimed queue item.

    Attributes:
        item_id: Queue-assigned identifier.
        payload: Decoded item payload.
        created_at: Timestamp when the item was enqueued.
    """

    item_id: int
    payload: dict[str, Any]
    created_at: datetime


class SqliteQueue(SqliteStore):
    """A named FIFO queue stored in SQLite.

    Several queues may share one database file; each instance only sees items
    created under its own name.

    Attributes:
        name: Queue name.
    """

    def __init__(self, db_path: Path, name: str) -> None:
        super().__init__(db_path)
        self.name = name

    def init_db(self) -> None:
        """Create the queue table if it doesn't exist."""
        with self._transaction() as (conn, cursor):
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS queue (
                    item_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    claimed_at TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_queue_name
                ON queue(name, claimed_at)
            """)

    def create_item(self, payload: dict[str, Any]) -> Optional[int]:
        """Add an item to the queue.

        Args:
            payload: JSON-serializable item payload.

        Returns:
            The new item id, or None if the item could not be stored.
        """
        try:
            with self._transaction() as (conn, cursor):
                cursor.execute(
                    "INSERT INTO queue (name, payload, created_at) VALUES (?, ?, ?)",
                    (self.name, json.dumps(payload), datetime.now().isoformat()),
                )
                return cursor.lastrowid
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Could not enqueue item on {self.name}: {e}")
            return None

    def claim_item(self) -> Optional[QueueItem]:
        """Claim the oldest unclaimed item.

        Returns:
            The claimed QueueItem, or None if the queue is empty.
        """
        with self._transaction() as (conn, cursor):
            cursor.execute(
                """
                SELECT * FROM queue
                WHERE name = ? AND claimed_at IS NULL
                ORDER BY item_id
                LIMIT 1
                """,
                (self.name,),
            )
            row = cursor.fetchone()
            if row is None:
                return None

            cursor.execute(
                "UPDATE queue SET claimed_at = ? WHERE item_id = ? AND claimed_at IS NULL",
                (datetime.now().isoformat(), row["item_id"]),
            )
            if cursor.rowcount == 0:
                return None

            return QueueItem(
                item_id=row["item_id"],
                payload=json.loads(row["payload"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )

    def release_item(self, item_id: int) -> None:
        """Return a claimed item to the queue."""
        with self._transaction() as (conn, cursor):
            cursor.execute(
                "UPDATE queue SET claimed_at = NULL WHERE item_id = ?",
                (item_id,),
            )

    def delete_item(self, item_id: int) -> None:
        """Remove a processed item."""
        with self._transaction() as (conn, cursor):
            cursor.execute("DELETE FROM queue WHERE item_id = ?", (item_id,))

    def number_of_items(self) -> int:
        """Count items of this queue, claimed or not."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM queue WHERE name = ?", (self.name,))
            return cursor.fetchone()[0]

    def __repr__(self) -> str:
        return f"SqliteQueue(db_path={self.db_path!r}, name={self.name!r})"
