"""Queue worker running deferred imports."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .queue import SqliteQueue
from .results import JobResult, JobStatus
from .service import DatastoreService
from ..utils.logging import get_logger


@dataclass
class WorkerStats:
    """Statistics for one worker run.

    Attributes:
        processed: Items whose import finished DONE.
        failed: Items whose localize or import step reported ERROR.
        released: Items returned to the queue after an exception.
    """

    processed: int = 0
    failed: int = 0
    released: int = 0

    def summary(self) -> str:
        return (
            f"Worker finished: {self.processed} imported, "
            f"{self.failed} failed, {self.released} released back to the queue"
        )


class ImportQueueWorker:
    """Drains the import queue through DatastoreService.import_resource.

    Each claimed item is imported immediately. Items are deleted once the
    import returns, whatever its job status. An item whose import raises
    stays claimed while the run moves on to the items behind it, and is
    released when the run ends so a later run can retry it.
    """

    def __init__(
        self,
        service: DatastoreService,
        queue: SqliteQueue,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.service = service
        self.queue = queue
        self.logger = logger or get_logger("worker")

    def run(self, max_items: Optional[int] = None) -> WorkerStats:
        """Process queued items until the queue is empty or max_items is reached.

        Returns:
            WorkerStats for this run.
        """
        stats = WorkerStats()
        handled = 0
        failed_items: list[int] = []

        try:
            while max_items is None or handled < max_items:
                item = self.queue.claim_item()
                if item is None:
                    break
                handled += 1

                identifier = item.payload.get("identifier")
                version = item.payload.get("version")
                self.logger.info(f"Processing queue item {item.item_id}: {identifier}:{version}")

                try:
                    result = self.service.import_resource(
                        identifier, deferred=False, version=version
                    )
                except Exception as e:
                    self.logger.error(f"Queue item {item.item_id} failed: {e}", exc_info=True)
                    failed_items.append(item.item_id)
                    continue

                self.queue.delete_item(item.item_id)
                if _all_done(result):
                    stats.processed += 1
                else:
                    stats.failed += 1
        finally:
            for item_id in failed_items:
                self.queue.release_item(item_id)
                stats.released += 1

        self.logger.info(stats.summary())
        return stats


def _all_done(result: dict) -> bool:
    statuses = [r.status for r in result.values() if isinstance(r, JobResult)]
    return bool(statuses) and all(s == JobStatus.DONE for s in statuses)
