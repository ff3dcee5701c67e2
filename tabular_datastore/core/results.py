"""Job result value type shared by every long-running step."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class JobStatus(Enum):
    """Enumeration of possible job states."""

    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class JobResult:
    """Outcome of a localize or import step.

    Attributes:
        status: Current job status.
        message: Human-readable detail, typically the error for ERROR results.
        data: Step-specific progress data (bytes copied, rows imported,
            percent_done).
    """

    status: JobStatus = JobStatus.WAITING
    message: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def percent_done(self) -> int:
        if self.status == JobStatus.DONE:
            return 100
        return int(self.data.get("percent_done", 0))

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> JobResult:
        """Create a JobResult from its dictionary representation.

        Args:
            payload: Dictionary as produced by to_dict().

        Returns:
            JobResult instance.
        """
        return cls(
            status=JobStatus(payload.get("status", JobStatus.WAITING.value)),
            message=payload.get("message"),
            data=dict(payload.get("data") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "data": dict(self.data),
        }
