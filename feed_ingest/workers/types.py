"""
Shared types for the job queue and its workers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobName(str, Enum):
    """Closed set of job types understood by the dispatcher."""

    PARSE_SOURCE = "ParseSource"
    GATHER_SOURCES = "GatherSources"


@dataclass(slots=True)
class QueuedJob:
    """A job decoded from its queue row."""

    id: int
    general_id: str
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    not_before: datetime | None = None
    locked_at: datetime | None = None

    @property
    def every(self) -> int | None:
        """Repeat interval in seconds for periodic jobs."""

        value = self.payload.get("every")
        if value is None:
            return None
        return int(value)


@dataclass
class TaskResult:
    """Generic task execution result."""

    task_name: str
    success: bool
    message: str
    details: dict[str, Any]
    started_at: datetime
    finished_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


__all__ = ["JobName", "QueuedJob", "TaskResult"]
