"""
Background worker system for the ingestion pipeline.

Modules:
- types: Job names, decoded jobs, and task results
- queue: Durable job store (claim, lease, complete)
- source_scheduler: Due-source selection and ParseSource enqueueing
- handlers: Job handlers, dependency set, and dispatcher
- pool: Producer/consumer worker pool
- scheduler: Process wiring and runners
"""

from .handlers import (
    GatherSourcesHandler,
    IngestionDependencies,
    JobDispatcher,
    ParseOutcome,
    ParseSourceHandler,
    build_dispatcher,
)
from .pool import SchedulerContext, WorkerPool
from .queue import JobStore
from .scheduler import create_ingestion_context, create_scheduler, run_scheduler, run_worker
from .source_scheduler import SourceScheduler, parse_source_job_id
from .types import JobName, QueuedJob, TaskResult

__all__ = [
    # Queue
    "JobStore",
    "QueuedJob",
    "JobName",
    # Scheduling
    "SourceScheduler",
    "parse_source_job_id",
    "create_scheduler",
    "create_ingestion_context",
    "run_scheduler",
    "run_worker",
    # Execution
    "WorkerPool",
    "SchedulerContext",
    "JobDispatcher",
    "IngestionDependencies",
    "ParseSourceHandler",
    "GatherSourcesHandler",
    "ParseOutcome",
    "build_dispatcher",
    # Types
    "TaskResult",
]
