"""
Sticker Pack Jobs

Batch generation of sticker images through a durable queue.

Key components:
- job_types: Status enums, work item state machine, queue and API schemas
- job_store: Job and work item persistence
- task_queue: Leased-delivery queue client
- progress: Job progress recomputation
- job_manager: Job creation, resume, cancellation and status
- runner: Queue draining worker loop

job_manager and runner depend on storage and generation; import them from
their modules directly.
"""

from sticker_app.jobs.errors import (
    StickerJobError,
    ValidationError,
    NotFoundError,
    DependencyError,
    RemoteGenerationError,
    PoisonMessageError,
    InvalidTransitionError,
)

from sticker_app.jobs.job_types import (
    JobStatus,
    WorkItemStatus,
    MessageOutcome,
    TaskMessage,
    QueueMessage,
    Job,
    WorkItem,
    JobProgress,
    DrainResult,
)

from sticker_app.jobs.job_store import JobStore
from sticker_app.jobs.progress import ProgressAggregator

__all__ = [
    # Errors
    "StickerJobError",
    "ValidationError",
    "NotFoundError",
    "DependencyError",
    "RemoteGenerationError",
    "PoisonMessageError",
    "InvalidTransitionError",
    # Types
    "JobStatus",
    "WorkItemStatus",
    "MessageOutcome",
    "TaskMessage",
    "QueueMessage",
    "Job",
    "WorkItem",
    "JobProgress",
    "DrainResult",
    # Components
    "JobStore",
    "ProgressAggregator",
]
