"""
Job Types and Schemas

Defines the status enums (with the work item state machine), the queue
message schema, row models and the API request/response models for
sticker pack jobs.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Optional
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from sticker_app.jobs.errors import InvalidTransitionError

TASK_KIND_GENERATE_STICKER = "generate_sticker"

# Clamp ranges for a drain invocation: (low, high, default)
BATCH_SIZE_RANGE = (1, 25, 5)
VISIBILITY_TIMEOUT_RANGE = (10, 600, 60)
MAX_ATTEMPTS_RANGE = (1, 10, 5)


class JobStatus(str, Enum):
    """Status of a sticker job."""
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


class WorkItemStatus(str, Enum):
    """Status of a single sticker within a job."""
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not _WORK_ITEM_TRANSITIONS[self]

    def can_transition_to(self, target: "WorkItemStatus") -> bool:
        return target in _WORK_ITEM_TRANSITIONS[self]


_WORK_ITEM_TRANSITIONS: Dict[WorkItemStatus, FrozenSet[WorkItemStatus]] = {
    WorkItemStatus.QUEUED: frozenset({
        WorkItemStatus.RUNNING, WorkItemStatus.ERROR, WorkItemStatus.CANCELLED,
    }),
    WorkItemStatus.RUNNING: frozenset({
        WorkItemStatus.DONE, WorkItemStatus.QUEUED,
        WorkItemStatus.ERROR, WorkItemStatus.CANCELLED,
    }),
    WorkItemStatus.DONE: frozenset(),
    WorkItemStatus.ERROR: frozenset(),
    WorkItemStatus.CANCELLED: frozenset(),
}


def ensure_transition(current: WorkItemStatus, target: WorkItemStatus) -> None:
    """Raise InvalidTransitionError unless current -> target is allowed."""
    if not current.can_transition_to(target):
        raise InvalidTransitionError(
            f"Illegal work item transition {current.value} -> {target.value}",
            {"from": current.value, "to": target.value},
        )


class MessageOutcome(str, Enum):
    """What happened to a leased queue message."""
    SUCCEEDED = "succeeded"      # work done (or already done), message deleted
    DROPPED = "dropped"          # poison/duplicate/obsolete, message deleted
    EXHAUSTED = "exhausted"      # attempts used up, item marked error
    RETRY = "retry"              # message left to expire for redelivery

    @property
    def counts_as_success(self) -> bool:
        return self is MessageOutcome.SUCCEEDED


# ============================================================================
# Queue schemas
# ============================================================================

class TaskMessage(BaseModel):
    """Payload of one queue message: generate the sticker for one work item."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: Literal["generate_sticker"] = TASK_KIND_GENERATE_STICKER
    work_item_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("work_item_id", "workItemId", "stickerId"),
        serialization_alias="workItemId",
    )
    job_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("job_id", "jobId"),
        serialization_alias="jobId",
    )

    @field_validator("work_item_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("work_item_id must not be blank")
        return v

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class QueueMessage(BaseModel):
    """A leased message as returned by the queue."""
    msg_id: int
    read_ct: int = 0
    vt: Optional[datetime] = None
    enqueued_at: Optional[datetime] = None
    message: Any = None


# ============================================================================
# Row models
# ============================================================================

class Job(BaseModel):
    """A sticker_jobs row."""
    id: str
    style_id: str
    subject_list_id: str
    total: int = 0
    completed: int = 0
    status: JobStatus = JobStatus.QUEUED
    error: Optional[str] = None
    prompt_json: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class WorkItem(BaseModel):
    """A stickers row: one subject of a job."""
    id: str
    job_id: str
    subject: str
    status: WorkItemStatus = WorkItemStatus.QUEUED
    attempts: int = 0
    artifact_path: Optional[str] = None
    artifact_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.status == WorkItemStatus.DONE and bool(self.artifact_url)


class Style(BaseModel):
    id: str
    name: Optional[str] = None
    compiled_template: Any = None


class JobProgress(BaseModel):
    """Progress recomputed from work item rows."""
    job_id: str
    completed: int
    total: int
    status: JobStatus


# ============================================================================
# API Request/Response Schemas
# ============================================================================

class CreateJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    style_id: str = Field(default="", validation_alias=AliasChoices("style_id", "styleId"))
    subject_list_id: str = Field(
        default="", validation_alias=AliasChoices("subject_list_id", "subjectListId")
    )


class CreateJobResponse(BaseModel):
    job_id: str
    total: int


class ResumeJobResponse(BaseModel):
    job_id: str
    enqueued: int


class CancelJobResponse(BaseModel):
    job_id: str
    deleted_work_items: int
    deleted_artifacts: int


def _clamp(value: int, bounds: tuple) -> int:
    low, high, _ = bounds
    return max(low, min(high, value))


class DrainRequest(BaseModel):
    """Parameters for one drain invocation. Out-of-range values are clamped."""
    model_config = ConfigDict(populate_by_name=True)

    batch_size: int = Field(
        default=BATCH_SIZE_RANGE[2],
        validation_alias=AliasChoices("batch_size", "batchSize"),
    )
    visibility_timeout_seconds: int = Field(
        default=VISIBILITY_TIMEOUT_RANGE[2],
        validation_alias=AliasChoices("visibility_timeout_seconds", "visibilityTimeoutSeconds"),
    )
    max_attempts: int = Field(
        default=MAX_ATTEMPTS_RANGE[2],
        validation_alias=AliasChoices("max_attempts", "maxAttempts"),
    )

    @field_validator("batch_size")
    @classmethod
    def _clamp_batch_size(cls, v: int) -> int:
        return _clamp(v, BATCH_SIZE_RANGE)

    @field_validator("visibility_timeout_seconds")
    @classmethod
    def _clamp_visibility_timeout(cls, v: int) -> int:
        return _clamp(v, VISIBILITY_TIMEOUT_RANGE)

    @field_validator("max_attempts")
    @classmethod
    def _clamp_max_attempts(cls, v: int) -> int:
        return _clamp(v, MAX_ATTEMPTS_RANGE)


class DrainResult(BaseModel):
    leased: int = 0
    succeeded: int = 0
    failed: int = 0

    def record(self, outcome: MessageOutcome) -> None:
        if outcome.counts_as_success:
            self.succeeded += 1
        else:
            self.failed += 1


class WorkItemSummary(BaseModel):
    id: str
    subject: str
    status: WorkItemStatus
    attempts: int
    artifact_url: Optional[str] = None
    error: Optional[str] = None


class JobStatusResponse(BaseModel):
    """Response for job status query."""
    job_id: str
    status: JobStatus
    total: int
    completed: int
    error: Optional[str] = None
    prompt_json: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    items: List[WorkItemSummary] = Field(default_factory=list)
    can_cancel: bool = True
    can_resume: bool = False


class JobListItem(BaseModel):
    job_id: str
    style_id: str
    subject_list_id: str
    status: JobStatus
    total: int
    completed: int
    error: Optional[str] = None
    created_at: Optional[datetime] = None


class JobListResponse(BaseModel):
    jobs: List[JobListItem]
    total_count: int
    has_more: bool
