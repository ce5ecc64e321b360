"""
Job Manager

Primary interface for sticker pack jobs: creating a job and enqueueing its
work items, resuming stranded work, cancelling with cleanup, and status
reads.
"""

import logging
from typing import List, Optional

from sticker_app.jobs.errors import DependencyError, NotFoundError, ValidationError
from sticker_app.jobs.job_store import JobStore
from sticker_app.jobs.job_types import (
    CancelJobResponse, CreateJobResponse, JobListItem, JobListResponse,
    JobStatus, JobStatusResponse, ResumeJobResponse, TaskMessage, WorkItem,
    WorkItemStatus, WorkItemSummary,
)
from sticker_app.jobs.task_queue import TaskQueue
from sticker_app.jobs.utils import normalize_subjects
from sticker_app.storage import ArtifactStore

logger = logging.getLogger(__name__)


def _require_id(value: Optional[str], name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Missing {name}", {"field": name})
    return value.strip()


class JobManager:
    """
    Manages the sticker job lifecycle outside the worker: submission,
    resume, cancellation and status.
    """

    def __init__(self, store: JobStore, queue: TaskQueue, artifacts: ArtifactStore):
        self.store = store
        self.queue = queue
        self.artifacts = artifacts

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def create_job(self, style_id: str, subject_list_id: str) -> CreateJobResponse:
        """
        Create a job with one work item per subject and enqueue one task
        per work item.

        If enqueueing fails partway the job is marked `error` and the rows
        are kept; `resume_job` re-enqueues whatever is still queued.
        """
        style_id = _require_id(style_id, "style_id")
        subject_list_id = _require_id(subject_list_id, "subject_list_id")

        subject_list = self.store.get_subject_list(subject_list_id)
        if not subject_list:
            raise NotFoundError("Subject list not found", {"subject_list_id": subject_list_id})

        subjects = normalize_subjects(subject_list.get("subjects"))
        if not subjects:
            raise ValidationError("Subject list has no subjects", {"subject_list_id": subject_list_id})

        style = self.store.get_style(style_id)
        if not style:
            raise NotFoundError("Style not found", {"style_id": style_id})

        prompt_json = {
            "style_id": style.id,
            "template": style.compiled_template,
            "subjects": subjects,
        }
        job = self.store.create_job(style_id, subject_list_id, total=len(subjects), prompt_json=prompt_json)
        try:
            items = self.store.create_work_items(job.id, subjects)
        except DependencyError as e:
            logger.error(f"Failed to create stickers for job {job.id}: {e.message}")
            self._mark_job_failed(job.id, e.message)
            raise DependencyError(
                "Failed to create stickers",
                {"job_id": job.id, "detail": e.message},
            ) from e

        logger.info(f"Created job {job.id} with {len(items)} sticker(s) for style {style_id}")

        self._enqueue_for_creation(job.id, items)
        return CreateJobResponse(job_id=job.id, total=job.total)

    def _enqueue_for_creation(self, job_id: str, items: List[WorkItem]) -> None:
        for item in items:
            try:
                self.queue.send(TaskMessage(work_item_id=item.id, job_id=job_id), delay_seconds=0)
            except DependencyError as e:
                detail = e.message
                logger.error(f"Failed to enqueue sticker {item.id} for job {job_id}: {detail}")
                self._mark_job_failed(job_id, detail)
                raise DependencyError(
                    "Failed to enqueue sticker task",
                    {"job_id": job_id, "detail": detail},
                ) from e

    def _mark_job_failed(self, job_id: str, detail: str) -> None:
        try:
            self.store.set_job_status(job_id, JobStatus.ERROR, error=detail)
        except DependencyError as mark_error:
            logger.error(f"Could not mark job {job_id} as error: {mark_error}")

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------

    def resume_job(self, job_id: str) -> ResumeJobResponse:
        """Send a fresh task for every queued work item of the job."""
        job_id = _require_id(job_id, "job_id")

        job = self.store.get_job(job_id)
        if not job:
            raise NotFoundError("Job not found", {"job_id": job_id})

        queued = self.store.list_work_items(job_id, WorkItemStatus.QUEUED)
        enqueued = 0
        for item in queued:
            self.queue.send(TaskMessage(work_item_id=item.id, job_id=job_id), delay_seconds=0)
            enqueued += 1

        if enqueued > 0:
            self.store.set_job_status(job_id, JobStatus.RUNNING)
            logger.info(f"Resumed job {job_id}: re-enqueued {enqueued} sticker(s)")
        else:
            logger.info(f"Resume for job {job_id} found nothing queued")

        return ResumeJobResponse(job_id=job_id, enqueued=enqueued)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_job(self, job_id: str) -> CancelJobResponse:
        """
        Cancel a job and delete everything it produced.

        The job is marked cancelled before anything is deleted so that
        workers holding its messages stop before generating. Cancelling an
        unknown or already deleted job returns zero counts.
        """
        job_id = _require_id(job_id, "job_id")

        self.store.set_job_status(job_id, JobStatus.CANCELLED, unless_cancelled=False)

        items = self.store.list_work_items(job_id)
        paths = set()
        for item in items:
            path = (item.artifact_path or "").strip()
            if path:
                paths.add(path)
        # Catch uploads that never got recorded on a row
        paths.update(self.artifacts.list(job_id))

        deleted_artifacts = self.artifacts.delete(sorted(paths))
        deleted_work_items = self.store.delete_work_items(job_id)
        # A worker can finish an upload between the listing and the row delete
        deleted_artifacts += self.artifacts.delete(self.artifacts.list(job_id))
        deleted_jobs = self.store.delete_job(job_id)

        if deleted_jobs or deleted_work_items or deleted_artifacts:
            logger.info(
                f"Cancelled job {job_id}: removed {deleted_work_items} sticker row(s), "
                f"{deleted_artifacts} file(s)"
            )

        return CancelJobResponse(
            job_id=job_id,
            deleted_work_items=deleted_work_items,
            deleted_artifacts=deleted_artifacts,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_job_status(self, job_id: str) -> JobStatusResponse:
        job_id = _require_id(job_id, "job_id")
        job = self.store.get_job(job_id)
        if not job:
            raise NotFoundError("Job not found", {"job_id": job_id})

        items = self.store.list_work_items(job_id)
        has_queued = any(i.status == WorkItemStatus.QUEUED for i in items)

        return JobStatusResponse(
            job_id=job.id,
            status=job.status,
            total=job.total,
            completed=job.completed,
            error=job.error,
            prompt_json=job.prompt_json,
            created_at=job.created_at,
            items=[
                WorkItemSummary(
                    id=i.id,
                    subject=i.subject,
                    status=i.status,
                    attempts=i.attempts,
                    artifact_url=i.artifact_url,
                    error=i.error,
                )
                for i in items
            ],
            can_cancel=True,
            can_resume=has_queued and job.status != JobStatus.CANCELLED,
        )

    def list_jobs(self, limit: int = 50, offset: int = 0) -> JobListResponse:
        jobs, total = self.store.list_jobs(limit=limit, offset=offset)
        return JobListResponse(
            jobs=[
                JobListItem(
                    job_id=j.id,
                    style_id=j.style_id,
                    subject_list_id=j.subject_list_id,
                    status=j.status,
                    total=j.total,
                    completed=j.completed,
                    error=j.error,
                    created_at=j.created_at,
                )
                for j in jobs
            ],
            total_count=total,
            has_more=offset + len(jobs) < total,
        )
