"""
Progress Aggregator

Recomputes a job's counters and status from its work item rows. The result
depends only on persisted state, so it is safe to call redundantly or from
several workers at once.
"""

import logging

from sticker_app.jobs.job_store import JobStore
from sticker_app.jobs.job_types import JobProgress, JobStatus, WorkItemStatus

logger = logging.getLogger(__name__)


def derive_job_status(completed: int, total: int) -> JobStatus:
    if total > 0 and completed >= total:
        return JobStatus.DONE
    return JobStatus.RUNNING


class ProgressAggregator:

    def __init__(self, store: JobStore):
        self.store = store

    def recompute(self, job_id: str) -> JobProgress:
        completed = self.store.count_work_items(job_id, WorkItemStatus.DONE)
        total = self.store.count_work_items(job_id)
        status = derive_job_status(completed, total)

        # No-op for a cancelled or deleted job
        self.store.update_job_progress(job_id, completed=completed, total=total, status=status)

        logger.debug(f"Job {job_id} progress {completed}/{total} ({status.value})")
        return JobProgress(job_id=job_id, completed=completed, total=total, status=status)
