"""
Job Store

Row access for sticker jobs, their work items, and the read-only style and
subject list tables. Every write is a narrow update keyed by id; status
changes of work items are conditional on the expected current status so
concurrent workers cannot overwrite each other.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sticker_app.jobs.errors import DependencyError
from sticker_app.jobs.job_types import (
    Job, JobStatus, Style, WorkItem, WorkItemStatus, ensure_transition,
)
from sticker_app.jobs.utils import first_row

logger = logging.getLogger(__name__)

JOBS_TABLE = "sticker_jobs"
WORK_ITEMS_TABLE = "stickers"
STYLES_TABLE = "sticker_styles"
SUBJECT_LISTS_TABLE = "subject_lists"


class JobStore:
    """Supabase-backed persistence for jobs and work items."""

    def __init__(self, supabase):
        self.supabase = supabase

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except Exception as e:
            logger.error(f"Error trying to {action}: {e}")
            raise DependencyError(f"Failed to {action}: {e}") from e

    # ------------------------------------------------------------------
    # Styles and subject lists
    # ------------------------------------------------------------------

    def get_style(self, style_id: str) -> Optional[Style]:
        result = self._execute(
            self.supabase.table(STYLES_TABLE)
                .select("id, name, compiled_template")
                .eq("id", style_id)
                .limit(1),
            f"load style {style_id}",
        )
        row = first_row(result.data)
        return Style.model_validate(row) if row else None

    def get_subject_list(self, subject_list_id: str) -> Optional[Dict[str, Any]]:
        result = self._execute(
            self.supabase.table(SUBJECT_LISTS_TABLE)
                .select("id, subjects")
                .eq("id", subject_list_id)
                .limit(1),
            f"load subject list {subject_list_id}",
        )
        return first_row(result.data)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(
        self,
        style_id: str,
        subject_list_id: str,
        total: int,
        prompt_json: Optional[Dict[str, Any]] = None
    ) -> Job:
        record = {
            "style_id": style_id,
            "subject_list_id": subject_list_id,
            "total": total,
            "completed": 0,
            "status": JobStatus.QUEUED.value,
            "prompt_json": prompt_json,
        }
        result = self._execute(
            self.supabase.table(JOBS_TABLE).insert(record),
            "create job",
        )
        row = first_row(result.data)
        if not row:
            raise DependencyError("Failed to create job: insert returned no row")
        return Job.model_validate(row)

    def get_job(self, job_id: str) -> Optional[Job]:
        result = self._execute(
            self.supabase.table(JOBS_TABLE).select("*").eq("id", job_id).limit(1),
            f"load job {job_id}",
        )
        row = first_row(result.data)
        return Job.model_validate(row) if row else None

    def list_jobs(self, limit: int = 50, offset: int = 0) -> Tuple[List[Job], int]:
        """List jobs newest first. Returns (jobs, total_count)."""
        result = self._execute(
            self.supabase.table(JOBS_TABLE)
                .select("*", count="exact")
                .order("created_at", desc=True)
                .range(offset, offset + limit - 1),
            "list jobs",
        )
        rows = result.data or []
        total = result.count if result.count is not None else len(rows)
        return [Job.model_validate(r) for r in rows], total

    def set_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error: Optional[str] = None,
        unless_cancelled: bool = True
    ) -> bool:
        """
        Set a job's status. By default a cancelled job is left alone so a
        worker can never undo a concurrent cancellation.
        """
        values: Dict[str, Any] = {"status": status.value}
        if error is not None:
            values["error"] = error
        query = self.supabase.table(JOBS_TABLE).update(values).eq("id", job_id)
        if unless_cancelled:
            query = query.neq("status", JobStatus.CANCELLED.value)
        result = self._execute(query, f"set job {job_id} status to {status.value}")
        return bool(result.data)

    def update_job_progress(
        self,
        job_id: str,
        completed: int,
        total: int,
        status: JobStatus
    ) -> bool:
        result = self._execute(
            self.supabase.table(JOBS_TABLE)
                .update({"completed": completed, "total": total, "status": status.value})
                .eq("id", job_id)
                .neq("status", JobStatus.CANCELLED.value),
            f"update progress for job {job_id}",
        )
        return bool(result.data)

    def delete_job(self, job_id: str) -> int:
        result = self._execute(
            self.supabase.table(JOBS_TABLE).delete().eq("id", job_id),
            f"delete job {job_id}",
        )
        return len(result.data or [])

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def create_work_items(self, job_id: str, subjects: List[str]) -> List[WorkItem]:
        rows = [
            {
                "job_id": job_id,
                "subject": subject,
                "status": WorkItemStatus.QUEUED.value,
                "attempts": 0,
            }
            for subject in subjects
        ]
        result = self._execute(
            self.supabase.table(WORK_ITEMS_TABLE).insert(rows),
            f"create work items for job {job_id}",
        )
        created = [WorkItem.model_validate(r) for r in (result.data or []) if r.get("id")]

        # The insert response is not guaranteed to echo every row.
        if len(created) != len(subjects):
            logger.warning(
                f"Insert for job {job_id} returned {len(created)} of {len(subjects)} rows; re-reading"
            )
            created = self.list_work_items(job_id)
        return created

    def get_work_item(self, work_item_id: str) -> Optional[WorkItem]:
        result = self._execute(
            self.supabase.table(WORK_ITEMS_TABLE)
                .select("*")
                .eq("id", work_item_id)
                .limit(1),
            f"load work item {work_item_id}",
        )
        row = first_row(result.data)
        return WorkItem.model_validate(row) if row else None

    def list_work_items(
        self,
        job_id: str,
        status: Optional[WorkItemStatus] = None
    ) -> List[WorkItem]:
        query = self.supabase.table(WORK_ITEMS_TABLE).select("*").eq("job_id", job_id)
        if status is not None:
            query = query.eq("status", status.value)
        result = self._execute(query.order("created_at"), f"list work items for job {job_id}")
        return [WorkItem.model_validate(r) for r in (result.data or [])]

    def count_work_items(
        self,
        job_id: str,
        status: Optional[WorkItemStatus] = None
    ) -> int:
        query = self.supabase.table(WORK_ITEMS_TABLE).select("id", count="exact").eq("job_id", job_id)
        if status is not None:
            query = query.eq("status", status.value)
        result = self._execute(query, f"count work items for job {job_id}")
        if result.count is not None:
            return result.count
        return len(result.data or [])

    def transition_work_item(
        self,
        work_item_id: str,
        from_status: WorkItemStatus,
        to_status: WorkItemStatus,
        values: Optional[Dict[str, Any]] = None,
        expected_attempts: Optional[int] = None
    ) -> Optional[WorkItem]:
        """
        Move a work item from one status to another.

        The update only applies while the row still has `from_status` (and
        `expected_attempts`, when given). Returns the updated row, or None if
        another writer got there first or the row no longer exists.
        """
        ensure_transition(from_status, to_status)

        update_data = dict(values or {})
        update_data["status"] = to_status.value

        query = self.supabase.table(WORK_ITEMS_TABLE)\
            .update(update_data)\
            .eq("id", work_item_id)\
            .eq("status", from_status.value)
        if expected_attempts is not None:
            query = query.eq("attempts", expected_attempts)

        result = self._execute(
            query,
            f"move work item {work_item_id} {from_status.value} -> {to_status.value}",
        )
        row = first_row(result.data)
        return WorkItem.model_validate(row) if row else None

    def delete_work_items(self, job_id: str) -> int:
        result = self._execute(
            self.supabase.table(WORK_ITEMS_TABLE).delete().eq("job_id", job_id),
            f"delete work items for job {job_id}",
        )
        return len(result.data or [])
