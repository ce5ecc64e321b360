"""
Sticker Pack API Routes

Provides endpoints for:
- Creating a sticker pack job
- Checking job status and listing jobs
- Resuming and cancelling jobs
- Draining the task queue on demand (cron / client poke)
- Server-Sent Events (SSE) streaming of job progress
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from sticker_app.jobs.errors import (
    DependencyError, NotFoundError, RemoteGenerationError, StickerJobError, ValidationError,
)
from sticker_app.jobs.job_types import (
    CancelJobResponse, CreateJobRequest, CreateJobResponse, DrainRequest, DrainResult,
    JobListResponse, JobStatus, JobStatusResponse, ResumeJobResponse,
)
from sticker_app.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sticker-pack", tags=["sticker-pack"])

TERMINAL_JOB_STATUSES = (JobStatus.DONE, JobStatus.ERROR, JobStatus.CANCELLED)


def get_services(request: Request) -> Services:
    return request.app.state.services


def to_http_exception(e: StickerJobError) -> HTTPException:
    """Map a job error onto an HTTP status with a {code, message} body."""
    if isinstance(e, ValidationError):
        status_code = 400
    elif isinstance(e, NotFoundError):
        status_code = 404
    elif isinstance(e, RemoteGenerationError):
        status_code = 502
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=e.to_dict())


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class ActionRequest(BaseModel):
    """Single-endpoint request: {action: create|resume|cancel, ...}."""
    model_config = ConfigDict(populate_by_name=True)

    action: str = "create"
    job_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("job_id", "jobId"))
    style_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("style_id", "styleId"))
    subject_list_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("subject_list_id", "subjectListId")
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/jobs", response_model=CreateJobResponse)
def create_job(
    request: CreateJobRequest,
    services: Services = Depends(get_services)
):
    """Create a job and enqueue one task per subject."""
    try:
        return services.manager.create_job(request.style_id, request.subject_list_id)
    except StickerJobError as e:
        logger.error(f"Error creating job: {e}")
        raise to_http_exception(e)


@router.get("/jobs", response_model=JobListResponse)
def list_jobs(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    services: Services = Depends(get_services)
):
    """List recent jobs, newest first."""
    try:
        return services.manager.list_jobs(limit=limit, offset=offset)
    except StickerJobError as e:
        raise to_http_exception(e)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
def get_job_status(job_id: str, services: Services = Depends(get_services)):
    """Get job progress together with per-sticker status and errors."""
    try:
        return services.manager.get_job_status(job_id)
    except StickerJobError as e:
        raise to_http_exception(e)


@router.post("/jobs/{job_id}/resume", response_model=ResumeJobResponse)
def resume_job(job_id: str, services: Services = Depends(get_services)):
    """Re-enqueue every queued sticker of the job."""
    try:
        return services.manager.resume_job(job_id)
    except StickerJobError as e:
        logger.error(f"Error resuming job {job_id}: {e}")
        raise to_http_exception(e)


@router.post("/jobs/{job_id}/cancel", response_model=CancelJobResponse)
def cancel_job(job_id: str, services: Services = Depends(get_services)):
    """Cancel the job and delete its stickers and images."""
    try:
        return services.manager.cancel_job(job_id)
    except StickerJobError as e:
        logger.error(f"Error cancelling job {job_id}: {e}")
        raise to_http_exception(e)


@router.post("/worker/drain", response_model=DrainResult)
def drain_queue(
    request: Optional[DrainRequest] = Body(default=None),
    services: Services = Depends(get_services)
):
    """Process one batch of queued sticker tasks."""
    params = request or DrainRequest()
    try:
        return services.runner.drain(
            batch_size=params.batch_size,
            visibility_timeout_seconds=params.visibility_timeout_seconds,
            max_attempts=params.max_attempts,
        )
    except DependencyError as e:
        logger.error(f"Error draining queue: {e}")
        raise to_http_exception(e)


@router.post("")
def run_action(request: ActionRequest, services: Services = Depends(get_services)):
    """Single endpoint accepting {action: create|resume|cancel}."""
    manager = services.manager
    try:
        if request.action == "create":
            return manager.create_job(request.style_id, request.subject_list_id)
        if request.action == "resume":
            return manager.resume_job(request.job_id)
        if request.action == "cancel":
            return manager.cancel_job(request.job_id)
    except StickerJobError as e:
        raise to_http_exception(e)

    raise HTTPException(
        status_code=400,
        detail={
            "code": "validation_error",
            "message": "Missing or invalid action",
            "expected": ["create", "resume", "cancel"],
        },
    )


@router.get("/jobs/{job_id}/stream")
async def stream_job_status(job_id: str, services: Services = Depends(get_services)):
    """
    Stream job status using Server-Sent Events (SSE).

    Emits a status event whenever progress changes and closes once the job
    reaches a terminal status or disappears.
    """
    manager = services.manager

    async def event_generator():
        check_interval = 2  # seconds
        max_no_change_count = 150  # ~5 minutes
        no_change_count = 0
        last_snapshot = None

        while True:
            try:
                status = await asyncio.to_thread(manager.get_job_status, job_id)
            except NotFoundError:
                yield f"data: {json.dumps({'type': 'gone', 'job_id': job_id})}\n\n"
                break
            except StickerJobError as e:
                yield f"data: {json.dumps({'type': 'error', 'error': e.to_dict()})}\n\n"
                break

            snapshot = (status.status, status.completed, status.total, status.error)
            if snapshot != last_snapshot:
                last_snapshot = snapshot
                no_change_count = 0
                yield f"data: {json.dumps({'type': 'status', **status.model_dump(mode='json')})}\n\n"
            else:
                no_change_count += 1

            if status.status in TERMINAL_JOB_STATUSES:
                yield f"data: {json.dumps({'type': 'complete', 'status': status.status.value})}\n\n"
                break

            if no_change_count >= max_no_change_count:
                yield f"data: {json.dumps({'type': 'timeout', 'message': 'No updates for 5 minutes'})}\n\n"
                break

            await asyncio.sleep(check_interval)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
