"""
Jobs router.

- POST /jobs - Create job (enqueued as pending)
- GET /jobs - List jobs, newest first
- GET /jobs/{job_id} - Get job details
- POST /jobs/{job_id}/cancel - Cancel a pending or processing job
- POST /jobs/{job_id}/retry - Reset a failed job to pending
- POST /jobs/{job_id}/dispatch - Dispatch a pending job now, ahead of the queue
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...control import ControlClient
from .._scheduler_state import get_control_client
from ..schemas.jobs import JobCreateRequest, JobListResponse, JobResponse
from ._responses import unwrap

router = APIRouter()


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(request: JobCreateRequest, client: ControlClient = Depends(get_control_client)):
    """
    Create a new job.

    The job is dispatched once the scheduler runs (POST /scheduler/start-all),
    a slot is free and the dispatch rate limits allow it.
    """
    response = await client.create(
        spec=request.spec.model_dump(),
        targets=request.targets,
        caption=request.caption,
        hashtags=request.hashtags,
        scheduled_at=request.scheduled_at,
        max_retries=request.max_retries,
    )
    return unwrap(response)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status: Optional[str] = Query(default=None, description="Filter by status"),
    limit: int = Query(default=50, ge=1, le=200, description="Maximum jobs to return"),
    offset: int = Query(default=0, ge=0),
    client: ControlClient = Depends(get_control_client),
):
    return unwrap(await client.list_jobs(status=status, limit=limit, offset=offset))


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, client: ControlClient = Depends(get_control_client)):
    return unwrap(await client.get_job(job_id))


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, client: ControlClient = Depends(get_control_client)):
    """
    Cancel a job.

    A pending job is never dispatched afterwards. A processing job frees its
    slot immediately; the agent is asked to stop on a best-effort basis.
    """
    return unwrap(await client.cancel(job_id))


@router.post("/{job_id}/retry", response_model=JobResponse)
async def retry_job(job_id: str, client: ControlClient = Depends(get_control_client)):
    """Reset a failed job to pending; rejected with 409 at the retry cap."""
    return unwrap(await client.retry(job_id))


@router.post("/{job_id}/dispatch", response_model=JobResponse)
async def dispatch_job(job_id: str, client: ControlClient = Depends(get_control_client)):
    """
    Dispatch a pending job now.

    Works while the scheduler is paused, but still respects the in-flight
    limit (503) and the dispatch rate limits (429).
    """
    return unwrap(await client.dispatch(job_id))
