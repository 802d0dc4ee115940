"""
Scheduler router for the dispatcher control plane.

Endpoints under /scheduler/* for start-all, pause, resume and status.
"""

from fastapi import APIRouter, Depends

from ...control import ControlClient
from .._scheduler_state import get_control_client
from ..schemas.scheduler import SchedulerCommandResponse, SchedulerStatusResponse
from ._responses import unwrap

router = APIRouter()


@router.post("/start-all", response_model=SchedulerCommandResponse)
async def start_all(client: ControlClient = Depends(get_control_client)):
    """
    Start (or resume) dispatching pending jobs.

    Idempotent: a running scheduler just runs an extra dispatch cycle.
    """
    status = unwrap(await client.start_all())
    return SchedulerCommandResponse(success=True, message="Scheduler running", status=status)


@router.post("/pause", response_model=SchedulerCommandResponse)
async def pause(client: ControlClient = Depends(get_control_client)):
    """Stop dispatching new jobs; jobs in flight still finish."""
    status = unwrap(await client.pause())
    return SchedulerCommandResponse(success=True, message="Scheduler paused", status=status)


@router.post("/resume", response_model=SchedulerCommandResponse)
async def resume(client: ControlClient = Depends(get_control_client)):
    status = unwrap(await client.resume())
    return SchedulerCommandResponse(success=True, message="Scheduler resumed", status=status)


@router.get("/status", response_model=SchedulerStatusResponse)
async def get_status(client: ControlClient = Depends(get_control_client)):
    """
    Get scheduler status.

    Returns:
    - state / is_running: dispatcher lifecycle
    - in_flight: jobs holding a slot, with their agent context
    - queue: job counts per status
    - rate_limits: seconds until each action class may act again
    - agents: open agent contexts
    """
    return unwrap(await client.stats())
