"""Scheduler control API schemas."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class InFlightJobResponse(BaseModel):
    job_id: str
    attempt: int
    context: Optional[str] = Field(default=None, description="Agent context running the job")
    elapsed: float = Field(..., description="Seconds since dispatch")


class SchedulerStatusResponse(BaseModel):
    """Response from scheduler status endpoint."""

    state: str = Field(..., description="STOPPED / RUNNING / PAUSED")
    is_running: bool = Field(..., description="Whether new jobs are being dispatched")
    max_concurrent: int = Field(..., description="In-flight job limit")
    in_flight: List[InFlightJobResponse] = Field(default_factory=list)
    queue: dict = Field(default_factory=dict, description="Job counts per status and queue capacity")
    completed_last_24h: int = Field(default=0)
    rate_limits: Dict[str, float] = Field(
        default_factory=dict,
        description="Seconds until each rate-limited action class may act again",
    )
    agents: List[dict] = Field(default_factory=list, description="Agent contexts and their state")


class SchedulerCommandResponse(BaseModel):
    """Response from start-all / pause / resume."""

    success: bool
    message: str
    status: SchedulerStatusResponse
