"""
Job API schemas.

Field rules (lengths, allowed durations, platforms) are enforced by the
scheduler's validation layer; these models only describe shapes.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ProductionSpecRequest(BaseModel):
    """Production parameters for a new job."""

    instructions: str = Field(..., description="Free-form prompt for the video (10-500 characters)")
    duration: int = Field(default=15, description="Video length in seconds (15, 30 or 60)")
    aspect_ratio: str = Field(default="9:16", description="Aspect ratio (9:16, 1:1 or 16:9)")
    style: str = Field(default="dynamic", description="Style preset (dynamic, calm or energetic)")
    include_music: bool = Field(default=True, description="Add background music")
    include_voiceover: bool = Field(default=False, description="Add a voiceover")


class JobCreateRequest(BaseModel):
    """Request to create a new job."""

    spec: ProductionSpecRequest
    targets: List[str] = Field(
        default_factory=list,
        description="Platforms to distribute to after production (tiktok, shopee, lazada)",
    )
    caption: Optional[str] = Field(default=None, description="Caption used when distributing")
    hashtags: List[str] = Field(default_factory=list, description="Hashtags used when distributing")
    scheduled_at: Optional[str] = Field(
        default=None,
        description="ISO timestamp; the job is not dispatched before it",
    )
    max_retries: Optional[int] = Field(
        default=None,
        ge=0,
        le=10,
        description="Retry cap for this job (server default when omitted)",
    )


class DistributionRecordResponse(BaseModel):
    target: str
    delivery_id: str
    delivered_at: str


class JobResponse(BaseModel):
    """Response representing a Job."""

    job_id: str = Field(..., description="Unique job identifier")
    status: str = Field(..., description="pending / processing / completed / failed / cancelled")
    outcome: str = Field(..., description="Status, or completed_with_distribution_failures")
    spec: dict = Field(default_factory=dict, description="Production parameters")
    targets: List[str] = Field(default_factory=list)
    caption: Optional[str] = None
    hashtags: List[str] = Field(default_factory=list)
    progress: int = Field(default=0, description="0-100 while processing")
    artifact_url: Optional[str] = Field(default=None, description="Produced video URL")
    error: Optional[str] = Field(default=None, description="Failure or cancellation reason")
    error_code: Optional[str] = Field(default=None, description="Stable error code")
    retry_count: int = 0
    max_retries: int = 3
    attempt: int = Field(default=0, description="Dispatch attempts so far")
    distribution_failures: Dict[str, str] = Field(default_factory=dict)
    distributions: List[DistributionRecordResponse] = Field(default_factory=list)
    created_at: str
    updated_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    scheduled_at: Optional[str] = None


class JobListResponse(BaseModel):
    """Response for job list endpoint."""

    jobs: List[JobResponse] = Field(default_factory=list)
    limit: int
    offset: int
