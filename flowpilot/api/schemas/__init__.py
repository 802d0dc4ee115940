"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .jobs import (
    ProductionSpecRequest,
    JobCreateRequest,
    DistributionRecordResponse,
    JobResponse,
    JobListResponse,
)
from .scheduler import (
    InFlightJobResponse,
    SchedulerStatusResponse,
    SchedulerCommandResponse,
)

__all__ = [
    "ProductionSpecRequest",
    "JobCreateRequest",
    "DistributionRecordResponse",
    "JobResponse",
    "JobListResponse",
    "InFlightJobResponse",
    "SchedulerStatusResponse",
    "SchedulerCommandResponse",
]
