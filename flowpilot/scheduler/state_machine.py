"""
Job state machine.

    pending ──dispatch──▶ processing ──success──▶ completed
       │                     │  │
       │                     │  └──error/timeout──▶ failed ──retry──▶ pending
       └──cancel──▶ cancelled ◀──cancel──┘

Anything not listed in ALLOWED_TRANSITIONS is rejected.
"""

from ..errors import InvalidTransitionError
from .entities import JobStatus

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(JobStatus(from_status), frozenset())


def validate_transition(job_id: str, from_status: JobStatus, to_status: JobStatus) -> None:
    """
    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(
            job_id, JobStatus(from_status).value, JobStatus(to_status).value
        )
