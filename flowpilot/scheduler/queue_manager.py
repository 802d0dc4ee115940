"""
Queue Manager for the Job Scheduler.

- Validates and inserts new jobs (pending)
- Enforces the queue size limit
- Cancels jobs that have not been dispatched yet
- Answers "what is next" in FIFO order

What QueueManager MUST NOT do:
- Dispatch or run jobs (Dispatcher's responsibility)
- Manage retry logic (RetryController's responsibility)
"""

import logging
from typing import Any, Optional

from ..errors import CapacityError, InvalidTransitionError
from .entities import Job, JobStatus
from .persistence import PersistenceAdapter
from .validation import (
    validate_caption,
    validate_hashtags,
    validate_max_retries,
    validate_scheduled_at,
    validate_spec,
    validate_targets,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_SIZE = 100
CANCELLED_BY_USER = "Cancelled by user"


class QueueManager:
    """
    Manages the pending queue.

    Ordering: created_at ASC; jobs with a future scheduled_at are not eligible.
    Capacity: pending + processing jobs may not exceed max_queue_size.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        default_max_retries: int = 3,
    ):
        """
        Initialize QueueManager.

        Args:
            persistence: PersistenceAdapter for storage operations
            max_queue_size: Maximum number of pending + processing jobs
            default_max_retries: Retry cap for jobs that don't set one
        """
        self.persistence = persistence
        self.max_queue_size = max_queue_size
        self.default_max_retries = default_max_retries

    # =========================================================================
    # Job Insertion
    # =========================================================================

    def enqueue(
        self,
        spec: dict[str, Any],
        targets: Optional[list[str]] = None,
        caption: Optional[str] = None,
        hashtags: Optional[list[str]] = None,
        scheduled_at: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> Job:
        """
        Validate and add a new job to the queue.

        Args:
            spec: Raw production parameters (instructions, duration, ...)
            targets: Distribution platforms
            caption: Caption used when distributing
            hashtags: Hashtags used when distributing
            scheduled_at: Optional ISO timestamp before which the job is not dispatched
            max_retries: Per-job retry cap

        Returns:
            The created pending Job

        Raises:
            ValidationError: If any field is invalid
            CapacityError: If the queue is full
        """
        job = Job.create(
            spec=validate_spec(spec),
            targets=validate_targets(targets),
            caption=validate_caption(caption),
            hashtags=validate_hashtags(hashtags),
            max_retries=validate_max_retries(max_retries, self.default_max_retries),
            scheduled_at=validate_scheduled_at(scheduled_at),
        )

        active = self.persistence.count_active()
        if active >= self.max_queue_size:
            raise CapacityError(
                f"Queue is full ({active}/{self.max_queue_size} jobs pending or processing)"
            )

        self.persistence.create_job(job)
        logger.info(
            f"Enqueued job {job.job_id} (duration={job.spec.duration}s, "
            f"targets={job.targets or 'none'})"
        )
        return job

    # =========================================================================
    # Selection
    # =========================================================================

    def next_eligible(self, exclude: Optional[set[str]] = None) -> Optional[Job]:
        """Oldest eligible pending job not in `exclude`."""
        exclude = exclude or set()
        for job in self.persistence.list_pending():
            if job.job_id not in exclude:
                return job
        return None

    def pending_count(self) -> int:
        return self.persistence.count_jobs_by_status()[JobStatus.PENDING.value]

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel_pending(self, job_id: str) -> Job:
        """
        Cancel a job that has not been dispatched.

        Raises:
            JobNotFoundError: If job doesn't exist
            InvalidTransitionError: If job is not pending
        """
        job = self.persistence.require_job(job_id)
        if job.status != JobStatus.PENDING:
            raise InvalidTransitionError(job_id, job.status.value, JobStatus.CANCELLED.value)

        cancelled = self.persistence.transition_job(
            job_id,
            JobStatus.PENDING,
            JobStatus.CANCELLED,
            error=CANCELLED_BY_USER,
            error_code="CANCELLED",
        )
        logger.info(f"Cancelled pending job {job_id}")
        return cancelled

    def get_queue_stats(self) -> dict:
        counts = self.persistence.count_jobs_by_status()
        return {
            "counts": counts,
            "active": counts[JobStatus.PENDING.value] + counts[JobStatus.PROCESSING.value],
            "max_queue_size": self.max_queue_size,
        }
