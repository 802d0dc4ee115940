"""
Retry Controller for the Job Scheduler.

- Manual retry: allowed for any failed job below its retry cap
- Automatic retry (opt-in): only for retry-eligible error codes, below the
  cap, deferred with exponential backoff through scheduled_at

A retry resets the same job to pending: retry_count + 1, error cleared,
progress zeroed. Agents never retry; this is the only place retries happen.
"""

import logging
from typing import Optional

from ..errors import ConcurrencyViolationError, InvalidTransitionError, RetryLimitError, is_retryable_code
from .entities import Job, JobStatus, iso_after
from .persistence import PersistenceAdapter


logger = logging.getLogger(__name__)


DEFAULT_BASE_DELAY_SECONDS = 10


class RetryController:
    """
    Manages automatic and manual retry logic.

    Backoff calculation:
        delay = base_delay * (2 ^ retry_count)
        Example with 10s base: 10s -> 20s -> 40s
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        auto_retry: bool = False,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
    ):
        """
        Initialize RetryController.

        Args:
            persistence: PersistenceAdapter for storage
            auto_retry: Whether failed jobs are retried without a user command
            base_delay_seconds: Base delay for exponential backoff
        """
        self.persistence = persistence
        self.auto_retry = auto_retry
        self.base_delay_seconds = base_delay_seconds

    # =========================================================================
    # Retry Evaluation
    # =========================================================================

    def is_max_retries_reached(self, job: Job) -> bool:
        return job.retry_count >= job.max_retries

    def should_auto_retry(self, job: Job) -> bool:
        if not self.auto_retry or job.status != JobStatus.FAILED:
            return False
        if not is_retryable_code(job.error_code):
            logger.info(
                f"Job {job.job_id} failed with non-retryable code {job.error_code}; "
                "manual retry required"
            )
            return False
        if self.is_max_retries_reached(job):
            logger.info(
                f"Job {job.job_id} has reached max retries ({job.max_retries}). "
                "No auto-retry."
            )
            return False
        return True

    def on_job_failed(self, job: Job) -> Optional[Job]:
        """
        Handle a failed job and potentially schedule its retry.

        Called by the Dispatcher in the same step that released the job's
        slot, so retry eligibility never races a stale in-flight entry.

        Returns:
            The pending job if a retry was scheduled, None otherwise
        """
        if not self.should_auto_retry(job):
            return None

        delay = self._calculate_backoff(job.retry_count)
        retried = self._reset_to_pending(job, scheduled_at=iso_after(delay))
        logger.info(
            f"Scheduled auto-retry for job {job.job_id} "
            f"(retry {retried.retry_count}/{job.max_retries}, delay={delay}s)"
        )
        return retried

    def _calculate_backoff(self, retry_count: int) -> float:
        """
        Calculate exponential backoff delay.

        Formula: delay = base_delay * (2 ^ retry_count)
        """
        return self.base_delay_seconds * (2 ** retry_count)

    # =========================================================================
    # Manual Retry
    # =========================================================================

    def manual_retry(self, job_id: str) -> Job:
        """
        Reset a failed job to pending.

        Raises:
            JobNotFoundError: If job doesn't exist
            InvalidTransitionError: If job is not FAILED
            RetryLimitError: If retry_count has reached max_retries
        """
        job = self.persistence.require_job(job_id)

        if job.status != JobStatus.FAILED:
            raise InvalidTransitionError(job_id, job.status.value, JobStatus.PENDING.value)

        if self.is_max_retries_reached(job):
            raise RetryLimitError(job_id, job.retry_count, job.max_retries)

        retried = self._reset_to_pending(job)
        logger.info(
            f"Manual retry for job {job_id} (retry {retried.retry_count}/{job.max_retries})"
        )
        return retried

    def _reset_to_pending(self, job: Job, scheduled_at: Optional[str] = None) -> Job:
        try:
            return self.persistence.transition_job(
                job.job_id,
                JobStatus.FAILED,
                JobStatus.PENDING,
                retry_count=job.retry_count + 1,
                error=None,
                error_code=None,
                progress=0,
                artifact_url=None,
                started_at=None,
                completed_at=None,
                scheduled_at=scheduled_at,
            )
        except ConcurrencyViolationError as e:
            raise InvalidTransitionError(job.job_id, e.actual_status, JobStatus.PENDING.value) from e
