"""
Recovery Manager for the Job Scheduler.

- Runs once on scheduler startup, before any dispatch
- A job found in PROCESSING was in flight when the previous process died;
  its agent and timer are gone, so it is failed with a retry-eligible error

Recovery is idempotent: running it twice produces the same result.
"""

import logging

from ..errors import ConcurrencyViolationError, DispatchError
from .entities import Job, JobStatus
from .persistence import PersistenceAdapter
from .retry_controller import RetryController


logger = logging.getLogger(__name__)

RESTART_REASON = "Scheduler restarted while job was in flight"


class RecoveryManager:
    """Handles crash recovery and startup cleanup."""

    def __init__(
        self,
        persistence: PersistenceAdapter,
        retry_controller: RetryController,
    ):
        """
        Initialize RecoveryManager.

        Args:
            persistence: PersistenceAdapter for storage
            retry_controller: RetryController consulted for each recovered job
        """
        self.persistence = persistence
        self.retry_controller = retry_controller

    def recover_on_startup(self) -> dict:
        """
        Perform recovery on scheduler startup.

        Returns:
            Recovery statistics
        """
        stats = {
            "processing_jobs_failed": 0,
            "retries_scheduled": 0,
            "errors": [],
        }

        logger.info("Starting crash recovery...")

        for job in self.persistence.list_jobs_by_status(JobStatus.PROCESSING):
            try:
                failed = self._fail_orphan(job)
            except ConcurrencyViolationError as e:
                logger.warning(f"Job {job.job_id} changed during recovery: {e}")
                stats["errors"].append(f"{job.job_id}: {e}")
                continue

            stats["processing_jobs_failed"] += 1
            if self.retry_controller.on_job_failed(failed) is not None:
                stats["retries_scheduled"] += 1

        logger.info(
            f"Recovery complete: "
            f"{stats['processing_jobs_failed']} in-flight jobs failed, "
            f"{stats['retries_scheduled']} retries scheduled"
        )

        return stats

    def _fail_orphan(self, job: Job) -> Job:
        logger.info(f"Recovering PROCESSING job {job.job_id} (attempt {job.attempt})")
        return self.persistence.transition_job(
            job.job_id,
            JobStatus.PROCESSING,
            JobStatus.FAILED,
            error=RESTART_REASON,
            error_code=DispatchError.code,
        )
