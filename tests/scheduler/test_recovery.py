"""
Retry and recovery tests.

- Manual retry honors only the cap
- Automatic retry additionally needs a retry-eligible error code
- Jobs left processing by a crash are failed on startup, idempotently
"""

import pytest

from flowpilot.errors import InvalidTransitionError, RetryLimitError
from flowpilot.scheduler import JobStatus, RetryController
from flowpilot.scheduler.recovery import RESTART_REASON

from .conftest import assert_job_status


class TestManualRetry:
    def test_retry_resets_failed_job(self, retry_controller, create_job):
        job = create_job(status=JobStatus.FAILED, error="Boom", error_code="EXTERNAL_ERROR", progress=60)

        retried = retry_controller.manual_retry(job.job_id)

        assert retried.status == JobStatus.PENDING
        assert retried.retry_count == 1
        assert retried.error is None
        assert retried.error_code is None
        assert retried.progress == 0
        assert retried.job_id == job.job_id

    def test_manual_retry_ignores_error_code(self, retry_controller, create_job):
        job = create_job(status=JobStatus.FAILED, error_code="NOT_AUTHENTICATED")

        assert retry_controller.manual_retry(job.job_id).status == JobStatus.PENDING

    def test_retry_at_cap_is_rejected(self, retry_controller, create_job, persistence):
        job = create_job(status=JobStatus.FAILED, max_retries=2, retry_count=2)

        with pytest.raises(RetryLimitError) as exc_info:
            retry_controller.manual_retry(job.job_id)

        assert exc_info.value.code == "RETRY_LIMIT_REACHED"
        assert_job_status(persistence, job.job_id, JobStatus.FAILED)

    @pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.COMPLETED])
    def test_only_failed_jobs_can_be_retried(self, retry_controller, create_job, status):
        job = create_job(status=status)

        with pytest.raises(InvalidTransitionError):
            retry_controller.manual_retry(job.job_id)


class TestAutoRetry:
    def test_disabled_by_default(self, retry_controller, create_job):
        job = create_job(status=JobStatus.FAILED, error_code="EXTERNAL_ERROR")

        assert retry_controller.on_job_failed(job) is None

    def test_retryable_failure_is_scheduled_with_backoff(self, persistence, create_job):
        controller = RetryController(persistence, auto_retry=True, base_delay_seconds=10)
        job = create_job(status=JobStatus.FAILED, error_code="COMPLETION_TIMEOUT", retry_count=1, max_retries=3)

        retried = controller.on_job_failed(job)

        assert retried.status == JobStatus.PENDING
        assert retried.retry_count == 2
        assert retried.scheduled_at is not None
        assert persistence.list_pending() == []

    def test_non_retryable_code_needs_a_person(self, persistence, create_job):
        controller = RetryController(persistence, auto_retry=True)
        job = create_job(status=JobStatus.FAILED, error_code="NOT_AUTHENTICATED")

        assert controller.on_job_failed(job) is None
        assert_job_status(persistence, job.job_id, JobStatus.FAILED)

    def test_no_auto_retry_at_cap(self, persistence, create_job):
        controller = RetryController(persistence, auto_retry=True)
        job = create_job(status=JobStatus.FAILED, error_code="JOB_TIMEOUT", retry_count=3, max_retries=3)

        assert controller.on_job_failed(job) is None
        assert_job_status(persistence, job.job_id, JobStatus.FAILED)

    def test_backoff_doubles(self, persistence):
        controller = RetryController(persistence, base_delay_seconds=10)

        assert [controller._calculate_backoff(n) for n in range(3)] == [10, 20, 40]


class TestRecovery:
    def test_processing_jobs_are_failed_on_startup(self, recovery_manager, create_job, persistence):
        orphan = create_job(status=JobStatus.PROCESSING)
        pending = create_job()

        stats = recovery_manager.recover_on_startup()

        assert stats["processing_jobs_failed"] == 1
        assert stats["retries_scheduled"] == 0
        failed = persistence.require_job(orphan.job_id)
        assert failed.status == JobStatus.FAILED
        assert failed.error == RESTART_REASON
        assert failed.error_code == "DISPATCH_ERROR"
        assert_job_status(persistence, pending.job_id, JobStatus.PENDING)

    def test_recovery_is_idempotent(self, recovery_manager, create_job, persistence):
        orphan = create_job(status=JobStatus.PROCESSING)

        recovery_manager.recover_on_startup()
        second = recovery_manager.recover_on_startup()

        assert second["processing_jobs_failed"] == 0
        assert_job_status(persistence, orphan.job_id, JobStatus.FAILED)

    def test_recovery_schedules_auto_retry(self, persistence, create_job):
        from flowpilot.scheduler import RecoveryManager

        controller = RetryController(persistence, auto_retry=True, base_delay_seconds=0)
        orphan = create_job(status=JobStatus.PROCESSING)

        stats = RecoveryManager(persistence, controller).recover_on_startup()

        assert stats["retries_scheduled"] == 1
        recovered = persistence.require_job(orphan.job_id)
        assert recovered.status == JobStatus.PENDING
        assert recovered.retry_count == 1
