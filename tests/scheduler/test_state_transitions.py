"""
State transition tests.

Every allowed edge of the job state machine is accepted, everything else is
rejected, and the guarded update in the store enforces the same table.
"""

import pytest

from flowpilot.errors import ConcurrencyViolationError, InvalidTransitionError, JobNotFoundError
from flowpilot.scheduler import JobStatus, can_transition, validate_transition
from flowpilot.scheduler.state_machine import ALLOWED_TRANSITIONS

from .conftest import assert_job_status

ALLOWED = [
    (JobStatus.PENDING, JobStatus.PROCESSING),
    (JobStatus.PENDING, JobStatus.CANCELLED),
    (JobStatus.PROCESSING, JobStatus.COMPLETED),
    (JobStatus.PROCESSING, JobStatus.FAILED),
    (JobStatus.PROCESSING, JobStatus.CANCELLED),
    (JobStatus.FAILED, JobStatus.PENDING),
]


class TestStateMachine:
    @pytest.mark.parametrize("from_status,to_status", ALLOWED)
    def test_allowed_transitions(self, from_status, to_status):
        assert can_transition(from_status, to_status)
        validate_transition("job-1", from_status, to_status)

    def test_everything_else_is_rejected(self):
        for from_status in JobStatus:
            for to_status in JobStatus:
                if (from_status, to_status) in ALLOWED:
                    continue
                assert not can_transition(from_status, to_status)
                with pytest.raises(InvalidTransitionError):
                    validate_transition("job-1", from_status, to_status)

    def test_terminal_states_have_no_exits(self):
        assert ALLOWED_TRANSITIONS[JobStatus.COMPLETED] == frozenset()
        assert ALLOWED_TRANSITIONS[JobStatus.CANCELLED] == frozenset()

    def test_accepts_raw_status_strings(self):
        assert can_transition("pending", "processing")
        assert not can_transition("completed", "pending")

    def test_error_names_both_statuses(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition("job-9", JobStatus.COMPLETED, JobStatus.PROCESSING)

        assert exc_info.value.from_status == "completed"
        assert exc_info.value.to_status == "processing"
        assert exc_info.value.code == "INVALID_TRANSITION"


class TestGuardedTransitions:
    def test_claim_moves_pending_to_processing(self, persistence, create_job):
        job = create_job()

        claimed = persistence.atomic_claim_job(job.job_id)

        assert claimed.status == JobStatus.PROCESSING
        assert claimed.attempt == 1
        assert claimed.started_at is not None
        assert claimed.progress == 0

    def test_claim_increments_attempt_each_dispatch(self, persistence, create_job):
        job = create_job(status=JobStatus.FAILED)
        assert job.attempt == 1

        persistence.transition_job(job.job_id, JobStatus.FAILED, JobStatus.PENDING)
        claimed = persistence.atomic_claim_job(job.job_id)

        assert claimed.attempt == 2

    def test_second_claim_is_a_concurrency_violation(self, persistence, create_job):
        job = create_job()
        persistence.atomic_claim_job(job.job_id)

        with pytest.raises(ConcurrencyViolationError):
            persistence.atomic_claim_job(job.job_id)

    def test_stale_from_status_is_rejected(self, persistence, create_job):
        job = create_job(status=JobStatus.PROCESSING)
        persistence.transition_job(job.job_id, JobStatus.PROCESSING, JobStatus.COMPLETED)

        with pytest.raises(ConcurrencyViolationError) as exc_info:
            persistence.transition_job(job.job_id, JobStatus.PROCESSING, JobStatus.FAILED)

        assert exc_info.value.actual_status == "completed"
        assert_job_status(persistence, job.job_id, JobStatus.COMPLETED)

    def test_forbidden_transition_never_touches_the_store(self, persistence, create_job):
        job = create_job(status=JobStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            persistence.transition_job(job.job_id, JobStatus.COMPLETED, JobStatus.PENDING)

        assert_job_status(persistence, job.job_id, JobStatus.COMPLETED)

    def test_transition_of_unknown_job(self, persistence):
        with pytest.raises(JobNotFoundError):
            persistence.transition_job("missing", JobStatus.PENDING, JobStatus.CANCELLED)
