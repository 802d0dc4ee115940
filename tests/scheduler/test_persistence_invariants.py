"""
Persistence invariant tests.

- Status changes only through guarded transitions
- Progress never decreases
- Distribution records only for completed jobs
- Jobs survive a new adapter on the same file
"""

import pytest

from flowpilot.errors import InvalidOperationError, JobNotFoundError
from flowpilot.scheduler import DistributionRecord, Job, JobStatus, PersistenceAdapter, ProductionSpec
from flowpilot.scheduler.entities import iso_after


class TestJobStore:
    def test_roundtrip_keeps_every_field(self, persistence):
        job = Job.create(
            spec=ProductionSpec(instructions="Slow pan over a night market", duration=30, style="calm"),
            targets=["tiktok", "shopee"],
            caption="Night market",
            hashtags=["food", "bangkok"],
            max_retries=2,
        )
        persistence.create_job(job)

        stored = persistence.get_job(job.job_id)

        assert stored.spec == job.spec
        assert stored.targets == ["tiktok", "shopee"]
        assert stored.hashtags == ["food", "bangkok"]
        assert stored.caption == "Night market"
        assert stored.max_retries == 2
        assert stored.status == JobStatus.PENDING
        assert stored.distributions == []

    def test_get_unknown_job_returns_none(self, persistence):
        assert persistence.get_job("missing") is None
        with pytest.raises(JobNotFoundError):
            persistence.require_job("missing")

    def test_jobs_survive_reopening(self, temp_db_path, create_job, persistence):
        job = create_job()

        reopened = PersistenceAdapter(temp_db_path)
        try:
            assert reopened.require_job(job.job_id).spec.instructions == "A cat surfing at sunset"
        finally:
            reopened.close()

    def test_in_memory_database_keeps_state(self, in_memory_persistence):
        job = Job.create(spec=ProductionSpec(instructions="A quiet forest at dawn"))
        in_memory_persistence.create_job(job)

        assert in_memory_persistence.get_job(job.job_id) is not None


class TestUpdateJob:
    def test_status_cannot_be_patched(self, persistence, create_job):
        job = create_job()

        with pytest.raises(InvalidOperationError):
            persistence.update_job(job.job_id, status=JobStatus.COMPLETED)

    def test_unknown_fields_are_rejected(self, persistence, create_job):
        job = create_job()

        with pytest.raises(InvalidOperationError):
            persistence.update_job(job.job_id, spec={"instructions": "changed"})

    def test_patch_updates_timestamp(self, persistence, create_job):
        job = create_job()

        updated = persistence.update_job(job.job_id, caption="New caption")

        assert updated.caption == "New caption"
        assert updated.updated_at >= job.updated_at

    def test_patch_unknown_job(self, persistence):
        with pytest.raises(JobNotFoundError):
            persistence.update_job("missing", caption="x")


class TestProgress:
    def test_progress_only_increases(self, persistence, create_job):
        job = create_job(status=JobStatus.PROCESSING)

        assert persistence.advance_progress(job.job_id, 40) is True
        assert persistence.advance_progress(job.job_id, 20) is False
        assert persistence.require_job(job.job_id).progress == 40

    def test_progress_is_clamped(self, persistence, create_job):
        job = create_job(status=JobStatus.PROCESSING)

        persistence.advance_progress(job.job_id, 250)

        assert persistence.require_job(job.job_id).progress == 100

    def test_progress_ignored_when_not_processing(self, persistence, create_job):
        job = create_job()

        assert persistence.advance_progress(job.job_id, 50) is False
        assert persistence.require_job(job.job_id).progress == 0


class TestQueries:
    def test_list_pending_is_fifo(self, persistence, create_job):
        first = create_job()
        second = create_job()
        third = create_job()

        assert [j.job_id for j in persistence.list_pending()] == [first.job_id, second.job_id, third.job_id]

    def test_list_pending_skips_future_schedule(self, persistence, create_job):
        later = create_job(scheduled_at=iso_after(3600))
        now = create_job(scheduled_at=iso_after(-1))

        assert [j.job_id for j in persistence.list_pending()] == [now.job_id]
        assert later.job_id not in [j.job_id for j in persistence.list_pending()]

    def test_list_jobs_filters_by_status(self, persistence, create_job):
        create_job()
        failed = create_job(status=JobStatus.FAILED)

        jobs = persistence.list_jobs(status=JobStatus.FAILED)

        assert [j.job_id for j in jobs] == [failed.job_id]

    def test_list_jobs_paginates_newest_first(self, persistence, create_job):
        ids = [create_job().job_id for _ in range(3)]

        page = persistence.list_jobs(limit=2, offset=0)
        rest = persistence.list_jobs(limit=2, offset=2)

        assert [j.job_id for j in page] == [ids[2], ids[1]]
        assert [j.job_id for j in rest] == [ids[0]]

    def test_counts_by_status(self, persistence, create_job):
        create_job()
        create_job(status=JobStatus.PROCESSING)
        create_job(status=JobStatus.COMPLETED, completed_at=iso_after(0))

        counts = persistence.count_jobs_by_status()

        assert counts == {"pending": 1, "processing": 1, "completed": 1, "failed": 0, "cancelled": 0}
        assert persistence.count_active() == 2
        assert persistence.count_completed_since(iso_after(-60)) == 1


class TestDistributionRecords:
    def test_record_requires_completed_job(self, persistence, create_job):
        job = create_job(status=JobStatus.PROCESSING)

        with pytest.raises(InvalidOperationError):
            persistence.add_distribution_record(
                DistributionRecord(job_id=job.job_id, target="tiktok", delivery_id="123")
            )

    def test_records_attach_to_job(self, persistence, create_job):
        job = create_job(status=JobStatus.COMPLETED, targets=["tiktok"])

        persistence.add_distribution_record(
            DistributionRecord(job_id=job.job_id, target="tiktok", delivery_id="7312")
        )

        stored = persistence.require_job(job.job_id)
        assert [(r.target, r.delivery_id) for r in stored.distributions] == [("tiktok", "7312")]
        assert persistence.list_distribution_records(job.job_id)[0].delivery_id == "7312"

    def test_failure_recorded_without_status_change(self, persistence, create_job):
        job = create_job(status=JobStatus.COMPLETED, targets=["shopee"])

        updated = persistence.record_distribution_failure(job.job_id, "shopee", "Upload rejected")

        assert updated.status == JobStatus.COMPLETED
        assert updated.distribution_failures == {"shopee": "Upload rejected"}
        assert updated.outcome == "completed_with_distribution_failures"
