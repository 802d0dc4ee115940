"""
Scheduler Test Fixtures.

Base fixtures:
  - Empty database (temporary file, cleaned up with its WAL/SHM files)
  - Fast SchedulerSettings: no dispatch spacing, short timeouts
  - Clean queue state

Service fixtures:
  - `scheduler` : a started SchedulerService wired to scripted agents on fake
    pages; the dispatcher is NOT started (call dispatcher.activate())
"""

import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest
import pytest_asyncio

from flowpilot.config import SchedulerSettings
from flowpilot.scheduler import (
    Job,
    JobStatus,
    PersistenceAdapter,
    QueueManager,
    RecoveryManager,
    RetryController,
    SchedulerService,
)
from flowpilot.scheduler.entities import ProductionSpec

from ..conftest import scripted_factories


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    Path(db_path).unlink(missing_ok=True)
    # Also cleanup WAL and SHM files
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def persistence(temp_db_path: str) -> PersistenceAdapter:
    """Create a fresh PersistenceAdapter with empty database."""
    adapter = PersistenceAdapter(temp_db_path)
    yield adapter
    adapter.close()


@pytest.fixture
def in_memory_persistence() -> PersistenceAdapter:
    """Create an in-memory PersistenceAdapter for fast tests."""
    adapter = PersistenceAdapter(":memory:")
    yield adapter
    adapter.close()


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> SchedulerSettings:
    """Scheduler settings tuned for tests."""
    return SchedulerSettings(
        max_concurrent=2,
        max_queue_size=100,
        default_max_retries=3,
        job_timeout=5.0,
        ack_timeout=2.0,
        distribution_timeout=5.0,
        dispatch_min_interval=0.0,
        daily_production_limit=50,
        posts_per_hour=10,
        min_action_delay=0.0,
        tick_interval=0.02,
        auto_retry=False,
        retry_base_delay=0.0,
        auto_distribute=True,
        auto_download=True,
        downloads_dir=str(tmp_path / "downloads"),
        webhook_url=None,
    )


@pytest.fixture
def queue_manager(persistence: PersistenceAdapter) -> QueueManager:
    """Create a QueueManager with the test database."""
    return QueueManager(persistence, max_queue_size=5)


@pytest.fixture
def retry_controller(persistence: PersistenceAdapter) -> RetryController:
    """Create a manual-only RetryController."""
    return RetryController(persistence)


@pytest.fixture
def recovery_manager(
    persistence: PersistenceAdapter,
    retry_controller: RetryController,
) -> RecoveryManager:
    """Create a RecoveryManager."""
    return RecoveryManager(persistence, retry_controller)


@pytest_asyncio.fixture
async def scheduler(
    temp_db_path,
    settings,
    page_provider,
    credentials,
    notifier,
    artifact_sink,
    agent_script,
):
    """Started SchedulerService on scripted agents; dispatching is left off."""
    service = SchedulerService.create(
        db_path=temp_db_path,
        page_provider=page_provider,
        settings=settings,
        credentials=credentials,
        notifier=notifier,
        artifact_sink=artifact_sink,
        agent_factories=scripted_factories(agent_script),
    )
    await service.start()
    yield service
    await service.stop()


# =============================================================================
# Job Factory Fixtures
# =============================================================================


@pytest.fixture
def create_job(persistence: PersistenceAdapter) -> Callable:
    """
    Factory fixture for creating jobs directly in the store.

    Returns a function that creates jobs with specified parameters.
    """

    def _create(
        instructions: str = "A cat surfing at sunset",
        targets: list = None,
        max_retries: int = 3,
        status: JobStatus = JobStatus.PENDING,
        **patch,
    ) -> Job:
        job = Job.create(
            spec=ProductionSpec(instructions=instructions),
            targets=targets or [],
            max_retries=max_retries,
        )
        persistence.create_job(job)

        if status == JobStatus.PROCESSING:
            job = persistence.atomic_claim_job(job.job_id)
        elif status in (JobStatus.FAILED, JobStatus.COMPLETED):
            persistence.atomic_claim_job(job.job_id)
            job = persistence.transition_job(job.job_id, JobStatus.PROCESSING, status)
        elif status == JobStatus.CANCELLED:
            job = persistence.transition_job(job.job_id, JobStatus.PENDING, status)

        if patch:
            job = persistence.update_job(job.job_id, **patch)
        return job

    return _create


# =============================================================================
# Assertion Helpers
# =============================================================================


def assert_job_status(persistence: PersistenceAdapter, job_id: str, expected: JobStatus):
    """Assert a job has the expected status."""
    job = persistence.get_job(job_id)
    assert job is not None, f"Job {job_id} not found"
    assert job.status == expected, f"Expected {expected}, got {job.status}"


def assert_queue_order(persistence: PersistenceAdapter, expected_job_ids: list):
    """Assert the pending queue contains jobs in expected order."""
    actual_ids = [j.job_id for j in persistence.list_pending()]
    assert actual_ids == expected_job_ids, f"Expected order {expected_job_ids}, got {actual_ids}"
