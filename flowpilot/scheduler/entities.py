"""
Scheduler Domain Entities.

- ProductionSpec: resolved production parameters for one video
- Job: single unit of production + optional distribution work
- DistributionRecord: per-target evidence of a successful delivery

Timestamps are ISO-8601 UTC strings with microseconds and a trailing "Z" so
that they sort lexicographically in SQLite.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional
import uuid


class JobStatus(str, Enum):
    """
    Job status values.

    - PENDING: Waiting for dispatch
    - PROCESSING: Dispatched to an automation agent
    - COMPLETED: Artifact produced
    - FAILED: Attempt failed; error recorded
    - CANCELLED: Cancelled by the user
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

OUTCOME_PARTIAL_DISTRIBUTION = "completed_with_distribution_failures"


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def _format_iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def now_iso() -> str:
    """Get current UTC time as ISO format string."""
    return _format_iso(datetime.now(timezone.utc))


def iso_after(seconds: float) -> str:
    """ISO timestamp `seconds` from now."""
    return _format_iso(datetime.now(timezone.utc) + timedelta(seconds=seconds))


@dataclass
class ProductionSpec:
    """
    Resolved production parameters.

    instructions is the free-form prompt; the rest are structured settings
    applied on the production page when the page offers them.
    """

    instructions: str
    duration: int = 15
    aspect_ratio: str = "9:16"
    style: str = "dynamic"
    include_music: bool = True
    include_voiceover: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ProductionSpec":
        return cls(
            instructions=data["instructions"],
            duration=int(data.get("duration", 15)),
            aspect_ratio=data.get("aspect_ratio", "9:16"),
            style=data.get("style", "dynamic"),
            include_music=bool(data.get("include_music", True)),
            include_voiceover=bool(data.get("include_voiceover", False)),
        )


@dataclass
class DistributionRecord:
    """Delivery of a completed job's artifact to one target."""

    job_id: str
    target: str
    delivery_id: str
    delivered_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Job:
    """
    Single unit of work.

    Mutability rules:
    - job_id, spec, targets, created_at: Immutable
    - status: changed only through guarded transitions
    - progress: monotonic while PROCESSING
    - artifact_url: set only on COMPLETED; error/error_code only on FAILED or CANCELLED
    - attempt: incremented on every dispatch; events from older attempts are ignored
    """

    job_id: str
    spec: ProductionSpec
    status: JobStatus = JobStatus.PENDING
    targets: list[str] = field(default_factory=list)
    caption: Optional[str] = None
    hashtags: list[str] = field(default_factory=list)
    progress: int = 0
    artifact_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    attempt: int = 0
    distribution_failures: dict[str, str] = field(default_factory=dict)
    distributions: list[DistributionRecord] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    scheduled_at: Optional[str] = None

    @classmethod
    def create(
        cls,
        spec: ProductionSpec,
        targets: Optional[list[str]] = None,
        caption: Optional[str] = None,
        hashtags: Optional[list[str]] = None,
        max_retries: int = 3,
        scheduled_at: Optional[str] = None,
    ) -> "Job":
        """Create a new Job with generated ID and PENDING status."""
        now = now_iso()
        return cls(
            job_id=generate_uuid(),
            spec=spec,
            status=JobStatus.PENDING,
            targets=list(targets or []),
            caption=caption,
            hashtags=list(hashtags or []),
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
            scheduled_at=scheduled_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def outcome(self) -> str:
        """Status, with partial distribution failure surfaced distinctly."""
        if self.status == JobStatus.COMPLETED and self.distribution_failures:
            return OUTCOME_PARTIAL_DISTRIBUTION
        return self.status.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "outcome": self.outcome,
            "spec": self.spec.to_dict(),
            "targets": list(self.targets),
            "caption": self.caption,
            "hashtags": list(self.hashtags),
            "progress": self.progress,
            "artifact_url": self.artifact_url,
            "error": self.error,
            "error_code": self.error_code,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "attempt": self.attempt,
            "distribution_failures": dict(self.distribution_failures),
            "distributions": [record.to_dict() for record in self.distributions],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "scheduled_at": self.scheduled_at,
        }
