"""
In-flight job registry.

The registry is the only record of which dispatch slots are in use. An entry
is keyed by job id and tagged with the dispatch attempt, so a late event or
timer from an earlier attempt of the same job can be told apart and ignored.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional

from ..errors import CapacityError, ConcurrencyViolationError


@dataclass
class InFlightEntry:
    """One occupied dispatch slot."""

    job_id: str
    attempt: int
    context: Optional[str] = None
    started: float = field(default_factory=time.monotonic)
    timeout_handle: Optional[asyncio.TimerHandle] = None
    # Rate-limit instants recorded at claim, refunded if nothing reaches the agent
    quota_marks: Dict[str, float] = field(default_factory=dict)

    def cancel_timeout(self) -> None:
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None


class InFlightRegistry:
    """Bounded set of in-flight jobs."""

    def __init__(self, limit: int = 2):
        if limit < 1:
            raise ValueError("In-flight limit must be at least 1")
        self.limit = limit
        self._entries: dict[str, InFlightEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._entries

    def __iter__(self) -> Iterator[InFlightEntry]:
        return iter(list(self._entries.values()))

    @property
    def job_ids(self) -> set[str]:
        return set(self._entries)

    def has_capacity(self) -> bool:
        return len(self._entries) < self.limit

    def add(self, job_id: str, attempt: int) -> InFlightEntry:
        """
        Occupy a slot.

        Raises:
            ConcurrencyViolationError: If the job already holds a slot
            CapacityError: If every slot is taken
        """
        if job_id in self._entries:
            raise ConcurrencyViolationError(job_id, "pending", "processing")
        if not self.has_capacity():
            raise CapacityError(f"All {self.limit} in-flight slots are in use")
        entry = InFlightEntry(job_id=job_id, attempt=attempt)
        self._entries[job_id] = entry
        return entry

    def get(self, job_id: str) -> Optional[InFlightEntry]:
        return self._entries.get(job_id)

    def matches(self, job_id: str, attempt: Optional[int]) -> bool:
        """True when the job holds a slot for this attempt (any attempt if None)."""
        entry = self._entries.get(job_id)
        if entry is None:
            return False
        return attempt is None or entry.attempt == attempt

    def release(self, job_id: str, attempt: Optional[int] = None) -> Optional[InFlightEntry]:
        """
        Free the slot held by a job.

        With an attempt given, only that attempt's slot is released.

        Returns:
            The released entry, or None if nothing was released
        """
        if not self.matches(job_id, attempt):
            return None
        entry = self._entries.pop(job_id)
        entry.cancel_timeout()
        return entry

    def clear(self) -> list[InFlightEntry]:
        entries = list(self._entries.values())
        for entry in entries:
            entry.cancel_timeout()
        self._entries.clear()
        return entries
