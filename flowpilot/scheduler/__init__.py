"""
Job Scheduler Core Module.

Jobs move pending -> processing -> completed | failed | cancelled under a
guarded state machine; the Dispatcher bounds how many are in flight and the
RetryController is the only place retries are decided.
"""

from .entities import (
    JobStatus,
    Job,
    ProductionSpec,
    DistributionRecord,
    OUTCOME_PARTIAL_DISTRIBUTION,
)
from .state_machine import can_transition, validate_transition
from .persistence import PersistenceAdapter
from .queue_manager import QueueManager
from .inflight import InFlightEntry, InFlightRegistry
from .retry_controller import RetryController
from .recovery import RecoveryManager
from .dispatcher import Dispatcher, DispatcherState, build_rate_limiter
from .service import ORCHESTRATOR_CONTEXT, SchedulerService

__all__ = [
    # Entities
    "JobStatus",
    "Job",
    "ProductionSpec",
    "DistributionRecord",
    "OUTCOME_PARTIAL_DISTRIBUTION",
    # State machine
    "can_transition",
    "validate_transition",
    # Components
    "PersistenceAdapter",
    "QueueManager",
    "InFlightEntry",
    "InFlightRegistry",
    "RetryController",
    "RecoveryManager",
    "Dispatcher",
    "DispatcherState",
    "build_rate_limiter",
    "ORCHESTRATOR_CONTEXT",
    "SchedulerService",
]
