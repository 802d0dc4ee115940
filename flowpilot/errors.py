"""
Error taxonomy shared by the scheduler, the message channel and the agents.

Every error carries a stable `code` (persisted on failed jobs and sent in
channel responses) and a `retryable` flag consulted by automatic retry.
Agents never retry on their own; they report the code and the scheduler
decides.
"""

from typing import Optional


class FlowpilotError(Exception):
    """Base exception for all flowpilot errors."""

    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# =============================================================================
# Job creation
# =============================================================================


class ValidationError(FlowpilotError):
    """Raised when a job specification is rejected before creation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class CapacityError(FlowpilotError):
    """Raised when the queue (or the in-flight set) is full."""

    code = "QUEUE_FULL"


class RateLimitedError(FlowpilotError):
    """Raised when an explicitly requested action is gated by a rate limit."""

    code = "RATE_LIMITED"
    retryable = True

    def __init__(self, action_class: str, retry_after: float):
        self.action_class = action_class
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit for '{action_class}' reached, retry after {retry_after:.1f}s"
        )


# =============================================================================
# Dispatch and execution
# =============================================================================


class DispatchError(FlowpilotError):
    """Raised when the target context could not be reached or opened."""

    code = "DISPATCH_ERROR"
    retryable = True


class AuthError(FlowpilotError):
    """Raised when the credential for a target is missing or expired."""

    code = "NOT_AUTHENTICATED"


class PreconditionTimeout(FlowpilotError):
    """A required page element never became observable."""

    code = "PRECONDITION_TIMEOUT"
    retryable = True


class CompletionTimeout(FlowpilotError):
    """The external process neither succeeded nor failed within its bound."""

    code = "COMPLETION_TIMEOUT"
    retryable = True


class ExternalError(FlowpilotError):
    """The target page reported its own error."""

    code = "EXTERNAL_ERROR"
    retryable = True


class Cancelled(FlowpilotError):
    """User-initiated cancellation."""

    code = "CANCELLED"


class AgentBusyError(FlowpilotError):
    """An agent received a command while another one was active."""

    code = "AGENT_BUSY"
    retryable = True

    def __init__(self, context: str = "agent"):
        super().__init__(f"Agent {context} is busy with another command")


# =============================================================================
# Message channel
# =============================================================================


class ChannelError(FlowpilotError):
    """Base class for cross-context delivery failures."""

    code = "CHANNEL_ERROR"
    retryable = True


class TargetUnavailableError(ChannelError):
    """The target context is not registered or not ready."""

    code = "TARGET_UNAVAILABLE"

    def __init__(self, context: str):
        self.context = context
        super().__init__(f"Target context unavailable: {context}")


class ChannelTimeoutError(ChannelError):
    """No response arrived before the per-call timeout."""

    code = "CHANNEL_TIMEOUT"

    def __init__(self, context: str, message_type: str, timeout: float):
        self.context = context
        self.message_type = message_type
        self.timeout = timeout
        super().__init__(
            f"No response from {context} to {message_type} within {timeout}s"
        )


# =============================================================================
# Scheduler invariants
# =============================================================================


class SchedulerError(FlowpilotError):
    """Base exception for scheduler invariant violations."""

    code = "SCHEDULER_ERROR"


class InvalidOperationError(SchedulerError):
    """
    Raised when an operation violates scheduler invariants.

    Examples:
    - Changing status through a plain field patch
    - Retrying a job that is not failed
    """

    code = "INVALID_OPERATION"


class InvalidTransitionError(InvalidOperationError):
    """Raised when a job state transition is not allowed."""

    code = "INVALID_TRANSITION"

    def __init__(self, job_id: str, from_status: str, to_status: str):
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for job {job_id}: {from_status} -> {to_status}"
        )


class RetryLimitError(InvalidOperationError):
    """Raised when a retry is requested for a job at its retry cap."""

    code = "RETRY_LIMIT_REACHED"

    def __init__(self, job_id: str, retry_count: int, max_retries: int):
        self.job_id = job_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Job {job_id} reached its retry limit ({retry_count}/{max_retries})"
        )


class JobNotFoundError(SchedulerError):
    """Raised when a requested job does not exist."""

    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class ConcurrencyViolationError(SchedulerError):
    """
    Raised when a concurrent modification is detected.

    Used for guarded transitions where the job was no longer in the expected
    status, and for duplicate dispatch of an in-flight job.
    """

    code = "CONCURRENCY_VIOLATION"

    def __init__(self, job_id: str, expected_status: str, actual_status: str):
        self.job_id = job_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Concurrency violation for job {job_id}: "
            f"expected status '{expected_status}', got '{actual_status}'"
        )


# =============================================================================
# Code lookup
# =============================================================================

_ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        DispatchError,
        AuthError,
        PreconditionTimeout,
        CompletionTimeout,
        ExternalError,
        Cancelled,
        ChannelError,
    )
}

RETRYABLE_CODES = frozenset({
    DispatchError.code,
    PreconditionTimeout.code,
    CompletionTimeout.code,
    ExternalError.code,
    AgentBusyError.code,
    ChannelError.code,
    TargetUnavailableError.code,
    ChannelTimeoutError.code,
    RateLimitedError.code,
    "JOB_TIMEOUT",
    "AGENT_ERROR",
})


def is_retryable_code(code: Optional[str]) -> bool:
    """Whether a persisted error code is eligible for automatic retry."""
    return code in RETRYABLE_CODES


def error_from_code(code: Optional[str], message: str) -> FlowpilotError:
    """
    Rebuild an exception from a code received over the channel.

    Unknown codes become ExternalError carrying the original code.
    """
    cls = _ERRORS_BY_CODE.get(code or "")
    if cls is None:
        return ExternalError(message, code=code or ExternalError.code)
    return cls(message)
