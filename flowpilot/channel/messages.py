"""
Channel message envelopes.

A Message is a typed request; exactly one Response is expected per request.
Events emitted by agents travel as Messages too and are acknowledged with a
Response, but callers correlate them by the job id in the payload, never by
arrival order.
"""

import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..errors import FlowpilotError


class MessageType(str, Enum):
    """Message type tags."""

    # Control surface -> orchestrator
    CREATE_JOB = "CREATE_JOB"
    START_ALL = "START_ALL"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    CANCEL_JOB = "CANCEL_JOB"
    RETRY_JOB = "RETRY_JOB"
    DISPATCH_JOB = "DISPATCH_JOB"
    GET_JOB = "GET_JOB"
    LIST_JOBS = "LIST_JOBS"
    GET_STATS = "GET_STATS"

    # Orchestrator -> agent
    START_PRODUCTION = "START_PRODUCTION"
    DISTRIBUTE = "DISTRIBUTE"
    CANCEL = "CANCEL"
    GET_STATUS = "GET_STATUS"

    # Agent -> orchestrator
    PROGRESS = "PROGRESS"
    PRODUCTION_SUCCEEDED = "PRODUCTION_SUCCEEDED"
    PRODUCTION_FAILED = "PRODUCTION_FAILED"
    DISTRIBUTION_SUCCEEDED = "DISTRIBUTION_SUCCEEDED"
    DISTRIBUTION_FAILED = "DISTRIBUTION_FAILED"


AGENT_EVENT_TYPES = frozenset({
    MessageType.PROGRESS,
    MessageType.PRODUCTION_SUCCEEDED,
    MessageType.PRODUCTION_FAILED,
    MessageType.DISTRIBUTION_SUCCEEDED,
    MessageType.DISTRIBUTION_FAILED,
})


def _new_message_id() -> str:
    return str(uuid.uuid4())


class Message(BaseModel):
    """Request envelope."""

    type: MessageType = Field(..., description="Message type tag")
    payload: dict[str, Any] = Field(default_factory=dict, description="Type-specific payload")
    message_id: str = Field(default_factory=_new_message_id, description="Correlation id")
    sender: Optional[str] = Field(default=None, description="Sending context, if known")


class Response(BaseModel):
    """Single response to a Message."""

    success: bool = Field(..., description="Whether the request succeeded")
    data: Optional[Any] = Field(default=None, description="Result data on success")
    error: Optional[str] = Field(default=None, description="Human-readable error")
    error_code: Optional[str] = Field(default=None, description="Stable error code")
    correlation_id: Optional[str] = Field(default=None, description="message_id of the request")

    @classmethod
    def ok(cls, data: Any = None) -> "Response":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, error_code: str = "INTERNAL_ERROR") -> "Response":
        return cls(success=False, error=error, error_code=error_code)

    @classmethod
    def from_exception(cls, exc: FlowpilotError) -> "Response":
        return cls(success=False, error=str(exc), error_code=exc.code)
