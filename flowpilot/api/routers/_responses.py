"""
Translation of orchestrator Responses into HTTP results.

The orchestrator answers every command with a Response carrying a stable
error code; routers map that code to an HTTP status here.
"""

from typing import Any

from fastapi import HTTPException

from ...channel import Response

STATUS_BY_ERROR_CODE = {
    "JOB_NOT_FOUND": 404,
    "VALIDATION_ERROR": 422,
    "INVALID_TRANSITION": 409,
    "INVALID_OPERATION": 409,
    "CONCURRENCY_VIOLATION": 409,
    "RETRY_LIMIT_REACHED": 409,
    "RATE_LIMITED": 429,
    "QUEUE_FULL": 503,
    "TARGET_UNAVAILABLE": 503,
    "CHANNEL_TIMEOUT": 504,
}


def unwrap(response: Response) -> Any:
    """
    Return the response data, or raise the matching HTTPException.

    Raises:
        HTTPException: With the status mapped from the error code (500 if unknown)
    """
    if response.success:
        return response.data
    raise HTTPException(
        status_code=STATUS_BY_ERROR_CODE.get(response.error_code, 500),
        detail={"error": response.error, "error_code": response.error_code},
    )
