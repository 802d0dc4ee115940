"""
Bounded poll-until-condition helpers shared by every automation agent.

The external page is an oracle we can only observe; these helpers bound how
long we observe it. Every loop has a deadline, so an unresponsive page always
ends in PreconditionTimeout or CompletionTimeout.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import CompletionTimeout, ExternalError, PreconditionTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_PRECONDITION_TIMEOUT = 10.0

Probe = Callable[[], Awaitable[Optional[T]]]


async def wait_for(
    probe: Probe,
    timeout: float = DEFAULT_PRECONDITION_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
    message: str = "Required page element not found",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Poll `probe` until it returns a truthy value.

    Returns:
        The first truthy probe result

    Raises:
        PreconditionTimeout: If the deadline passes first
    """
    deadline = clock() + timeout
    while True:
        value = await probe()
        if value:
            return value
        if clock() >= deadline:
            raise PreconditionTimeout(message)
        await sleep(interval)


async def poll_until_outcome(
    success: Probe,
    error: Probe,
    timeout: float,
    interval: float = 2.0,
    progress: Optional[Probe] = None,
    on_progress: Optional[Callable[[int], Awaitable[None]]] = None,
    timeout_message: str = "Operation timed out",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Poll for a terminal outcome.

    Each round checks, in order: the success probe (returns the artifact),
    the error probe (returns the page's error text), then the optional
    progress probe. Progress is reported only when it increases.

    Returns:
        The success probe's result

    Raises:
        ExternalError: If the page reports an error
        CompletionTimeout: If neither outcome appears before the deadline
    """
    deadline = clock() + timeout
    last_progress = -1

    while True:
        result = await success()
        if result:
            return result

        page_error = await error()
        if page_error:
            raise ExternalError(str(page_error))

        if progress is not None and on_progress is not None:
            value = await progress()
            if value is not None and value > last_progress:
                last_progress = value
                await on_progress(value)

        if clock() >= deadline:
            raise CompletionTimeout(timeout_message)
        await sleep(interval)
