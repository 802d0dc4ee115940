"""
Command surface for the scheduler.

ControlClient turns user commands into messages for the orchestrator
context. Every call returns the orchestrator's Response acknowledgment; a
missing orchestrator or a slow one surfaces as a failed Response carrying
the channel error code rather than an exception.
"""

import logging
from typing import Any, Optional

from .channel import Message, MessageChannel, MessageType, Response
from .errors import ChannelError

logger = logging.getLogger(__name__)

DEFAULT_CONTROL_TIMEOUT = 10.0


class ControlClient:
    """Sends control messages to the orchestrator."""

    def __init__(
        self,
        channel: MessageChannel,
        context: str = "orchestrator",
        timeout: float = DEFAULT_CONTROL_TIMEOUT,
        sender: str = "control",
    ):
        self.channel = channel
        self.context = context
        self.timeout = timeout
        self.sender = sender

    async def _send(self, message_type: MessageType, payload: Optional[dict[str, Any]] = None) -> Response:
        message = Message(type=message_type, payload=payload or {}, sender=self.sender)
        try:
            return await self.channel.send(self.context, message, timeout=self.timeout)
        except ChannelError as e:
            logger.warning(f"[Control] {message_type.value} failed: {e}")
            return Response.from_exception(e)

    async def create(
        self,
        spec: dict[str, Any],
        targets: Optional[list[str]] = None,
        caption: Optional[str] = None,
        hashtags: Optional[list[str]] = None,
        scheduled_at: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> Response:
        return await self._send(
            MessageType.CREATE_JOB,
            {
                "spec": spec,
                "targets": targets,
                "caption": caption,
                "hashtags": hashtags,
                "scheduled_at": scheduled_at,
                "max_retries": max_retries,
            },
        )

    async def start_all(self) -> Response:
        return await self._send(MessageType.START_ALL)

    async def pause(self) -> Response:
        return await self._send(MessageType.PAUSE)

    async def resume(self) -> Response:
        return await self._send(MessageType.RESUME)

    async def cancel(self, job_id: str) -> Response:
        return await self._send(MessageType.CANCEL_JOB, {"job_id": job_id})

    async def retry(self, job_id: str) -> Response:
        return await self._send(MessageType.RETRY_JOB, {"job_id": job_id})

    async def dispatch(self, job_id: str) -> Response:
        return await self._send(MessageType.DISPATCH_JOB, {"job_id": job_id})

    async def get_job(self, job_id: str) -> Response:
        return await self._send(MessageType.GET_JOB, {"job_id": job_id})

    async def list_jobs(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> Response:
        return await self._send(MessageType.LIST_JOBS, {"status": status, "limit": limit, "offset": offset})

    async def stats(self) -> Response:
        return await self._send(MessageType.GET_STATS)
