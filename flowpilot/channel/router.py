"""
In-process message channel between isolated execution contexts.

Each registered context (the orchestrator, the control surface, one context
per automation agent) owns an inbox queue drained by a single worker task, so
messages sent to the same context are handled in send order. Delivery
guarantees:

- send() to an unknown or not-ready context fails immediately with
  TargetUnavailableError
- every send() has a timeout; no response in time raises ChannelTimeoutError
- at most one response per call; a late response is discarded
- the channel never retries
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Tuple

from ..errors import ChannelTimeoutError, FlowpilotError, TargetUnavailableError
from .messages import Message, Response

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT = 10.0

MessageHandler = Callable[[Message], Awaitable[Response]]


@dataclass
class _Endpoint:
    name: str
    handler: MessageHandler
    ready: bool = True
    inbox: "asyncio.Queue[Tuple[Message, asyncio.Future]]" = field(default_factory=asyncio.Queue)
    worker: Optional[asyncio.Task] = None


class MessageChannel:
    """
    Request/response router keyed by context name.

    Must be used from within a running event loop; register() starts the
    context's worker task.
    """

    def __init__(self, default_timeout: float = DEFAULT_SEND_TIMEOUT):
        self.default_timeout = default_timeout
        self._endpoints: Dict[str, _Endpoint] = {}

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, context: str, handler: MessageHandler, ready: bool = True) -> None:
        """
        Register a context and start delivering its messages.

        Raises:
            ValueError: If the context is already registered
        """
        if context in self._endpoints:
            raise ValueError(f"Context already registered: {context}")

        endpoint = _Endpoint(name=context, handler=handler, ready=ready)
        endpoint.worker = asyncio.get_running_loop().create_task(
            self._drain(endpoint), name=f"channel:{context}"
        )
        self._endpoints[context] = endpoint
        logger.debug(f"[Channel] Registered context {context} (ready={ready})")

    async def unregister(self, context: str) -> None:
        """Remove a context. Pending requests to it fail with TargetUnavailableError."""
        endpoint = self._endpoints.pop(context, None)
        if endpoint is None:
            return

        if endpoint.worker is not None:
            endpoint.worker.cancel()
            try:
                await endpoint.worker
            except asyncio.CancelledError:
                pass

        while not endpoint.inbox.empty():
            _, future = endpoint.inbox.get_nowait()
            if not future.done():
                future.set_exception(TargetUnavailableError(context))

        logger.debug(f"[Channel] Unregistered context {context}")

    def mark_ready(self, context: str, ready: bool = True) -> None:
        endpoint = self._endpoints.get(context)
        if endpoint is None:
            raise TargetUnavailableError(context)
        endpoint.ready = ready

    def is_available(self, context: str) -> bool:
        endpoint = self._endpoints.get(context)
        return endpoint is not None and endpoint.ready

    @property
    def contexts(self) -> list[str]:
        return list(self._endpoints)

    async def close(self) -> None:
        """Unregister every context."""
        for context in list(self._endpoints):
            await self.unregister(context)

    # =========================================================================
    # Delivery
    # =========================================================================

    async def send(
        self,
        context: str,
        message: Message,
        timeout: Optional[float] = None,
    ) -> Response:
        """
        Deliver a message and wait for its single response.

        Raises:
            TargetUnavailableError: Context not registered or not ready
            ChannelTimeoutError: No response within timeout
        """
        endpoint = self._endpoints.get(context)
        if endpoint is None or not endpoint.ready:
            raise TargetUnavailableError(context)

        timeout = self.default_timeout if timeout is None else timeout
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        endpoint.inbox.put_nowait((message, future))

        try:
            # shield keeps a late handler from writing into a cancelled future
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"[Channel] {message.type.value} to {context} timed out after {timeout}s"
            )
            raise ChannelTimeoutError(context, message.type.value, timeout) from None

    async def _drain(self, endpoint: _Endpoint) -> None:
        """Worker loop: handle one message at a time, in arrival order."""
        while True:
            message, future = await endpoint.inbox.get()
            response = await self._invoke(endpoint, message)
            response.correlation_id = message.message_id
            if not future.done():
                future.set_result(response)
            else:
                logger.debug(
                    f"[Channel] Dropping late response for {message.type.value} "
                    f"to {endpoint.name}"
                )

    async def _invoke(self, endpoint: _Endpoint, message: Message) -> Response:
        try:
            return await endpoint.handler(message)
        except FlowpilotError as e:
            return Response.from_exception(e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(
                f"[Channel] Handler for {endpoint.name} raised on {message.type.value}: {e}"
            )
            return Response.fail(f"Unhandled error in {endpoint.name}: {e}", "INTERNAL_ERROR")
