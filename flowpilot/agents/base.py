"""
Automation agent base class.

An agent drives one external page. Its capability surface is:
- start(payload): begin one command in the background (rejects when busy)
- cancel(): best-effort stop of the active command
- on_event(handler): subscribe to progress and terminal events

Each started command ends in exactly one terminal event (success with a
result, or failure with a reason and error code), preceded by zero or more
progress events. A cancelled command emits no terminal event; the scheduler
has already settled the job when it asks an agent to cancel.

Subclasses implement perform() and call act() before every page interaction.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..channel import Message, MessageChannel, MessageType, Response
from ..errors import AgentBusyError, ChannelError, FlowpilotError
from ..ratelimit import ActionPacer
from .page import PageDriver

logger = logging.getLogger(__name__)

EventHandler = Callable[[Message], Awaitable[None]]

DEFAULT_EVENT_TIMEOUT = 10.0


class AgentState(str, Enum):
    IDLE = "IDLE"
    BUSY = "BUSY"


class AutomationAgent:
    """
    Shared skeleton for per-target agents.

    Class attributes select the message types an agent answers to and emits.
    """

    target: str = "generic"
    start_type: MessageType = MessageType.START_PRODUCTION
    success_type: MessageType = MessageType.PRODUCTION_SUCCEEDED
    failure_type: MessageType = MessageType.PRODUCTION_FAILED

    def __init__(
        self,
        page: PageDriver,
        pacer: Optional[ActionPacer] = None,
        min_action_delay: float = 0.7,
    ):
        self.page = page
        self.pacer = pacer or ActionPacer(min_action_delay)
        self.context: Optional[str] = None
        self._handlers: list[EventHandler] = []
        self._task: Optional[asyncio.Task] = None
        self._active_payload: Optional[dict[str, Any]] = None
        self.commands_started = 0

    # =========================================================================
    # Capability surface
    # =========================================================================

    @property
    def state(self) -> AgentState:
        return AgentState.BUSY if self.busy else AgentState.IDLE

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_event(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def start(self, payload: dict[str, Any]) -> asyncio.Task:
        """
        Begin a command in the background.

        Raises:
            AgentBusyError: If another command is active
        """
        if self.busy:
            raise AgentBusyError(self.context or self.target)
        self._active_payload = dict(payload)
        self.commands_started += 1
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._active_payload),
            name=f"agent:{self.context or self.target}:{payload.get('job_id')}",
        )
        return self._task

    async def cancel(self) -> bool:
        """
        Stop the active command, if any, and try to stop it on the page.

        Returns:
            True if a command was active
        """
        if not self.busy:
            return False
        task = self._task
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await self.cancel_on_page()
        return True

    def status(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "context": self.context,
            "state": self.state.value,
            "job_id": (self._active_payload or {}).get("job_id") if self.busy else None,
            "commands_started": self.commands_started,
        }

    # =========================================================================
    # Channel binding
    # =========================================================================

    def attach(
        self,
        channel: MessageChannel,
        context: str,
        orchestrator_context: str = "orchestrator",
        event_timeout: float = DEFAULT_EVENT_TIMEOUT,
    ) -> None:
        """Register this agent as `context` and forward its events to the orchestrator."""
        self.context = context

        async def forward(event: Message) -> None:
            try:
                response = await channel.send(orchestrator_context, event, timeout=event_timeout)
            except ChannelError as e:
                # The orchestrator's own job timeout covers a lost terminal event
                logger.warning(f"[{context}] Could not deliver {event.type.value}: {e}")
                return
            if not response.success:
                logger.warning(
                    f"[{context}] Orchestrator rejected {event.type.value}: {response.error}"
                )

        self.on_event(forward)
        channel.register(context, self.handle_message)

    async def handle_message(self, message: Message) -> Response:
        if message.type == self.start_type:
            self.start(message.payload)
            return Response.ok({"accepted": True, "context": self.context})
        if message.type == MessageType.CANCEL:
            cancelled = await self.cancel()
            return Response.ok({"cancelled": cancelled})
        if message.type == MessageType.GET_STATUS:
            return Response.ok(self.status())
        return Response.fail(
            f"{self.target} agent does not handle {message.type.value}",
            "UNSUPPORTED_MESSAGE",
        )

    # =========================================================================
    # Command execution
    # =========================================================================

    async def _run(self, payload: dict[str, Any]) -> None:
        job_id = payload.get("job_id")
        correlation = {"job_id": job_id, "attempt": payload.get("attempt"), "target": self.target}
        logger.info(f"[{self.context}] Starting {self.start_type.value} for job {job_id}")

        try:
            result = await self.perform(payload)
        except asyncio.CancelledError:
            logger.info(f"[{self.context}] Command for job {job_id} cancelled")
            raise
        except FlowpilotError as e:
            logger.warning(f"[{self.context}] Job {job_id} failed: {e} ({e.code})")
            await self._emit(self.failure_type, {**correlation, "error": str(e), "error_code": e.code})
        except Exception as e:
            logger.exception(f"[{self.context}] Unexpected error for job {job_id}: {e}")
            await self._emit(
                self.failure_type,
                {**correlation, "error": f"Agent error: {e}", "error_code": "AGENT_ERROR"},
            )
        else:
            logger.info(f"[{self.context}] Job {job_id} succeeded")
            await self._emit(self.success_type, {**correlation, **result})

    async def emit_progress(self, payload: dict[str, Any], progress: int) -> None:
        await self._emit(
            MessageType.PROGRESS,
            {
                "job_id": payload.get("job_id"),
                "attempt": payload.get("attempt"),
                "target": self.target,
                "progress": progress,
            },
        )

    async def _emit(self, event_type: MessageType, payload: dict[str, Any]) -> None:
        event = Message(type=event_type, payload=payload, sender=self.context)
        for handler in list(self._handlers):
            await handler(event)

    async def act(self) -> None:
        """Wait out the minimum inter-action delay before touching the page."""
        await self.pacer.wait()

    async def perform(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Run one command against the page and return the success payload."""
        raise NotImplementedError

    async def cancel_on_page(self) -> None:
        """Best-effort stop of the external process; default does nothing."""
        return None
