"""
Scheduler Service - Main entry point for the Job Scheduler.

This service orchestrates all scheduler components:
- PersistenceAdapter (storage)
- QueueManager (queue operations)
- Dispatcher (dispatch loop, in-flight slots, agent events, distribution)
- RetryController (retry management)
- RecoveryManager (crash recovery)
- PageManager (agent contexts on browser pages)

It registers itself on the message channel as the "orchestrator" context:
control messages and agent events both arrive there, one at a time.

Usage:
    service = SchedulerService.create(db_path, page_provider, settings=settings)
    await service.start()
    # ... control messages arrive over the channel ...
    await service.stop()
"""

import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from ..agents.page import PageProvider
from ..agents.pages import AgentFactory, PageManager
from ..channel import AGENT_EVENT_TYPES, Message, MessageChannel, MessageType, Response
from ..config import SchedulerSettings
from ..errors import InvalidOperationError, ValidationError
from ..infra.artifacts import ArtifactSink, DownloadArtifactSink
from ..infra.background import BackgroundTasks
from ..infra.credentials import CredentialProvider, EnvCredentialProvider
from ..infra.notifications import NotificationSink, build_notifier
from .dispatcher import Dispatcher, build_rate_limiter
from .entities import Job, JobStatus
from .inflight import InFlightRegistry
from .persistence import PersistenceAdapter
from .queue_manager import QueueManager
from .recovery import RecoveryManager
from .retry_controller import RetryController

logger = logging.getLogger(__name__)

ORCHESTRATOR_CONTEXT = "orchestrator"
SHUTDOWN_DRAIN_TIMEOUT = 5.0


class SchedulerService:
    """
    Main service that coordinates all scheduler components.

    Provides:
    - Component initialization and wiring
    - Startup with recovery
    - Graceful shutdown
    - Command handling for the orchestrator context
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        queue_manager: QueueManager,
        dispatcher: Dispatcher,
        retry_controller: RetryController,
        recovery_manager: RecoveryManager,
        page_manager: PageManager,
        channel: MessageChannel,
        background: BackgroundTasks,
    ):
        """
        Initialize SchedulerService with all components.

        Use SchedulerService.create() for convenient construction.
        """
        self.persistence = persistence
        self.queue_manager = queue_manager
        self.dispatcher = dispatcher
        self.retry_controller = retry_controller
        self.recovery_manager = recovery_manager
        self.page_manager = page_manager
        self.channel = channel
        self.background = background

        self._started = False

    @classmethod
    def create(
        cls,
        db_path: str | Path,
        page_provider: PageProvider,
        settings: Optional[SchedulerSettings] = None,
        channel: Optional[MessageChannel] = None,
        credentials: Optional[CredentialProvider] = None,
        notifier: Optional[NotificationSink] = None,
        artifact_sink: Optional[ArtifactSink] = None,
        agent_factories: Optional[Mapping[str, AgentFactory]] = None,
        agent_options: Optional[Mapping[str, dict]] = None,
    ) -> "SchedulerService":
        """
        Create a SchedulerService with all components wired together.

        Args:
            db_path: Path to SQLite database (":memory:" for tests)
            page_provider: Opens browser pages for new agents
            settings: Scheduler tunables (defaults from the environment)
            channel: Message channel shared with the control surface
            credentials: Credential source (defaults to environment variables)
            notifier: Notification sink (defaults to webhook or log)
            artifact_sink: Export sink (defaults to the downloads directory)
            agent_factories: Agent class per target (defaults to the built-in agents)
            agent_options: Extra keyword arguments per target's agent

        Returns:
            Configured SchedulerService
        """
        settings = settings or SchedulerSettings.from_env()
        channel = channel or MessageChannel(default_timeout=settings.ack_timeout)
        background = BackgroundTasks()

        persistence = PersistenceAdapter(db_path)
        queue_manager = QueueManager(
            persistence,
            max_queue_size=settings.max_queue_size,
            default_max_retries=settings.default_max_retries,
        )
        retry_controller = RetryController(
            persistence,
            auto_retry=settings.auto_retry,
            base_delay_seconds=settings.retry_base_delay,
        )
        recovery_manager = RecoveryManager(persistence, retry_controller)
        page_manager = PageManager(
            channel,
            page_provider,
            agent_factories=agent_factories,
            orchestrator_context=ORCHESTRATOR_CONTEXT,
            min_action_delay=settings.min_action_delay,
            agent_options=agent_options,
        )
        dispatcher = Dispatcher(
            persistence=persistence,
            queue_manager=queue_manager,
            channel=channel,
            page_manager=page_manager,
            retry_controller=retry_controller,
            credentials=credentials or EnvCredentialProvider(),
            settings=settings,
            rate_limiter=build_rate_limiter(settings),
            notifier=notifier or build_notifier(settings.webhook_url),
            artifact_sink=artifact_sink or DownloadArtifactSink(settings.downloads_dir),
            in_flight=InFlightRegistry(settings.max_concurrent),
            background=background,
        )

        return cls(
            persistence=persistence,
            queue_manager=queue_manager,
            dispatcher=dispatcher,
            retry_controller=retry_controller,
            recovery_manager=recovery_manager,
            page_manager=page_manager,
            channel=channel,
            background=background,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, run_recovery: bool = True, start_dispatching: bool = False) -> dict:
        """
        Register the orchestrator context and optionally start dispatching.

        The dispatcher stays stopped until START_ALL unless start_dispatching
        is set.

        Returns:
            Recovery statistics if recovery was run
        """
        if self._started:
            raise RuntimeError("Scheduler already started")

        logger.info("Starting scheduler service...")

        recovery_stats = {}
        if run_recovery:
            recovery_stats = self.recovery_manager.recover_on_startup()

        self.channel.register(ORCHESTRATOR_CONTEXT, self.handle_message)
        self._started = True
        if start_dispatching:
            self.dispatcher.start()

        logger.info("Scheduler service started")
        return recovery_stats

    async def stop(self) -> None:
        """Stop dispatching, close agent pages and flush side effects."""
        if not self._started:
            return

        logger.info("Stopping scheduler service...")
        await self.dispatcher.stop()
        await self.page_manager.close_all()
        await self.background.drain(timeout=SHUTDOWN_DRAIN_TIMEOUT)
        await self.background.cancel_all()
        await self.channel.unregister(ORCHESTRATOR_CONTEXT)
        await self.page_manager.page_provider.close()
        self.persistence.close()
        self._started = False
        logger.info("Scheduler service stopped")

    @property
    def is_running(self) -> bool:
        return self._started and self.dispatcher.is_running()

    # =========================================================================
    # Orchestrator context
    # =========================================================================

    async def handle_message(self, message: Message) -> Response:
        """
        Handle one message addressed to the orchestrator.

        Handlers never wait on agents, so agent events queued behind a
        command are handled promptly.
        """
        if message.type in AGENT_EVENT_TYPES:
            return await self.dispatcher.handle_agent_event(message)

        handler = self._command_handlers.get(message.type)
        if handler is None:
            return Response.fail(f"Unsupported message type {message.type.value}", "UNSUPPORTED_MESSAGE")
        return Response.ok(handler(self, message.payload))

    def _create(self, payload: dict[str, Any]) -> dict:
        job = self.create_job(
            spec=payload.get("spec") or {},
            targets=payload.get("targets"),
            caption=payload.get("caption"),
            hashtags=payload.get("hashtags"),
            scheduled_at=payload.get("scheduled_at"),
            max_retries=payload.get("max_retries"),
        )
        return job.to_dict()

    def _start_all(self, payload: dict[str, Any]) -> dict:
        self.dispatcher.activate()
        self.dispatcher.request_tick()
        return self.get_stats()

    def _pause(self, payload: dict[str, Any]) -> dict:
        self.dispatcher.pause()
        return self.get_stats()

    def _resume(self, payload: dict[str, Any]) -> dict:
        self.dispatcher.resume()
        return self.get_stats()

    def _cancel(self, payload: dict[str, Any]) -> dict:
        return self.cancel_job(_require_job_id(payload)).to_dict()

    def _retry(self, payload: dict[str, Any]) -> dict:
        return self.retry_job(_require_job_id(payload)).to_dict()

    def _dispatch(self, payload: dict[str, Any]) -> dict:
        return self.dispatcher.dispatch_nowait(_require_job_id(payload)).to_dict()

    def _get_job(self, payload: dict[str, Any]) -> dict:
        return self.persistence.require_job(_require_job_id(payload)).to_dict()

    def _list_jobs(self, payload: dict[str, Any]) -> dict:
        status = payload.get("status")
        try:
            status = JobStatus(status) if status else None
        except ValueError:
            raise ValidationError(f"Unknown status: {status}", field="status") from None
        limit = int(payload.get("limit") or 50)
        offset = int(payload.get("offset") or 0)
        jobs = self.persistence.list_jobs(status=status, limit=limit, offset=offset)
        return {"jobs": [job.to_dict() for job in jobs], "limit": limit, "offset": offset}

    def _stats(self, payload: dict[str, Any]) -> dict:
        return self.get_stats()

    _command_handlers = {
        MessageType.CREATE_JOB: _create,
        MessageType.START_ALL: _start_all,
        MessageType.PAUSE: _pause,
        MessageType.RESUME: _resume,
        MessageType.CANCEL_JOB: _cancel,
        MessageType.RETRY_JOB: _retry,
        MessageType.DISPATCH_JOB: _dispatch,
        MessageType.GET_JOB: _get_job,
        MessageType.LIST_JOBS: _list_jobs,
        MessageType.GET_STATS: _stats,
    }

    # =========================================================================
    # Job Operations
    # =========================================================================

    def create_job(
        self,
        spec: dict,
        targets: Optional[list[str]] = None,
        caption: Optional[str] = None,
        hashtags: Optional[list[str]] = None,
        scheduled_at: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> Job:
        """Validate and enqueue a new job."""
        job = self.queue_manager.enqueue(
            spec,
            targets=targets,
            caption=caption,
            hashtags=hashtags,
            scheduled_at=scheduled_at,
            max_retries=max_retries,
        )
        self.dispatcher.request_tick()
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.persistence.get_job(job_id)

    def cancel_job(self, job_id: str) -> Job:
        return self.dispatcher.cancel(job_id)

    def retry_job(self, job_id: str) -> Job:
        return self.dispatcher.retry(job_id)

    def get_stats(self) -> dict:
        stats = self.dispatcher.get_stats()
        stats["is_running"] = self.is_running
        return stats


def _require_job_id(payload: dict[str, Any]) -> str:
    job_id = payload.get("job_id")
    if not job_id:
        raise InvalidOperationError("job_id is required")
    return job_id

