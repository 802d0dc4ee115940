"""
Dispatcher for the Job Scheduler.

- Pulls pending jobs in FIFO order and starts them on production agents
- Owns the in-flight registry: the only record of used dispatch slots
- Applies the dispatch / daily production / per-platform rate limits
- Arms a per-job timeout for every dispatch attempt
- Turns agent events into job transitions and runs distribution

Every check and the mutation it guards happen without an await in between:
claiming a job, occupying its slot, recording the rate limit and arming the
timeout is one synchronous step. Releasing a slot, failing the job and
deciding on a retry is another. Events and timers carry the dispatch attempt,
so anything left over from an earlier attempt of the same job is ignored.

What Dispatcher MUST NOT do:
- Modify job parameters after creation
- Drive pages itself (agents do, behind the message channel)
- Decide retry eligibility (RetryController's responsibility)
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..channel import Message, MessageChannel, MessageType, Response
from ..config import PRODUCTION_TARGET, SchedulerSettings
from ..errors import (
    AuthError,
    CapacityError,
    ChannelError,
    CompletionTimeout,
    ConcurrencyViolationError,
    DispatchError,
    FlowpilotError,
    InvalidOperationError,
    InvalidTransitionError,
    RateLimitedError,
    error_from_code,
)
from ..infra.artifacts import ArtifactSink
from ..infra.background import BackgroundTasks
from ..infra.credentials import CredentialProvider
from ..infra.notifications import NotificationSink
from ..ratelimit import (
    DAILY_PRODUCTION_CLASS,
    DISPATCH_CLASS,
    RateLimiter,
    RateLimiterState,
    RateLimitRule,
    distribution_class,
)
from .entities import DistributionRecord, Job, JobStatus, iso_after, now_iso
from .inflight import InFlightRegistry
from .persistence import PersistenceAdapter
from .queue_manager import CANCELLED_BY_USER, QueueManager
from .retry_controller import RetryController

logger = logging.getLogger(__name__)

JOB_TIMEOUT_CODE = "JOB_TIMEOUT"
SCHEDULER_STOPPED = "Scheduler stopped while job was in flight"


class DispatcherState(str, Enum):
    """Dispatcher lifecycle states."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"


def build_rate_limiter(
    settings: SchedulerSettings,
    state: Optional[RateLimiterState] = None,
    clock=time.monotonic,
) -> RateLimiter:
    """Rate limiter with the dispatch, daily production and posting rules."""
    return RateLimiter(
        rules={
            DISPATCH_CLASS: RateLimitRule(min_interval=settings.dispatch_min_interval),
            DAILY_PRODUCTION_CLASS: RateLimitRule(
                max_actions=settings.daily_production_limit, window=24 * 3600
            ),
            "distribute:*": RateLimitRule(max_actions=settings.posts_per_hour, window=3600),
        },
        state=state,
        clock=clock,
    )


class Dispatcher:
    """
    Dispatches pending jobs to production agents and tracks them to a
    terminal state.

    Dispatch cycle (tick):
    1. Stop if paused, stopped, or every slot is taken
    2. Take the oldest eligible pending job not already in flight
    3. Defer (no blocking) while the dispatch or daily quota is exhausted
    4. Claim it and occupy a slot in one synchronous step
    5. Check the credential, lease an agent and send START_PRODUCTION
    6. Loop
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        queue_manager: QueueManager,
        channel: MessageChannel,
        page_manager,
        retry_controller: RetryController,
        credentials: CredentialProvider,
        settings: Optional[SchedulerSettings] = None,
        rate_limiter: Optional[RateLimiter] = None,
        notifier: Optional[NotificationSink] = None,
        artifact_sink: Optional[ArtifactSink] = None,
        in_flight: Optional[InFlightRegistry] = None,
        background: Optional[BackgroundTasks] = None,
        production_target: str = PRODUCTION_TARGET,
    ):
        self.settings = settings or SchedulerSettings()
        self.persistence = persistence
        self.queue_manager = queue_manager
        self.channel = channel
        self.page_manager = page_manager
        self.retry_controller = retry_controller
        self.credentials = credentials
        self.rate_limiter = rate_limiter or build_rate_limiter(self.settings)
        self.notifier = notifier
        self.artifact_sink = artifact_sink
        self.in_flight = in_flight or InFlightRegistry(self.settings.max_concurrent)
        self.background = background or BackgroundTasks()
        self.production_target = production_target

        self._state = DispatcherState.STOPPED
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_lock = asyncio.Lock()
        self._tick_pending = False
        self._distribution_waiters: Dict[Tuple[str, str], asyncio.Future] = {}

    @property
    def state(self) -> DispatcherState:
        return self._state

    def is_running(self) -> bool:
        return self._state == DispatcherState.RUNNING

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the periodic dispatch loop."""
        if self._state != DispatcherState.STOPPED:
            raise RuntimeError(f"Cannot start dispatcher in {self._state.value} state")
        self._state = DispatcherState.RUNNING
        self._loop_task = asyncio.get_running_loop().create_task(
            self._dispatch_loop(), name="dispatcher-loop"
        )
        logger.info("Dispatcher started")

    async def stop(self) -> None:
        """
        Stop dispatching.

        Jobs still in flight are failed as retry-eligible, the same way
        startup recovery treats jobs left processing by a crash.
        """
        if self._state == DispatcherState.STOPPED and not len(self.in_flight):
            return
        logger.info("Stopping dispatcher...")
        self._state = DispatcherState.STOPPED

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        for entry in self.in_flight:
            self._fail_attempt(entry.job_id, entry.attempt, SCHEDULER_STOPPED, "DISPATCH_ERROR")
        for future in self._distribution_waiters.values():
            if not future.done():
                future.cancel()
        logger.info("Dispatcher stopped")

    def pause(self) -> None:
        """Stop new dispatches; in-flight jobs still finish."""
        if self._state != DispatcherState.RUNNING:
            raise InvalidOperationError(f"Cannot pause dispatcher in {self._state.value} state")
        self._state = DispatcherState.PAUSED
        logger.info(f"Dispatcher paused ({len(self.in_flight)} job(s) still in flight)")

    def resume(self) -> None:
        if self._state != DispatcherState.PAUSED:
            raise InvalidOperationError(f"Cannot resume dispatcher in {self._state.value} state")
        self._state = DispatcherState.RUNNING
        logger.info("Dispatcher resumed")
        self.request_tick()

    def activate(self) -> None:
        """Start or resume; a running dispatcher is left as is."""
        if self._state == DispatcherState.STOPPED:
            self.start()
        elif self._state == DispatcherState.PAUSED:
            self.resume()

    async def start_all(self) -> list[str]:
        """
        Begin working through the queue.

        Starts or resumes the dispatcher and runs one dispatch cycle right away.

        Returns:
            IDs of the jobs dispatched by that cycle
        """
        self.activate()
        return await self.tick()

    async def _dispatch_loop(self) -> None:
        logger.info("Dispatcher loop started")
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Error in dispatch loop: {e}", exc_info=True)
            await asyncio.sleep(self.settings.tick_interval)

    def request_tick(self) -> None:
        """Schedule a dispatch cycle soon (used after events and commands)."""
        if self._state != DispatcherState.RUNNING or self._tick_pending:
            return
        self._tick_pending = True
        self.background.spawn(self._requested_tick(), name="dispatcher-tick")

    async def _requested_tick(self) -> None:
        self._tick_pending = False
        await self.tick()

    # =========================================================================
    # Dispatch
    # =========================================================================

    def production_wait(self) -> Tuple[str, float]:
        """Longest wait among the dispatch-gating rate limit classes."""
        waits = [
            (DISPATCH_CLASS, self.rate_limiter.wait_time(DISPATCH_CLASS)),
            (DAILY_PRODUCTION_CLASS, self.rate_limiter.wait_time(DAILY_PRODUCTION_CLASS)),
        ]
        return max(waits, key=lambda item: item[1])

    async def tick(self) -> list[str]:
        """
        Run one dispatch cycle.

        Returns:
            IDs of the jobs dispatched
        """
        dispatched: list[str] = []
        if self._state != DispatcherState.RUNNING:
            return dispatched

        skipped: set[str] = set()
        async with self._tick_lock:
            while self._state == DispatcherState.RUNNING and self.in_flight.has_capacity():
                job = self.queue_manager.next_eligible(exclude=self.in_flight.job_ids | skipped)
                if job is None:
                    break

                action_class, wait = self.production_wait()
                if wait > 0:
                    logger.debug(
                        f"Dispatch of {job.job_id} deferred: '{action_class}' allows the next "
                        f"dispatch in {wait:.1f}s"
                    )
                    break

                try:
                    claimed = self._claim(job.job_id)
                except ConcurrencyViolationError as e:
                    logger.warning(f"Job {job.job_id} already claimed: {e}")
                    skipped.add(job.job_id)
                    continue

                dispatched.append(claimed.job_id)
                await self._start_production(claimed)

        return dispatched

    def claim_for_dispatch(self, job_id: str) -> Job:
        """
        Claim one specific job ahead of FIFO order.

        Allowed while paused; still bound by the slot limit and rate limits.

        Raises:
            JobNotFoundError: If job doesn't exist
            ConcurrencyViolationError: If the job is already in flight
            InvalidTransitionError: If the job is not pending
            CapacityError: If every slot is taken
            RateLimitedError: If a dispatch quota is exhausted
        """
        job = self.persistence.require_job(job_id)
        if job_id in self.in_flight:
            raise ConcurrencyViolationError(job_id, JobStatus.PENDING.value, job.status.value)
        if job.status != JobStatus.PENDING:
            raise InvalidTransitionError(job_id, job.status.value, JobStatus.PROCESSING.value)
        if not self.in_flight.has_capacity():
            raise CapacityError(f"All {self.in_flight.limit} in-flight slots are in use")

        action_class, wait = self.production_wait()
        if wait > 0:
            raise RateLimitedError(action_class, wait)

        return self._claim(job_id)

    async def dispatch(self, job_id: str) -> Job:
        """Dispatch one specific job and wait until its agent has accepted it."""
        claimed = self.claim_for_dispatch(job_id)
        await self._start_production(claimed)
        return self.persistence.require_job(job_id)

    def dispatch_nowait(self, job_id: str) -> Job:
        """Claim one specific job and start it in the background."""
        claimed = self.claim_for_dispatch(job_id)
        self.background.spawn(self._start_production(claimed), name=f"start:{job_id}")
        return claimed

    def _claim(self, job_id: str) -> Job:
        """Claim a pending job, occupy its slot and arm its timeout (synchronous)."""
        if job_id in self.in_flight:
            raise ConcurrencyViolationError(job_id, JobStatus.PENDING.value, JobStatus.PROCESSING.value)
        if not self.in_flight.has_capacity():
            raise CapacityError(f"All {self.in_flight.limit} in-flight slots are in use")

        job = self.persistence.atomic_claim_job(job_id)
        entry = self.in_flight.add(job.job_id, job.attempt)
        for action_class in (DISPATCH_CLASS, DAILY_PRODUCTION_CLASS):
            entry.quota_marks[action_class] = self.rate_limiter.record(action_class)
        entry.timeout_handle = asyncio.get_running_loop().call_later(
            self.settings.job_timeout, self._on_job_timeout, job.job_id, job.attempt
        )
        logger.info(
            f"Dispatched job {job.job_id} (attempt {job.attempt}, "
            f"in flight {len(self.in_flight)}/{self.in_flight.limit})"
        )
        return job

    async def _start_production(self, job: Job) -> None:
        """Send START_PRODUCTION for a claimed job; any failure fails the attempt."""
        job_id, attempt = job.job_id, job.attempt
        claimed = self.in_flight.get(job_id)
        quota_marks = dict(claimed.quota_marks) if claimed is not None else {}
        context = None
        sent = False
        try:
            await self._require_credential(self.production_target)
            if not self.in_flight.matches(job_id, attempt):
                return

            context = await self.page_manager.acquire(self.production_target)
            entry = self.in_flight.get(job_id)
            if entry is None or entry.attempt != attempt:
                # Settled (cancelled or timed out) while the page was opening
                self.page_manager.release(context)
                return
            entry.context = context

            sent = True
            response = await self.channel.send(
                context,
                Message(
                    type=MessageType.START_PRODUCTION,
                    payload={"job_id": job_id, "attempt": attempt, "spec": job.spec.to_dict()},
                    sender="orchestrator",
                ),
                timeout=self.settings.ack_timeout,
            )
        except FlowpilotError as e:
            self._abort_start(job_id, attempt, str(e), e.code, context, quota_marks, sent)
            return
        except Exception as e:
            logger.exception(f"Unexpected error dispatching job {job_id}")
            self._abort_start(
                job_id, attempt, f"Dispatch error: {e}", DispatchError.code, context, quota_marks, sent
            )
            return

        if not response.success:
            self._fail_attempt(
                job_id,
                attempt,
                f"Agent rejected command: {response.error}",
                response.error_code or "DISPATCH_ERROR",
            )
            return
        logger.debug(f"Job {job_id} accepted by {context}")

    def _abort_start(
        self,
        job_id: str,
        attempt: int,
        reason: str,
        code: str,
        context: Optional[str],
        quota_marks: Dict[str, float],
        sent: bool,
    ) -> None:
        failed = self._fail_attempt(job_id, attempt, reason, code)
        if failed is None:
            return
        if not sent:
            for action_class, instant in quota_marks.items():
                self.rate_limiter.refund(action_class, instant)
        if context is not None:
            # The agent may have started before its acknowledgement was lost
            self.background.spawn(self._cancel_agent(context, job_id), name=f"cancel:{job_id}")

    async def _require_credential(self, target: str) -> None:
        credential = await self.credentials.get_credential(target)
        if credential is None:
            raise AuthError(f"No credential for {target}")
        if not credential.is_valid():
            raise AuthError(f"Credential for {target} has expired")

    # =========================================================================
    # Settling attempts
    # =========================================================================

    def _fail_attempt(self, job_id: str, attempt: int, reason: str, code: str) -> Optional[Job]:
        """
        Fail the current attempt of a job (synchronous).

        Releases the slot and page lease, records the failure and lets the
        RetryController decide on a retry, all in one step. A stale attempt
        is ignored.
        """
        entry = self.in_flight.release(job_id, attempt)
        if entry is None:
            logger.debug(f"Ignoring failure for stale attempt {attempt} of job {job_id}")
            return None
        self.page_manager.release(entry.context)

        try:
            job = self.persistence.transition_job(
                job_id,
                JobStatus.PROCESSING,
                JobStatus.FAILED,
                error=reason,
                error_code=code,
            )
        except ConcurrencyViolationError as e:
            logger.warning(f"Could not fail job {job_id}: {e}")
            return None

        logger.warning(f"Job {job_id} failed (attempt {attempt}, {code}): {reason}")
        self._notify("failed", job, {"error": reason, "error_code": code})
        self.retry_controller.on_job_failed(job)
        self.request_tick()
        return job

    def _on_job_timeout(self, job_id: str, attempt: int) -> None:
        entry = self.in_flight.get(job_id)
        if entry is None or entry.attempt != attempt:
            return
        entry.timeout_handle = None
        context = entry.context

        job = self._fail_attempt(
            job_id,
            attempt,
            f"Job timed out after {self.settings.job_timeout:g}s",
            JOB_TIMEOUT_CODE,
        )
        if job is not None and context is not None:
            self.background.spawn(self._cancel_agent(context, job_id), name=f"cancel:{job_id}")

    async def _cancel_agent(self, context: str, job_id: str) -> None:
        """Best-effort CANCEL; the job has already been settled."""
        try:
            await self.channel.send(
                context,
                Message(type=MessageType.CANCEL, payload={"job_id": job_id}, sender="orchestrator"),
                timeout=self.settings.ack_timeout,
            )
        except ChannelError as e:
            logger.warning(f"Could not cancel job {job_id} on {context}: {e}")

    def cancel(self, job_id: str) -> Job:
        """
        Cancel a pending or processing job.

        Raises:
            JobNotFoundError: If job doesn't exist
            InvalidTransitionError: If job is already terminal
        """
        job = self.persistence.require_job(job_id)
        if job.status == JobStatus.PENDING:
            cancelled = self.queue_manager.cancel_pending(job_id)
            self._notify("cancelled", cancelled)
            return cancelled

        if job.is_terminal:
            raise InvalidTransitionError(job_id, job.status.value, JobStatus.CANCELLED.value)

        entry = self.in_flight.release(job_id)
        cancelled = self.persistence.transition_job(
            job_id,
            JobStatus.PROCESSING,
            JobStatus.CANCELLED,
            error=CANCELLED_BY_USER,
            error_code="CANCELLED",
        )
        logger.info(f"Cancelled processing job {job_id}")

        if entry is not None:
            self.page_manager.release(entry.context)
            if entry.context is not None:
                self.background.spawn(self._cancel_agent(entry.context, job_id), name=f"cancel:{job_id}")
        self._notify("cancelled", cancelled)
        self.request_tick()
        return cancelled

    def retry(self, job_id: str) -> Job:
        """Reset a failed job to pending (manual retry, honors the cap)."""
        job = self.retry_controller.manual_retry(job_id)
        self.request_tick()
        return job

    # =========================================================================
    # Agent events
    # =========================================================================

    async def handle_agent_event(self, message: Message) -> Response:
        payload = message.payload
        job_id = payload.get("job_id")
        attempt = payload.get("attempt")

        if message.type in (MessageType.DISTRIBUTION_SUCCEEDED, MessageType.DISTRIBUTION_FAILED):
            return self._resolve_distribution(message)

        if not self.in_flight.matches(job_id, attempt):
            logger.debug(f"Ignoring {message.type.value} for job {job_id} attempt {attempt}")
            return Response.ok({"ignored": True})

        if message.type == MessageType.PROGRESS:
            changed = self.persistence.advance_progress(job_id, payload.get("progress", 0))
            return Response.ok({"updated": changed})

        if message.type == MessageType.PRODUCTION_SUCCEEDED:
            artifact_url = payload.get("artifact_url")
            if not artifact_url:
                self._fail_attempt(job_id, attempt, "Production finished without a video URL", "EXTERNAL_ERROR")
                return Response.ok({"failed": True})
            self._complete(job_id, attempt, artifact_url)
            return Response.ok()

        if message.type == MessageType.PRODUCTION_FAILED:
            self._fail_attempt(
                job_id,
                attempt,
                payload.get("error") or "Production failed",
                payload.get("error_code") or "EXTERNAL_ERROR",
            )
            return Response.ok()

        return Response.fail(f"Unexpected agent event {message.type.value}", "UNSUPPORTED_MESSAGE")

    def _complete(self, job_id: str, attempt: int, artifact_url: str) -> None:
        entry = self.in_flight.release(job_id, attempt)
        if entry is None:
            return
        self.page_manager.release(entry.context)

        job = self.persistence.transition_job(
            job_id,
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
            progress=100,
            artifact_url=artifact_url,
            completed_at=now_iso(),
        )
        logger.info(f"Job {job_id} completed (attempt {attempt})")

        self._notify("completed", job, {"artifact_url": artifact_url})
        if self.settings.auto_download and self.artifact_sink is not None:
            self.background.spawn(self.artifact_sink.export(job), name=f"export:{job_id}")
        if self.settings.auto_distribute and job.targets:
            self.background.spawn(self.distribute(job), name=f"distribute:{job_id}")
        self.request_tick()

    # =========================================================================
    # Distribution
    # =========================================================================

    async def distribute(self, job: Job) -> Job:
        """
        Deliver a completed job to each of its targets, one after another.

        A failed target is recorded on the job and never reverts COMPLETED.
        """
        delivered: list[str] = []
        failures: dict[str, str] = {}

        for target in job.targets:
            try:
                delivery_id = await self._distribute_to(job, target)
            except FlowpilotError as e:
                failures[target] = str(e)
                self.persistence.record_distribution_failure(job.job_id, target, str(e))
                logger.warning(f"Distribution of {job.job_id} to {target} failed: {e}")
                continue
            except Exception as e:
                logger.exception(f"Unexpected error distributing {job.job_id} to {target}")
                failures[target] = f"Distribution error: {e}"
                self.persistence.record_distribution_failure(job.job_id, target, failures[target])
                continue

            self.persistence.add_distribution_record(
                DistributionRecord(
                    job_id=job.job_id,
                    target=target,
                    delivery_id=delivery_id,
                    delivered_at=now_iso(),
                )
            )
            delivered.append(target)
            logger.info(f"Distributed {job.job_id} to {target} ({delivery_id})")

        job = self.persistence.require_job(job.job_id)
        event = "distribution_partial" if failures else "distributed"
        self._notify(event, job, {"delivered": delivered, "failures": failures})
        return job

    async def _distribute_to(self, job: Job, target: str) -> str:
        action_class = distribution_class(target)
        wait = self.rate_limiter.wait_time(action_class)
        while wait > 0:
            if wait > self.settings.distribution_timeout:
                raise RateLimitedError(action_class, wait)
            logger.info(f"Waiting {wait:.1f}s for the {target} posting quota")
            await asyncio.sleep(wait)
            wait = self.rate_limiter.wait_time(action_class)
        posted_at = self.rate_limiter.record(action_class)

        try:
            await self._require_credential(target)
            context = await self.page_manager.acquire(target)
        except BaseException:
            # Nothing was posted
            self.rate_limiter.refund(action_class, posted_at)
            raise
        key = (job.job_id, target)
        future = asyncio.get_running_loop().create_future()
        self._distribution_waiters[key] = future
        try:
            response = await self.channel.send(
                context,
                Message(
                    type=MessageType.DISTRIBUTE,
                    payload={
                        "job_id": job.job_id,
                        "attempt": job.attempt,
                        "artifact_url": job.artifact_url,
                        "caption": job.caption,
                        "hashtags": list(job.hashtags),
                    },
                    sender="orchestrator",
                ),
                timeout=self.settings.ack_timeout,
            )
            if not response.success:
                raise error_from_code(response.error_code, f"Agent rejected command: {response.error}")

            try:
                event = await asyncio.wait_for(future, self.settings.distribution_timeout)
            except asyncio.TimeoutError:
                self.background.spawn(self._cancel_agent(context, job.job_id), name=f"cancel:{job.job_id}")
                raise CompletionTimeout(
                    f"Distribution to {target} timed out after {self.settings.distribution_timeout:g}s"
                ) from None
        finally:
            self._distribution_waiters.pop(key, None)
            self.page_manager.release(context)

        if event.type == MessageType.DISTRIBUTION_FAILED:
            raise error_from_code(
                event.payload.get("error_code"),
                event.payload.get("error") or f"Distribution to {target} failed",
            )
        return event.payload.get("delivery_id") or f"{target}_{job.job_id}"

    def _resolve_distribution(self, message: Message) -> Response:
        key = (message.payload.get("job_id"), message.payload.get("target"))
        future = self._distribution_waiters.get(key)
        if future is None or future.done():
            logger.debug(f"Ignoring {message.type.value} for {key}")
            return Response.ok({"ignored": True})
        future.set_result(message)
        return Response.ok()

    # =========================================================================
    # Side effects and status
    # =========================================================================

    def _notify(self, event: str, job: Job, details: Optional[Dict[str, Any]] = None) -> None:
        if self.notifier is None:
            return
        self.background.spawn(self.notifier.notify(event, job, details), name=f"notify:{event}:{job.job_id}")

    def get_stats(self) -> dict:
        now = time.monotonic()
        return {
            "state": self._state.value,
            "max_concurrent": self.in_flight.limit,
            "in_flight": [
                {
                    "job_id": entry.job_id,
                    "attempt": entry.attempt,
                    "context": entry.context,
                    "elapsed": round(now - entry.started, 1),
                }
                for entry in self.in_flight
            ],
            "queue": self.queue_manager.get_queue_stats(),
            "completed_last_24h": self.persistence.count_completed_since(iso_after(-24 * 3600)),
            "rate_limits": self.rate_limiter.snapshot(),
            "agents": self.page_manager.status(),
        }
