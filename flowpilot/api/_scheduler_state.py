"""
Scheduler state management for API integration.

Provides singleton access to the SchedulerService and the ControlClient the
routers talk through. Initialized during the FastAPI lifespan; the
dispatcher itself is NOT started until POST /scheduler/start-all.

Usage:
    from ._scheduler_state import get_control_client, init_scheduler_service

    # In lifespan:
    await init_scheduler_service()

    # In routers:
    client = get_control_client()
"""

import logging
from pathlib import Path
from typing import Any, Optional

from ..agents.page import PageProvider, PlaywrightPageProvider
from ..config import BROWSER_HEADLESS, BROWSER_USER_DATA_DIR, DB_PATH, SchedulerSettings
from ..control import ControlClient
from ..scheduler.service import ORCHESTRATOR_CONTEXT, SchedulerService

logger = logging.getLogger(__name__)

_scheduler_service: Optional[SchedulerService] = None
_control_client: Optional[ControlClient] = None


async def init_scheduler_service(
    db_path: Optional[str | Path] = None,
    page_provider: Optional[PageProvider] = None,
    settings: Optional[SchedulerSettings] = None,
    **components: Any,
) -> SchedulerService:
    """
    Create, recover and register the scheduler service singleton.

    Args:
        db_path: SQLite job store (defaults to FLOWPILOT_DB_PATH)
        page_provider: Browser page source (defaults to Playwright)
        settings: Scheduler tunables (defaults from the environment)
        **components: Passed through to SchedulerService.create()

    Returns:
        The started SchedulerService
    """
    global _scheduler_service, _control_client

    if _scheduler_service is not None:
        return _scheduler_service

    settings = settings or SchedulerSettings.from_env()
    service = SchedulerService.create(
        db_path=db_path or DB_PATH,
        page_provider=page_provider
        or PlaywrightPageProvider(headless=BROWSER_HEADLESS, user_data_dir=BROWSER_USER_DATA_DIR),
        settings=settings,
        **components,
    )
    recovery_stats = await service.start(run_recovery=True)
    if recovery_stats.get("processing_jobs_failed"):
        logger.warning(f"Recovered jobs left in flight by the previous run: {recovery_stats}")

    _scheduler_service = service
    _control_client = ControlClient(service.channel, context=ORCHESTRATOR_CONTEXT, timeout=settings.ack_timeout)
    return service


def get_scheduler_service() -> SchedulerService:
    """
    Get the scheduler service singleton.

    Raises:
        RuntimeError: If scheduler service not initialized
    """
    if _scheduler_service is None:
        raise RuntimeError(
            "Scheduler service not initialized. "
            "Ensure init_scheduler_service() is called during startup."
        )
    return _scheduler_service


def get_control_client() -> ControlClient:
    """FastAPI dependency: the client routers send commands through."""
    if _control_client is None:
        raise RuntimeError(
            "Scheduler service not initialized. "
            "Ensure init_scheduler_service() is called during startup."
        )
    return _control_client


async def shutdown_scheduler_service() -> None:
    """Stop the scheduler service; called during FastAPI lifespan shutdown."""
    global _scheduler_service, _control_client

    if _scheduler_service is not None:
        await _scheduler_service.stop()
        _scheduler_service = None
        _control_client = None
