"""
Notification sink for job lifecycle events.

Events: completed, failed, cancelled, distributed, distribution_partial.

WebhookNotifier POSTs a JSON payload (or a Discord embed when the URL is a
Discord webhook) with retry and exponential backoff. Notification failures
are logged and never affect job state.
"""

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol

import httpx

from .. import __version__

if TYPE_CHECKING:
    from ..scheduler.entities import Job

logger = logging.getLogger(__name__)

# Webhook configuration
WEBHOOK_TIMEOUT_SECONDS = 30
WEBHOOK_MAX_RETRIES = 3
WEBHOOK_RETRY_BASE_DELAY = 1.0  # seconds
WEBHOOK_RETRY_MAX_DELAY = 10.0  # seconds

# Discord embed colors
DISCORD_COLOR_SUCCESS = 0x57F287  # Green
DISCORD_COLOR_WARNING = 0xFEE75C  # Yellow
DISCORD_COLOR_ERROR = 0xED4245    # Red

_EVENT_TITLES = {
    "completed": ("✅", "Video Completed", DISCORD_COLOR_SUCCESS),
    "distributed": ("📤", "Video Distributed", DISCORD_COLOR_SUCCESS),
    "distribution_partial": ("⚠️", "Distribution Partially Failed", DISCORD_COLOR_WARNING),
    "failed": ("❌", "Video Failed", DISCORD_COLOR_ERROR),
    "cancelled": ("🛑", "Job Cancelled", DISCORD_COLOR_WARNING),
}


class NotificationSink(Protocol):
    async def notify(self, event: str, job: "Job", details: Optional[Dict[str, Any]] = None) -> None:
        ...


class LoggingNotifier:
    """Default sink when no webhook is configured."""

    async def notify(self, event: str, job: "Job", details: Optional[Dict[str, Any]] = None) -> None:
        logger.info(f"[Notify] {event} job={job.job_id} status={job.status.value} details={details or {}}")


def is_discord_webhook_url(url: str) -> bool:
    """
    Check if URL is a Discord webhook URL.

    Args:
        url: Webhook URL to check

    Returns:
        True if URL matches Discord webhook pattern
    """
    if not url:
        return False
    discord_patterns = [
        "https://discord.com/api/webhooks/",
        "https://www.discord.com/api/webhooks/",
        "https://discordapp.com/api/webhooks/",
        "https://www.discordapp.com/api/webhooks/",
    ]
    return any(url.startswith(pattern) for pattern in discord_patterns)


def build_webhook_payload(event: str, job: "Job", details: Optional[Dict[str, Any]] = None) -> dict:
    """
    Build webhook payload from job data.

    Args:
        event: Lifecycle event name
        job: Job the event is about
        details: Event-specific extras (e.g. distribution failures)

    Returns:
        Dictionary payload for webhook POST
    """
    return {
        "event": event,
        "job_id": job.job_id,
        "status": job.status.value,
        "outcome": job.outcome,
        "progress": job.progress,
        "artifact_url": job.artifact_url,
        "error": job.error,
        "error_code": job.error_code,
        "retry_count": job.retry_count,
        "targets": job.targets,
        "distributions": [record.to_dict() for record in job.distributions],
        "distribution_failures": job.distribution_failures,
        "details": details or {},
        "timestamp": datetime.now().isoformat(),
    }


def build_discord_embed_payload(
    event: str,
    job: "Job",
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build Discord-compatible webhook payload with embeds.

    Returns:
        Discord-compatible payload with embeds
    """
    emoji, label, color = _EVENT_TITLES.get(event, ("ℹ️", event.replace("_", " ").title(), DISCORD_COLOR_SUCCESS))

    fields = [{"name": "Job ID", "value": job.job_id, "inline": True}]
    fields.append({"name": "Duration", "value": f"{job.spec.duration}s", "inline": True})

    if job.artifact_url:
        fields.append({"name": "Video", "value": job.artifact_url[:1000], "inline": False})
    if job.error:
        fields.append({"name": "Error", "value": job.error[:1000], "inline": False})
    for record in job.distributions:
        fields.append({"name": record.target.title(), "value": record.delivery_id, "inline": True})
    for target, reason in (details or {}).get("failures", {}).items():
        fields.append({"name": f"{target.title()} failed", "value": str(reason)[:1000], "inline": False})

    embed = {
        "title": f"{emoji} {label}",
        "color": color,
        "fields": fields,
        "timestamp": datetime.now().isoformat(),
        "footer": {"text": f"Flowpilot v{__version__}"},
    }
    return {"embeds": [embed]}


async def send_webhook_async(
    url: str,
    payload: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
    timeout: float = WEBHOOK_TIMEOUT_SECONDS,
    max_retries: int = WEBHOOK_MAX_RETRIES,
    client: Optional[httpx.AsyncClient] = None,
) -> tuple[bool, Optional[str]]:
    """
    Send webhook notification asynchronously with retry logic.

    Args:
        url: Webhook URL to POST to
        payload: JSON body
        headers: Extra headers
        timeout: Request timeout in seconds
        max_retries: Maximum number of attempts
        client: Optional shared client (tests inject a mock transport)

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    last_error: Optional[str] = None
    request_headers = {
        "Content-Type": "application/json",
        "User-Agent": f"Flowpilot/{__version__}",
        **(headers or {}),
    }

    for attempt in range(max_retries):
        try:
            if client is not None:
                response = await client.post(url, json=payload, headers=request_headers)
            else:
                async with httpx.AsyncClient(timeout=timeout) as own_client:
                    response = await own_client.post(url, json=payload, headers=request_headers)

            if 200 <= response.status_code < 300:
                logger.info(
                    f"Webhook sent successfully to {url} "
                    f"(attempt {attempt + 1}/{max_retries}, status={response.status_code})"
                )
                return True, None

            last_error = f"HTTP {response.status_code}: {response.text[:200]}"
            logger.warning(
                f"Webhook failed to {url} "
                f"(attempt {attempt + 1}/{max_retries}): {last_error}"
            )

        except httpx.TimeoutException:
            last_error = f"Timeout after {timeout}s"
            logger.warning(
                f"Webhook timeout to {url} "
                f"(attempt {attempt + 1}/{max_retries})"
            )

        except httpx.RequestError as e:
            last_error = f"Request error: {str(e)}"
            logger.warning(
                f"Webhook request error to {url} "
                f"(attempt {attempt + 1}/{max_retries}): {e}"
            )

        # Exponential backoff before retry
        if attempt < max_retries - 1:
            delay = min(
                WEBHOOK_RETRY_BASE_DELAY * (2 ** attempt),
                WEBHOOK_RETRY_MAX_DELAY
            )
            logger.debug(f"Retrying webhook in {delay}s...")
            await asyncio.sleep(delay)

    logger.error(
        f"Webhook failed after {max_retries} attempts to {url}: {last_error}"
    )
    return False, last_error


class WebhookNotifier:
    """Posts lifecycle events to a webhook URL."""

    def __init__(
        self,
        url: str,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        max_retries: int = WEBHOOK_MAX_RETRIES,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = client

    async def notify(self, event: str, job: "Job", details: Optional[Dict[str, Any]] = None) -> None:
        if is_discord_webhook_url(self.url):
            payload = build_discord_embed_payload(event, job, details)
            headers = {}
        else:
            payload = build_webhook_payload(event, job, details)
            headers = {"X-Job-ID": job.job_id, "X-Job-Event": event}

        await send_webhook_async(
            self.url,
            payload,
            headers=headers,
            timeout=self.timeout,
            max_retries=self.max_retries,
            client=self._client,
        )


def build_notifier(webhook_url: Optional[str]) -> NotificationSink:
    """WebhookNotifier when a URL is configured, LoggingNotifier otherwise."""
    if webhook_url:
        return WebhookNotifier(webhook_url)
    return LoggingNotifier()
