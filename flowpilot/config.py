"""
Runtime configuration for flowpilot.

All values come from environment variables (a `.env` file is loaded by the
entry point via python-dotenv). Module-level constants hold the fixed domain
vocabulary; SchedulerSettings captures the tunables consumed by the scheduler
and is rebuilt from the environment on each call to from_env().

Environment Variables:
- FLOWPILOT_DB_PATH: SQLite job store path (default: data/flowpilot.db)
- DOWNLOADS_DIR: Where completed artifacts are exported (default: downloads)
- LOG_DIR: Log directory (default: logs)
- LOG_LEVEL: Logging level (default: INFO)
- MAX_CONCURRENT_JOBS: In-flight job limit (default: 2)
- MAX_QUEUE_SIZE: Maximum pending + processing jobs (default: 100)
- DEFAULT_MAX_RETRIES: Per-job retry cap (default: 3)
- JOB_TIMEOUT_SECONDS: Per-job completion timeout (default: 300)
- COMMAND_ACK_TIMEOUT_SECONDS: Channel acknowledgment timeout (default: 10)
- DISTRIBUTION_TIMEOUT_SECONDS: Per-target distribution timeout (default: 180)
- DISPATCH_MIN_INTERVAL_SECONDS: Minimum spacing between dispatches (default: 120)
- DAILY_PRODUCTION_LIMIT: Dispatches per rolling 24h (default: 50)
- POSTS_PER_HOUR: Distributions per target per rolling hour (default: 10)
- MIN_ACTION_DELAY_SECONDS: Agent inter-action delay (default: 0.7)
- TICK_INTERVAL_SECONDS: Scheduler tick period (default: 1.0)
- AUTO_RETRY_FAILED: Automatically retry retry-eligible failures (default: false)
- RETRY_BASE_DELAY_SECONDS: Auto-retry backoff base (default: 10)
- AUTO_DISTRIBUTE: Distribute completed jobs to their targets (default: true)
- AUTO_DOWNLOAD: Export completed artifacts (default: true)
- WEBHOOK_URL: Notification webhook, Discord URLs supported (default: unset)
- BROWSER_HEADLESS: Run Playwright headless (default: false)
- BROWSER_USER_DATA_DIR: Persistent browser profile directory (default: unset)
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Environment helpers
# =============================================================================


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Config] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Config] Invalid number for {key}: {val}, using default: {default}")
    return default


# =============================================================================
# Domain vocabulary
# =============================================================================

VALID_DURATIONS = (15, 30, 60)
VALID_ASPECT_RATIOS = ("9:16", "1:1", "16:9")
VALID_STYLES = ("dynamic", "calm", "energetic")

PROMPT_MIN_LENGTH = 10
PROMPT_MAX_LENGTH = 500
CAPTION_MAX_LENGTH = 2200
MAX_HASHTAGS = 30

# Production happens on a single external site; distribution targets are platforms.
PRODUCTION_TARGET = "flow"
PRODUCTION_URL = "https://flow.google.com/create"

PLATFORM_URLS = {
    "tiktok": "https://www.tiktok.com/upload",
    "shopee": "https://seller.shopee.co.th",
    "lazada": "https://sellercenter.lazada.co.th",
}
SUPPORTED_PLATFORMS = tuple(PLATFORM_URLS)

TARGET_URLS = {PRODUCTION_TARGET: PRODUCTION_URL, **PLATFORM_URLS}

# Paths
DB_PATH = os.getenv("FLOWPILOT_DB_PATH", "data/flowpilot.db")
DOWNLOADS_DIR = os.getenv("DOWNLOADS_DIR", "downloads")
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Browser
BROWSER_HEADLESS = _get_env_bool("BROWSER_HEADLESS", False)
BROWSER_USER_DATA_DIR = os.getenv("BROWSER_USER_DATA_DIR") or None

# API server
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = _get_env_int("API_PORT", 8000)
API_AUTH_ENABLED = _get_env_bool("API_AUTH_ENABLED", False)
API_KEY = os.getenv("API_KEY", "")


@dataclass
class SchedulerSettings:
    """
    Tunables for the scheduler and its collaborators.

    Defaults mirror the production rate limits: 2 concurrent jobs, one dispatch
    every 2 minutes, 50 productions a day, 10 posts per platform per hour.
    """

    max_concurrent: int = 2
    max_queue_size: int = 100
    default_max_retries: int = 3
    job_timeout: float = 300.0
    ack_timeout: float = 10.0
    distribution_timeout: float = 180.0
    dispatch_min_interval: float = 120.0
    daily_production_limit: int = 50
    posts_per_hour: int = 10
    min_action_delay: float = 0.7
    tick_interval: float = 1.0
    auto_retry: bool = False
    retry_base_delay: float = 10.0
    auto_distribute: bool = True
    auto_download: bool = True
    downloads_dir: str = "downloads"
    webhook_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SchedulerSettings":
        """Build settings from the current environment."""
        return cls(
            max_concurrent=_get_env_int("MAX_CONCURRENT_JOBS", 2),
            max_queue_size=_get_env_int("MAX_QUEUE_SIZE", 100),
            default_max_retries=_get_env_int("DEFAULT_MAX_RETRIES", 3),
            job_timeout=_get_env_float("JOB_TIMEOUT_SECONDS", 300.0),
            ack_timeout=_get_env_float("COMMAND_ACK_TIMEOUT_SECONDS", 10.0),
            distribution_timeout=_get_env_float("DISTRIBUTION_TIMEOUT_SECONDS", 180.0),
            dispatch_min_interval=_get_env_float("DISPATCH_MIN_INTERVAL_SECONDS", 120.0),
            daily_production_limit=_get_env_int("DAILY_PRODUCTION_LIMIT", 50),
            posts_per_hour=_get_env_int("POSTS_PER_HOUR", 10),
            min_action_delay=_get_env_float("MIN_ACTION_DELAY_SECONDS", 0.7),
            tick_interval=_get_env_float("TICK_INTERVAL_SECONDS", 1.0),
            auto_retry=_get_env_bool("AUTO_RETRY_FAILED", False),
            retry_base_delay=_get_env_float("RETRY_BASE_DELAY_SECONDS", 10.0),
            auto_distribute=_get_env_bool("AUTO_DISTRIBUTE", True),
            auto_download=_get_env_bool("AUTO_DOWNLOAD", True),
            downloads_dir=os.getenv("DOWNLOADS_DIR", "downloads"),
            webhook_url=os.getenv("WEBHOOK_URL") or None,
        )
