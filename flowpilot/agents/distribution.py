"""
Distribution agents: upload a produced video to a destination platform.

Command flow for DISTRIBUTE (payload: job_id, attempt, artifact_url, caption,
hashtags):
1. Make sure the page sits on the upload screen
2. Fetch the artifact to a temporary file
3. Hand the file to the page's file input and wait for the upload
4. Fill caption / hashtags where the platform has them, then submit
5. Wait for confirmation and report a delivery id
"""

import logging
import re
import shutil
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from ..channel import MessageType
from ..config import PLATFORM_URLS
from ..errors import ExternalError
from ..infra.artifacts import download_to_temp
from .base import AutomationAgent
from .page import PageDriver
from .polling import poll_until_outcome, wait_for
from .selectors import LAZADA_SELECTORS, SHOPEE_SELECTORS, SellerCenterSelectors, TikTokSelectors

logger = logging.getLogger(__name__)

ArtifactFetcher = Callable[[str], Awaitable[Path]]

UPLOAD_AREA_TIMEOUT = 15.0
FILE_INPUT_TIMEOUT = 5.0
UPLOAD_TIMEOUT = 60.0
UPLOAD_POLL_INTERVAL = 1.0
POST_BUTTON_TIMEOUT = 5.0
CONFIRMATION_TIMEOUT = 30.0

_TIKTOK_VIDEO_ID_RE = re.compile(r"/video/(\d+)")


def format_caption(caption: Optional[str], hashtags: Optional[list[str]]) -> str:
    """Caption followed by '#tag' words, the way the platforms display them."""
    parts = [caption.strip()] if caption and caption.strip() else []
    tags = " ".join(f"#{tag}" for tag in hashtags or [])
    if tags:
        parts.append(tags)
    return "\n\n".join(parts)


def _remove_temp(path: Optional[Path]) -> None:
    if path is None:
        return
    path.unlink(missing_ok=True)
    parent = path.parent
    if parent.name.startswith("flowpilot_"):
        shutil.rmtree(parent, ignore_errors=True)


class DistributionAgent(AutomationAgent):
    """Common shape of an upload to a destination platform."""

    start_type = MessageType.DISTRIBUTE
    success_type = MessageType.DISTRIBUTION_SUCCEEDED
    failure_type = MessageType.DISTRIBUTION_FAILED

    upload_url: str = ""

    def __init__(
        self,
        page: PageDriver,
        fetcher: Optional[ArtifactFetcher] = None,
        upload_timeout: float = UPLOAD_TIMEOUT,
        confirmation_timeout: float = CONFIRMATION_TIMEOUT,
        **kwargs: Any,
    ):
        super().__init__(page, **kwargs)
        self.fetcher = fetcher or download_to_temp
        self.upload_timeout = upload_timeout
        self.confirmation_timeout = confirmation_timeout

    async def perform(self, payload: dict[str, Any]) -> dict[str, Any]:
        artifact_url = payload.get("artifact_url")
        if not artifact_url:
            raise ExternalError("No artifact to distribute")

        await self.open_upload_screen()
        local_file = None
        try:
            local_file = await self.fetcher(artifact_url)
            await self.upload(local_file, payload)
            delivery_id = await self.submit(payload)
        finally:
            _remove_temp(local_file)

        return {"delivery_id": delivery_id}

    async def open_upload_screen(self) -> None:
        if self.upload_url and not self.page.url.startswith(self.upload_url):
            await self.act()
            await self.page.goto(self.upload_url)

    async def upload(self, local_file: Path, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    async def submit(self, payload: dict[str, Any]) -> str:
        raise NotImplementedError


class TikTokDistributionAgent(DistributionAgent):
    """Posts videos through the TikTok web uploader."""

    target = "tiktok"
    upload_url = PLATFORM_URLS["tiktok"]

    def __init__(self, page: PageDriver, selectors: TikTokSelectors = TikTokSelectors(), **kwargs: Any):
        super().__init__(page, **kwargs)
        self.selectors = selectors

    async def upload(self, local_file: Path, payload: dict[str, Any]) -> None:
        sel = self.selectors
        await wait_for(
            lambda: self.page.exists(sel.upload_area),
            timeout=UPLOAD_AREA_TIMEOUT,
            message="Upload interface not found",
        )
        await wait_for(
            lambda: self.page.exists(sel.file_input),
            timeout=FILE_INPUT_TIMEOUT,
            message="File input not found",
        )
        await self.act()
        await self.page.set_input_files(sel.file_input, str(local_file))
        logger.info(f"[{self.context}] Uploading {local_file.name}")

        await poll_until_outcome(
            success=lambda: self.page.exists(sel.upload_complete),
            error=lambda: self.page.text(sel.error_message),
            timeout=self.upload_timeout,
            interval=UPLOAD_POLL_INTERVAL,
            timeout_message="Upload timeout",
        )

        caption = format_caption(payload.get("caption"), payload.get("hashtags"))
        if caption and await self.page.exists(sel.caption_input):
            await self.act()
            await self.page.fill(sel.caption_input, caption)

    async def submit(self, payload: dict[str, Any]) -> str:
        sel = self.selectors
        await wait_for(
            lambda: self.page.exists(sel.post_button),
            timeout=POST_BUTTON_TIMEOUT,
            message="Post button not found",
        )
        await self.act()
        await self.page.click(sel.post_button)

        await poll_until_outcome(
            success=lambda: self.page.exists(sel.success_message),
            error=lambda: self.page.text(sel.error_message),
            timeout=self.confirmation_timeout,
            interval=UPLOAD_POLL_INTERVAL,
            timeout_message="Post confirmation not received",
        )

        match = _TIKTOK_VIDEO_ID_RE.search(self.page.url or "")
        if match:
            return match.group(1)
        return f"tiktok_{int(time.time() * 1000)}"


class SellerCenterDistributionAgent(DistributionAgent):
    """
    Attaches a product video in a marketplace seller center.

    The page is expected to be opened on the product's edit screen or the
    product list; the agent clicks through to the editor when needed.
    """

    def __init__(
        self,
        page: PageDriver,
        target: str,
        selectors: SellerCenterSelectors,
        upload_url: str = "",
        **kwargs: Any,
    ):
        super().__init__(page, **kwargs)
        self.target = target
        self.selectors = selectors
        self.upload_url = upload_url

    async def upload(self, local_file: Path, payload: dict[str, Any]) -> None:
        sel = self.selectors
        if not await self.page.exists(sel.video_upload_area):
            if await self.page.exists(sel.product_edit_button):
                await self.act()
                await self.page.click(sel.product_edit_button)
        await wait_for(
            lambda: self.page.exists(sel.video_upload_area),
            timeout=UPLOAD_AREA_TIMEOUT,
            message="Video upload area not found",
        )
        await wait_for(
            lambda: self.page.exists(sel.file_input),
            timeout=FILE_INPUT_TIMEOUT,
            message="File input not found",
        )
        await self.act()
        await self.page.set_input_files(sel.file_input, str(local_file))
        logger.info(f"[{self.context}] Attached {local_file.name} to product")

    async def submit(self, payload: dict[str, Any]) -> str:
        sel = self.selectors
        await wait_for(
            lambda: self.page.exists(sel.save_button),
            timeout=POST_BUTTON_TIMEOUT,
            message="Save button not found",
        )
        await self.act()
        await self.page.click(sel.save_button)

        await poll_until_outcome(
            success=lambda: self.page.exists(sel.success_message),
            error=lambda: self.page.text(sel.error_message),
            timeout=self.confirmation_timeout,
            interval=UPLOAD_POLL_INTERVAL,
            timeout_message="Save confirmation not received",
        )
        return f"{self.target}_{payload.get('job_id')}_{int(time.time() * 1000)}"


def shopee_agent(page: PageDriver, **kwargs: Any) -> SellerCenterDistributionAgent:
    return SellerCenterDistributionAgent(
        page, "shopee", SHOPEE_SELECTORS, upload_url=PLATFORM_URLS["shopee"], **kwargs
    )


def lazada_agent(page: PageDriver, **kwargs: Any) -> SellerCenterDistributionAgent:
    return SellerCenterDistributionAgent(
        page, "lazada", LAZADA_SELECTORS, upload_url=PLATFORM_URLS["lazada"], **kwargs
    )
