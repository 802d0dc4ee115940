"""
Production agent for the video generation site.

Command flow for START_PRODUCTION:
1. Wait for the prompt input, type the instructions
2. Apply duration / aspect ratio / style / audio settings when offered
3. Click generate (a disabled button means no credits or bad input)
4. Wait for generation to start, then poll for a signed video URL,
   an on-page error, or progress text until the completion timeout
"""

import logging
import re
from typing import Any, Optional
from urllib.parse import urlparse

from ..channel import MessageType
from ..errors import ExternalError, PreconditionTimeout
from .base import AutomationAgent
from .page import PageDriver
from .polling import poll_until_outcome, wait_for
from .selectors import SIGNED_VIDEO_HOST, SIGNED_VIDEO_PATH, FlowSelectors

logger = logging.getLogger(__name__)

PROMPT_TIMEOUT = 10.0
SETTING_TIMEOUT = 3.0
GENERATE_BUTTON_TIMEOUT = 2.0
GENERATION_START_TIMEOUT = 5.0
COMPLETION_TIMEOUT = 300.0
COMPLETION_POLL_INTERVAL = 2.0

_PERCENT_RE = re.compile(r"(\d{1,3})\s*%")


def is_signed_video_url(url: Optional[str]) -> bool:
    """True for finished video URLs served from the production site's bucket."""
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme == "https" and parsed.hostname == SIGNED_VIDEO_HOST and SIGNED_VIDEO_PATH in parsed.path


def parse_progress(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    match = _PERCENT_RE.search(text)
    if match is None:
        return None
    return min(100, int(match.group(1)))


class FlowProductionAgent(AutomationAgent):
    """Drives video generation on the production site."""

    target = "flow"
    start_type = MessageType.START_PRODUCTION
    success_type = MessageType.PRODUCTION_SUCCEEDED
    failure_type = MessageType.PRODUCTION_FAILED

    def __init__(
        self,
        page: PageDriver,
        selectors: FlowSelectors = FlowSelectors(),
        completion_timeout: float = COMPLETION_TIMEOUT,
        poll_interval: float = COMPLETION_POLL_INTERVAL,
        **kwargs: Any,
    ):
        super().__init__(page, **kwargs)
        self.selectors = selectors
        self.completion_timeout = completion_timeout
        self.poll_interval = poll_interval

    async def perform(self, payload: dict[str, Any]) -> dict[str, Any]:
        spec = payload["spec"]
        sel = self.selectors

        await wait_for(
            lambda: self.page.exists(sel.prompt_input),
            timeout=PROMPT_TIMEOUT,
            message="Could not find prompt input field",
        )
        await self.act()
        await self.page.fill(sel.prompt_input, spec["instructions"])

        await self._apply_settings(spec)

        await wait_for(
            lambda: self.page.exists(sel.generate_button),
            timeout=GENERATE_BUTTON_TIMEOUT,
            message="Generate button not found",
        )
        if await self.page.is_disabled(sel.generate_button):
            raise ExternalError("Generate button is disabled - check credits or input")
        await self.act()
        await self.page.click(sel.generate_button)

        await wait_for(
            self._generation_started,
            timeout=GENERATION_START_TIMEOUT,
            message="Generation did not start",
        )

        async def report(progress: int) -> None:
            await self.emit_progress(payload, progress)

        video_url = await poll_until_outcome(
            success=self._find_video_url,
            error=self._read_error,
            progress=self._read_progress,
            on_progress=report,
            timeout=self.completion_timeout,
            interval=self.poll_interval,
            timeout_message="Video generation timed out",
        )
        return {"artifact_url": video_url}

    # =========================================================================
    # Settings (best effort: a missing control keeps the site default)
    # =========================================================================

    async def _apply_settings(self, spec: dict[str, Any]) -> None:
        sel = self.selectors
        await self._select_if_present(sel.duration_selector, str(spec.get("duration", 15)), "duration")
        await self._select_if_present(sel.aspect_ratio_selector, spec.get("aspect_ratio", "9:16"), "aspect ratio")
        await self._select_if_present(sel.style_selector, spec.get("style", "dynamic"), "style")
        await self._toggle_if_present(sel.music_toggle, bool(spec.get("include_music", True)), "music")
        await self._toggle_if_present(sel.voiceover_toggle, bool(spec.get("include_voiceover", False)), "voiceover")

    async def _select_if_present(self, selector: str, value: str, label: str) -> None:
        try:
            await wait_for(lambda: self.page.exists(selector), timeout=SETTING_TIMEOUT, message=label)
        except PreconditionTimeout:
            logger.debug(f"[{self.context}] No {label} control, keeping site default")
            return
        await self.act()
        if not await self.page.select_option(selector, value):
            logger.info(f"[{self.context}] Could not select {label}={value}")

    async def _toggle_if_present(self, selector: str, wanted: bool, label: str) -> None:
        if not await self.page.exists(selector):
            logger.debug(f"[{self.context}] No {label} toggle")
            return
        if await self.page.is_checked(selector) != wanted:
            await self.act()
            await self.page.click(selector)

    # =========================================================================
    # Probes
    # =========================================================================

    async def _generation_started(self) -> bool:
        sel = self.selectors
        return await self.page.exists(sel.progress_indicator) or bool(await self._find_video_url())

    async def _find_video_url(self) -> Optional[str]:
        sel = self.selectors
        candidates = []
        candidates += await self.page.attributes(sel.video, "src")
        candidates += await self.page.attributes(sel.video_source, "src")
        candidates += await self.page.attributes(sel.download_link, "href")
        candidates += await self.page.attributes(sel.data_url, "data-url")
        for url in candidates:
            if is_signed_video_url(url):
                return url
        return None

    async def _read_error(self) -> Optional[str]:
        return await self.page.text(self.selectors.error_message)

    async def _read_progress(self) -> Optional[int]:
        return parse_progress(await self.page.text(self.selectors.progress_text))

    async def cancel_on_page(self) -> None:
        if await self.page.exists(self.selectors.cancel_button):
            await self.act()
            await self.page.click(self.selectors.cancel_button)
            logger.info(f"[{self.context}] Clicked cancel on the production page")
