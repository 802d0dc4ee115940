"""
Page access for automation agents.

Agents only talk to a PageDriver: a small async surface over one browser
tab. PlaywrightPageDriver implements it on a Playwright page; tests use an
in-memory fake.

An invalid selector is treated as "not found" rather than an error, since
target pages change their markup without notice.
"""

import logging
from typing import Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

logger = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 30000
SELECT_TIMEOUT_MS = 2000
ACTION_TIMEOUT_MS = 10000


class PageDriver(Protocol):
    """Operations an agent may perform on its page."""

    @property
    def url(self) -> str:
        ...

    async def goto(self, url: str) -> None:
        ...

    async def exists(self, selector: str) -> bool:
        ...

    async def text(self, selector: str) -> Optional[str]:
        ...

    async def attributes(self, selector: str, name: str) -> list[str]:
        ...

    async def fill(self, selector: str, value: str) -> None:
        ...

    async def click(self, selector: str) -> None:
        ...

    async def select_option(self, selector: str, value: str) -> bool:
        ...

    async def is_disabled(self, selector: str) -> bool:
        ...

    async def is_checked(self, selector: str) -> bool:
        ...

    async def set_input_files(self, selector: str, path: str) -> None:
        ...

    async def close(self) -> None:
        ...


class PlaywrightPageDriver:
    """PageDriver over a Playwright page."""

    def __init__(self, page: Page):
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str) -> None:
        await self._page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)

    async def _query(self, selector: str):
        try:
            return await self._page.query_selector(selector)
        except PlaywrightError as e:
            logger.warning(f"Invalid selector {selector!r}: {e}")
            return None

    async def exists(self, selector: str) -> bool:
        return await self._query(selector) is not None

    async def text(self, selector: str) -> Optional[str]:
        element = await self._query(selector)
        if element is None:
            return None
        content = await element.text_content()
        return content.strip() if content else None

    async def attributes(self, selector: str, name: str) -> list[str]:
        try:
            elements = await self._page.query_selector_all(selector)
        except PlaywrightError as e:
            logger.warning(f"Invalid selector {selector!r}: {e}")
            return []
        values = []
        for element in elements:
            value = await element.get_attribute(name)
            if value:
                values.append(value)
        return values

    async def fill(self, selector: str, value: str) -> None:
        await self._page.fill(selector, value, timeout=ACTION_TIMEOUT_MS)

    async def click(self, selector: str) -> None:
        await self._page.click(selector, timeout=ACTION_TIMEOUT_MS)

    async def select_option(self, selector: str, value: str) -> bool:
        element = await self._query(selector)
        if element is None:
            return False
        for option in ({"value": value}, {"label": value}):
            try:
                selected = await element.select_option(timeout=SELECT_TIMEOUT_MS, **option)
            except PlaywrightError as e:
                logger.debug(f"No option {option} in {selector!r}: {e}")
                continue
            if selected:
                return True
        return False

    async def is_disabled(self, selector: str) -> bool:
        element = await self._query(selector)
        if element is None:
            return True
        return await element.is_disabled()

    async def is_checked(self, selector: str) -> bool:
        element = await self._query(selector)
        if element is None:
            return False
        if await element.get_attribute("aria-pressed") == "true":
            return True
        return await element.is_checked()

    async def set_input_files(self, selector: str, path: str) -> None:
        await self._page.set_input_files(selector, path, timeout=ACTION_TIMEOUT_MS)

    async def close(self) -> None:
        await self._page.close()


class PageProvider(Protocol):
    """Opens a page at a URL for a new agent."""

    async def open_page(self, url: str) -> PageDriver:
        ...

    async def close(self) -> None:
        ...


class PlaywrightPageProvider:
    """
    Chromium pages through Playwright.

    With user_data_dir set, a persistent context is used so that logged-in
    sessions on the target sites survive restarts. The browser is launched
    lazily on the first open_page().
    """

    def __init__(self, headless: bool = False, user_data_dir: Optional[str] = None):
        self.headless = headless
        self.user_data_dir = user_data_dir
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None

    async def initialize(self) -> None:
        """Start Playwright and the browser context."""
        if self.context is not None:
            return
        self.playwright = await async_playwright().start()
        if self.user_data_dir:
            self.context = await self.playwright.chromium.launch_persistent_context(
                self.user_data_dir,
                headless=self.headless,
                accept_downloads=True,
            )
        else:
            self.browser = await self.playwright.chromium.launch(headless=self.headless)
            self.context = await self.browser.new_context(accept_downloads=True)
        logger.info(
            f"[Browser] Initialized (headless={self.headless}, "
            f"profile={self.user_data_dir or 'ephemeral'})"
        )

    async def open_page(self, url: str) -> PageDriver:
        await self.initialize()
        page = await self.context.new_page()
        await page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
        logger.info(f"[Browser] Opened {url}")
        return PlaywrightPageDriver(page)

    async def close(self) -> None:
        if self.context is not None:
            await self.context.close()
            self.context = None
        if self.browser is not None:
            await self.browser.close()
            self.browser = None
        if self.playwright is not None:
            await self.playwright.stop()
            self.playwright = None
