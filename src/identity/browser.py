"""Chromium launch with per-account proxy and identity settings."""

from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from src.identity.proxy import ProxyIdentity

logger = logging.getLogger(__name__)

_LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--no-default-browser-check",
]


class BrowserSession:
    """One browser, one context, one page for a single account run."""

    def __init__(
        self,
        headless: bool = True,
        proxy: Optional[ProxyIdentity] = None,
        viewport: tuple[int, int] = (1280, 800),
        user_agent: str | None = None,
        locale: str = "en-US",
        timezone_id: str | None = None,
        navigation_timeout: float = 30.0,
    ):
        self.headless = headless
        self.proxy = proxy
        self.viewport = viewport
        self.user_agent = user_agent
        self.locale = locale
        self.timezone_id = timezone_id
        self.navigation_timeout = navigation_timeout
        self.playwright = None
        self.browser: Browser | None = None
        self.context: BrowserContext | None = None
        self.page: Page | None = None

    async def start(self) -> Page:
        """Launch the browser and open a page."""
        self.playwright = await async_playwright().start()
        launch = {"headless": self.headless, "args": _LAUNCH_ARGS}
        if self.proxy is not None:
            launch["proxy"] = self.proxy.to_playwright()
        self.browser = await self.playwright.chromium.launch(**launch)

        options = {
            "viewport": {"width": self.viewport[0], "height": self.viewport[1]},
            "locale": self.locale,
        }
        if self.user_agent:
            options["user_agent"] = self.user_agent
        if self.timezone_id:
            options["timezone_id"] = self.timezone_id
        self.context = await self.browser.new_context(**options)
        self.context.set_default_navigation_timeout(self.navigation_timeout * 1000)

        self.page = await self.context.new_page()
        logger.info(
            "Browser started (headless=%s, proxy=%s)",
            self.headless, self.proxy.label if self.proxy else "none",
        )
        return self.page

    async def stop(self) -> None:
        """Close browser."""
        if self.browser:
            await self.browser.close()
        if self.playwright:
            await self.playwright.stop()
        self.browser = self.context = self.page = None
        self.playwright = None

    async def __aenter__(self) -> Page:
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
