"""Listing crawl entry: open a browser (optionally as a stored account) and crawl the feed."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from playwright.async_api import Error as PlaywrightError

from src.crawler.engine import CrawlSummary, ListingCrawler
from src.crawler.sink import JsonlSink
from src.identity.browser import BrowserSession
from src.interaction.primitives import Interactor
from src.runner.account_runner import AccountRunner
from src.runner.config import AppConfig
from src.store.account_store import AccountStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _page_for(config: AppConfig, store: Optional[AccountStore], account_id: Optional[int],
                    restore_session: bool, headless: bool) -> AsyncIterator[object]:
    if account_id is not None and store is not None:
        runner = AccountRunner(config, store, headless=headless)
        async with runner.open_browser(account_id, restore_session=restore_session) as opened:
            yield opened.page
        return
    browser = BrowserSession(
        headless=headless,
        viewport=config.browser.viewport,
        navigation_timeout=config.browser.navigation_timeout,
    )
    page = await browser.start()
    try:
        yield page
    finally:
        await browser.stop()


async def run_crawl(
    config: AppConfig,
    *,
    store: Optional[AccountStore] = None,
    account_id: Optional[int] = None,
    restore_session: bool = True,
    pages: Optional[int] = None,
    out: str | Path | None = None,
    headless: Optional[bool] = None,
) -> CrawlSummary:
    """Crawl the feed and return the summary.

    The output file holds every record collected so far even when the crawl
    stops early.  Failures, including a browser that never opened, are
    reported in the summary rather than raised.
    """
    headless = config.browser.headless if headless is None else headless
    sink = JsonlSink(out or config.crawl_out)
    crawler: Optional[ListingCrawler] = None

    try:
        async with _page_for(config, store, account_id, restore_session, headless) as page:
            crawler = ListingCrawler(
                page,
                Interactor(page, config.interaction),
                sink,
                config.site.base_url,
                config.crawl,
            )
            try:
                await page.goto(config.site.feed_url, wait_until="domcontentloaded",
                                timeout=config.browser.navigation_timeout * 1000)
            except PlaywrightError as e:
                logger.error("Could not open %s: %s", config.site.feed_url, e)
                crawler.add_failure(f"Navigation failed: {e}")
                return crawler.summary()
            return await crawler.crawl(pages)
    except Exception as e:
        logger.exception("Crawl aborted")
        summary = crawler.summary() if crawler is not None else CrawlSummary()
        summary.failures.append(f"Crawl aborted: {type(e).__name__}: {e}")
        return summary
