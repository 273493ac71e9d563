"""Listing crawl with load-more pagination, dedup and incremental saves."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError

from src.crawler.listing_parser import CONTAINER_SELECTOR, ListingParseError, ListingRecord, parse_listings
from src.crawler.sink import JsonlSink
from src.interaction.primitives import Interactor
from src.interaction.selectors import with_text

logger = logging.getLogger(__name__)

LOAD_MORE = (
    'button[data-test="load-more-button"]',
    with_text("button", "Load more"),
    with_text("button", "Load More"),
)


@dataclass(frozen=True)
class CrawlSettings:
    pages: int = 25
    container_timeout: float = 15.0
    jitter: tuple[float, float] = (1.0, 3.0)
    load_more_settle: tuple[float, float] = (3.0, 5.0)
    max_retries: int = 3
    backoff_base: float = 2.0

    @classmethod
    def from_dict(cls, data: dict | None) -> "CrawlSettings":
        data = data or {}
        defaults = cls()
        return cls(
            pages=int(data.get("pages", defaults.pages)),
            container_timeout=float(data.get("container_timeout", defaults.container_timeout)),
            jitter=tuple(data.get("jitter", defaults.jitter)),
            load_more_settle=tuple(data.get("load_more_settle", defaults.load_more_settle)),
            max_retries=int(data.get("max_retries", defaults.max_retries)),
            backoff_base=float(data.get("backoff_base", defaults.backoff_base)),
        )


@dataclass
class CrawlSummary:
    pages_visited: int = 0
    jobs_collected: int = 0
    unique_job_ids: int = 0
    duration_ms: int = 0
    failures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "pagesVisited": self.pages_visited,
            "jobsCollected": self.jobs_collected,
            "uniqueJobIds": self.unique_job_ids,
            "durationMs": self.duration_ms,
            "failures": list(self.failures),
        }


class ListingCrawler:
    def __init__(
        self,
        page,
        ui: Interactor,
        sink: JsonlSink,
        base_url: str,
        settings: CrawlSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        self.page = page
        self.ui = ui
        self.sink = sink
        self.base_url = base_url
        self.settings = settings or CrawlSettings()
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

        self._by_id: dict[str, ListingRecord] = {}
        self._unkeyed: list[ListingRecord] = []
        self._tiles_seen = 0
        self._pages_visited = 0
        self._failures: list[str] = []
        self._started: Optional[float] = None

    @property
    def records(self) -> list[ListingRecord]:
        return list(self._by_id.values()) + self._unkeyed

    def add_failure(self, message: str):
        self._failures.append(message)

    def summary(self) -> CrawlSummary:
        elapsed = 0.0 if self._started is None else self._clock() - self._started
        return CrawlSummary(
            pages_visited=self._pages_visited,
            jobs_collected=len(self._by_id) + len(self._unkeyed),
            unique_job_ids=len(self._by_id),
            duration_ms=int(elapsed * 1000),
            failures=list(self._failures),
        )

    def merge(self, records: list[ListingRecord]) -> int:
        """Fold one extraction into the running set; returns how many were new.

        Records with an id are deduplicated on it.  Id-less records are kept
        only for tiles past the ones already seen, since the feed re-renders
        earlier tiles after each load-more.
        """
        added = 0
        for index, record in enumerate(records):
            if record.external_id:
                if record.external_id not in self._by_id:
                    self._by_id[record.external_id] = record
                    added += 1
            elif index >= self._tiles_seen:
                self._unkeyed.append(record)
                added += 1
        self._tiles_seen = max(self._tiles_seen, len(records))
        return added

    async def crawl(self, max_pages: int | None = None) -> CrawlSummary:
        if max_pages is None:
            max_pages = self.settings.pages
        self._started = self._clock()
        logger.info("Starting crawl of up to %d pages at %s", max_pages, self.page.url)

        for page_number in range(1, max_pages + 1):
            if page_number > 1 and not await self._load_more(page_number):
                self.add_failure(f"Load more failed after page {page_number - 1}; stopping")
                break

            if await self._extract_with_retry(page_number):
                self._pages_visited += 1
            else:
                self.add_failure(f"Failed to extract page {page_number}")

            # Snapshot after every page so an interrupted run keeps pages 1..N.
            self.sink.write(self.records)

        summary = self.summary()
        logger.info("Crawl finished: %s", summary.to_dict())
        return summary

    async def _extract_page(self, page_number: int) -> int:
        await self.page.wait_for_selector(
            CONTAINER_SELECTOR, timeout=self.settings.container_timeout * 1000,
        )
        await self._sleep(self._rng.uniform(*self.settings.jitter))
        records = parse_listings(await self.page.content(), page_number, self.base_url)
        added = self.merge(records)
        logger.info("Page %d: %d tiles, %d new", page_number, len(records), added)
        return added

    async def _extract_with_retry(self, page_number: int) -> bool:
        attempts = self.settings.max_retries
        for attempt in range(1, attempts + 1):
            try:
                await self._extract_page(page_number)
                return True
            except (PlaywrightError, ListingParseError) as e:
                logger.warning("Page %d extraction attempt %d/%d failed: %s", page_number, attempt, attempts, e)
                if attempt < attempts:
                    await self._sleep(self.settings.backoff_base * 2 ** (attempt - 1))
        return False

    async def _load_more(self, page_number: int) -> bool:
        attempts = self.settings.max_retries
        for attempt in range(1, attempts + 1):
            button = await self.ui.locate(LOAD_MORE, timeout=10.0, passes=1)
            if button is not None and await self._usable(button):
                if await self.ui.click_element(button):
                    logger.info("Loading page %d", page_number)
                    await self._sleep(self._rng.uniform(*self.settings.load_more_settle))
                    return True
            logger.warning("Load more attempt %d/%d failed", attempt, attempts)
            if attempt < attempts:
                await self._sleep(self.settings.backoff_base * 2 ** (attempt - 1))
        return False

    async def _usable(self, button) -> bool:
        try:
            if not await button.is_visible() or not await button.is_enabled():
                return False
            label = (await button.inner_text()).strip().lower()
        except PlaywrightError as e:
            logger.debug("Load more button went stale: %s", e)
            return False
        return "load more" in label
