"""Map the live page to a WizardStage.

URL path prefixes are the primary signal.  Page landmarks (dialog and
heading text) are consulted first for overlays that live on another
stage's URL, such as the phone verification modal on ``/location``, and
last when the path alone is not conclusive.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError

from src.wizard.stages import LOGIN_PATH, STAGE_PATHS, WIZARD_PREFIX, WizardStage

logger = logging.getLogger(__name__)

_SEGMENT_TO_STAGE = {segment: stage for stage, segment in STAGE_PATHS.items()}

# Dialog/heading text that overrides the URL.
OVERLAY_LANDMARKS: tuple[tuple[str, WizardStage], ...] = (
    ("verify your phone number", WizardStage.VERIFICATION),
    ("enter your code", WizardStage.VERIFICATION),
)

# Heading text used when the URL does not identify the stage.  More specific
# phrases come before generic ones.
HEADING_LANDMARKS: tuple[tuple[str, WizardStage], ...] = (
    ("log in to", WizardStage.CREDENTIALS),
    ("ready for your next big opportunity", WizardStage.WELCOME),
    ("freelanced before", WizardStage.EXPERIENCE),
    ("biggest goal", WizardStage.GOAL),
    ("how would you like to work", WizardStage.WORK_PREFERENCE),
    ("tell us about yourself", WizardStage.RESUME_IMPORT),
    ("main services you offer", WizardStage.CATEGORIES),
    ("your skills", WizardStage.SKILLS),
    ("professional role", WizardStage.TITLE),
    ("work experience", WizardStage.EMPLOYMENT),
    ("employment", WizardStage.EMPLOYMENT),
    ("education", WizardStage.EDUCATION),
    ("languages", WizardStage.LANGUAGES),
    ("write a bio", WizardStage.OVERVIEW),
    ("hourly rate", WizardStage.RATE),
    ("a few last details", WizardStage.LOCATION),
    ("preview your profile", WizardStage.SUBMIT),
    ("your profile is ready", WizardStage.SUBMIT),
    ("profile is live", WizardStage.COMPLETION),
)

_HEADING_TAGS = ["h1", "h2", "h3", "h4"]


def _segments(path: str) -> list[str]:
    return [s for s in path.split("/") if s]


def _has_prefix(path: str, prefix: str) -> bool:
    want = _segments(prefix)
    return _segments(path)[: len(want)] == want


def detect_stage(url: str) -> WizardStage:
    """Resolve a stage from a URL alone.

    Matching is per path segment, so ``/nx/create-profile/rates`` does not
    match ``rate``.  Anything unrecognised is ``UNKNOWN``.
    """
    if not url:
        return WizardStage.UNKNOWN
    path = urlparse(url).path or "/"

    if _has_prefix(path, LOGIN_PATH):
        return WizardStage.CREDENTIALS
    if not _has_prefix(path, WIZARD_PREFIX):
        return WizardStage.UNKNOWN

    rest = _segments(path)[len(_segments(WIZARD_PREFIX)):]
    if not rest:
        return WizardStage.WELCOME
    return _SEGMENT_TO_STAGE.get(rest[0].lower(), WizardStage.UNKNOWN)


def _match(texts: list[str], table) -> Optional[WizardStage]:
    for phrase, stage in table:
        for text in texts:
            if phrase in text:
                return stage
    return None


def landmark_stage(html: str, *, overlays_only: bool = False) -> Optional[WizardStage]:
    """Probe dialog and heading text in *html* for a known landmark."""
    soup = BeautifulSoup(html or "", "html.parser")

    dialog_texts = []
    for dialog in soup.select('[role="dialog"], .air3-modal-content'):
        dialog_texts.append(" ".join(dialog.get_text(" ").split()).lower())
    heading_texts = [
        " ".join(tag.get_text(" ").split()).lower()
        for tag in soup.find_all(_HEADING_TAGS) + soup.select('[role="heading"]')
    ]

    stage = _match(dialog_texts + heading_texts, OVERLAY_LANDMARKS)
    if stage is not None or overlays_only:
        return stage
    return _match(heading_texts, HEADING_LANDMARKS)


class StageDetector:
    """Stage resolution against a live page. Never caches across calls."""

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 1.0,
    ):
        self._sleep = sleep
        self._clock = clock
        self.poll_interval = poll_interval

    def now(self) -> float:
        return self._clock()

    async def pause(self):
        await self._sleep(self.poll_interval)

    async def _html(self, page) -> str:
        try:
            return await page.content()
        except PlaywrightError as e:
            logger.debug("Could not read page content: %s", e)
            return ""

    async def resolve(self, page) -> WizardStage:
        html = await self._html(page)
        overlay = landmark_stage(html, overlays_only=True)
        if overlay is not None:
            return overlay

        stage = detect_stage(page.url)
        if stage is not WizardStage.UNKNOWN:
            return stage

        stage = landmark_stage(html) or WizardStage.UNKNOWN
        logger.debug("URL %s unresolved, landmark probe gave %s", page.url, stage.value)
        return stage

    async def is_on(self, page, expected: WizardStage) -> bool:
        return await self.resolve(page) is expected

    async def wait_for_progress(self, page, current: WizardStage, timeout: float) -> Optional[WizardStage]:
        """Poll until the page leaves *current*; None if it does not in time."""
        deadline = self._clock() + timeout
        while True:
            stage = await self.resolve(page)
            if stage is not current:
                return stage
            if self._clock() >= deadline:
                return None
            await self._sleep(self.poll_interval)
