"""Resilient interaction primitives shared by the wizard and the crawler.

Every UI action in the project goes through an ``Interactor``: element
lookup over ordered selector chains with whole-list retry passes, human
paced typing with read-back verification, typeahead/combobox selection and
best-effort overlay dismissal.  Nothing in here raises on a missing element;
callers get ``None`` or an outcome enum and decide what that means for their
stage.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

from playwright.async_api import Error as PlaywrightError

from src.interaction.selectors import (
    LISTBOX,
    MODAL_CLOSE,
    SelectorLike,
    SelectorStrategy,
    as_strategies,
    with_text,
)

logger = logging.getLogger(__name__)

# A strategy never gets less than this per probe, however many are chained.
_MIN_SLICE_SECONDS = 0.25

# Appended to a typeahead query when no option list shows up.
_NUDGE = " "

Sleep = Callable[[float], Awaitable[None]]


class FillOutcome(Enum):
    VERIFIED = "verified"   # read-back matches the intended text
    ACCEPTED = "accepted"   # non-empty but different (lenient policy)
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self is not FillOutcome.FAILED


class SelectOutcome(Enum):
    SELECTED = "selected"
    FREE_TEXT = "free_text"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self is not SelectOutcome.FAILED


@dataclass(frozen=True)
class InteractionSettings:
    """Timeouts (seconds) and pacing for the primitives."""
    locate_timeout: float = 10.0
    locate_passes: int = 3
    pass_backoff: tuple[float, float] = (1.0, 2.0)
    char_delay: tuple[float, float] = (0.05, 0.2)
    action_delay: tuple[float, float] = (0.5, 1.0)
    listbox_timeout: float = 2.0
    strict_fill: bool = False

    @classmethod
    def from_dict(cls, data: dict | None) -> "InteractionSettings":
        data = data or {}
        defaults = cls()
        return cls(
            locate_timeout=float(data.get("locate_timeout", defaults.locate_timeout)),
            locate_passes=int(data.get("locate_passes", defaults.locate_passes)),
            pass_backoff=tuple(data.get("pass_backoff", defaults.pass_backoff)),
            char_delay=tuple(data.get("char_delay", defaults.char_delay)),
            action_delay=tuple(data.get("action_delay", defaults.action_delay)),
            listbox_timeout=float(data.get("listbox_timeout", defaults.listbox_timeout)),
            strict_fill=bool(data.get("strict_fill", defaults.strict_fill)),
        )


class ArtifactRecorder:
    """Best-effort screenshot capture into an ordered name -> path mapping."""

    def __init__(self, directory: str | Path | None, enabled: bool = True):
        self.directory = Path(directory) if directory else None
        self.enabled = enabled and self.directory is not None
        self.artifacts: dict[str, str] = {}

    async def capture(self, page, name: str) -> Optional[str]:
        if not self.enabled:
            return None
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        path = self.directory / f"{name}_{stamp}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
        except Exception as e:
            logger.warning("Screenshot %s failed: %s", name, e)
            return None
        self.artifacts[name] = str(path)
        logger.debug("Screenshot saved: %s", path)
        return str(path)

    def snapshot(self) -> dict[str, str]:
        return dict(self.artifacts)


class Interactor:
    """Resilient actions against one Playwright page."""

    def __init__(
        self,
        page,
        settings: InteractionSettings | None = None,
        recorder: ArtifactRecorder | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.page = page
        self.settings = settings or InteractionSettings()
        self.recorder = recorder or ArtifactRecorder(None, enabled=False)
        self._sleep = sleep
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def locate(
        self,
        candidates: Iterable[SelectorLike],
        timeout: float | None = None,
        *,
        editable: bool = False,
        passes: int | None = None,
    ):
        """Return the first visible, enabled match across *candidates*.

        The chain is walked ``passes`` times; each strategy gets an equal
        slice of ``timeout / passes`` and a random backoff separates the
        passes.  When *editable* is set, read-only matches are skipped.

        Returns:
            A Playwright ``Locator`` bound to one element, or ``None``.
        """
        strategies = as_strategies(candidates)
        if not strategies:
            return None
        timeout = self.settings.locate_timeout if timeout is None else timeout
        passes = max(1, passes or self.settings.locate_passes)
        per_strategy = max(_MIN_SLICE_SECONDS, timeout / passes / len(strategies))

        for attempt in range(1, passes + 1):
            for strategy in strategies:
                element = await self._probe(strategy, per_strategy, editable)
                if element is not None:
                    logger.debug("Located %s (pass %d)", strategy.describe(), attempt)
                    return element
            if attempt < passes:
                await self._sleep(self._rng.uniform(*self.settings.pass_backoff))

        logger.debug(
            "No match after %d passes over: %s",
            passes, ", ".join(s.describe() for s in strategies),
        )
        return None

    async def exists(self, candidates: Iterable[SelectorLike], timeout: float = 2.0) -> bool:
        """Single-pass presence probe."""
        return await self.locate(candidates, timeout, passes=1) is not None

    async def _probe(self, strategy: SelectorStrategy, timeout: float, editable: bool):
        locator = strategy.resolve(self.page)
        try:
            await locator.first.wait_for(state="attached", timeout=timeout * 1000)
        except PlaywrightError:
            return None
        try:
            count = await locator.count()
            for i in range(count):
                candidate = locator.nth(i)
                if not await candidate.is_visible():
                    continue
                if not await candidate.is_enabled():
                    continue
                if editable and not await candidate.is_editable():
                    continue
                return candidate
        except PlaywrightError as e:
            logger.debug("Probe %s failed: %s", strategy.describe(), e)
        return None

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def click(self, candidates: Iterable[SelectorLike], timeout: float | None = None) -> bool:
        element = await self.locate(candidates, timeout)
        if element is None:
            return False
        return await self.click_element(element)

    async def click_element(self, element) -> bool:
        try:
            await element.scroll_into_view_if_needed()
            await element.click()
        except PlaywrightError as e:
            logger.info("Click failed: %s", e)
            return False
        await self.delay()
        return True

    async def read_value(self, element) -> str:
        try:
            return await element.input_value()
        except PlaywrightError:
            # contenteditable / non-form elements
            return await element.inner_text()

    async def _clear_and_type(self, element, text: str):
        await element.click()
        await element.press("ControlOrMeta+A")
        await element.press("Backspace")
        for ch in text:
            await element.press_sequentially(ch)
            await self._sleep(self._rng.uniform(*self.settings.char_delay))

    async def type_with_verification(self, element, text: str, *, strict: bool | None = None) -> FillOutcome:
        """Clear *element*, type *text* one key at a time and read it back.

        A mismatch triggers one more clear-and-type cycle.  If the field still
        differs but holds something, the lenient policy accepts it unless
        *strict* (or ``settings.strict_fill``) is set.
        """
        strict = self.settings.strict_fill if strict is None else strict
        value = ""
        for cycle in (1, 2):
            try:
                await self._clear_and_type(element, text)
                value = await self.read_value(element)
            except PlaywrightError as e:
                logger.warning("Typing cycle %d failed: %s", cycle, e)
                value = ""
                continue
            if value.strip() == text.strip():
                return FillOutcome.VERIFIED
            logger.info("Field mismatch on cycle %d: expected %r, got %r", cycle, text, value)

        if value.strip() and not strict:
            logger.warning("Accepting unverified field value %r (wanted %r)", value, text)
            return FillOutcome.ACCEPTED
        return FillOutcome.FAILED

    async def fill(self, candidates: Iterable[SelectorLike], text: str, timeout: float | None = None) -> FillOutcome:
        element = await self.locate(candidates, timeout, editable=True)
        if element is None:
            return FillOutcome.FAILED
        return await self.type_with_verification(element, text)

    async def _listbox_visible(self) -> bool:
        try:
            await self.page.locator(LISTBOX).first.wait_for(
                state="visible", timeout=self.settings.listbox_timeout * 1000,
            )
            return True
        except PlaywrightError:
            return False

    async def select_from_dropdown(self, element, target: str, *, allow_free_text: bool = True) -> SelectOutcome:
        """Type *target* into a typeahead and accept the first suggestion.

        If no option list appears, one extra character is appended to wake up
        widgets with a minimum query length.  Still nothing: the nudge is
        removed and the typed text stands as free text where allowed.
        """
        try:
            await self._clear_and_type(element, target)
            if not await self._listbox_visible():
                await element.press_sequentially(_NUDGE)
                if not await self._listbox_visible():
                    await element.press("Backspace")
                    if allow_free_text:
                        logger.info("No options for %r, keeping free text", target)
                        return SelectOutcome.FREE_TEXT
                    logger.warning("No options for %r", target)
                    return SelectOutcome.FAILED
            await element.press("ArrowDown")
            await element.press("Enter")
        except PlaywrightError as e:
            logger.warning("Dropdown selection for %r failed: %s", target, e)
            return SelectOutcome.FAILED
        await self.delay()
        return SelectOutcome.SELECTED

    async def choose_option(self, toggle: Iterable[SelectorLike], option_text: str) -> bool:
        """Open a non-typeahead dropdown and click the option labelled *option_text*."""
        if not await self.click(toggle):
            return False
        option = await self.locate(
            [with_text('[role="option"]', option_text), with_text("li", option_text)],
            timeout=self.settings.listbox_timeout * 2,
        )
        if option is None:
            logger.info("Option %r not found", option_text)
            return False
        return await self.click_element(option)

    async def press(self, key: str):
        try:
            await self.page.keyboard.press(key)
        except PlaywrightError as e:
            logger.debug("Key %s failed: %s", key, e)

    async def dismiss_overlays(self, close_candidates: Iterable[SelectorLike] = MODAL_CLOSE) -> bool:
        """Close popups and focus-trapping widgets; never raises.

        Tries a click on a neutral spot of the page, then Escape, then an
        explicit close control.  Returns True if the close control was used.
        """
        try:
            await self.page.mouse.click(5, 5)
        except Exception as e:
            logger.debug("Outside click failed: %s", e)
        await self.press("Escape")
        closed = False
        try:
            closed = await self.click(close_candidates, timeout=1.0)
        except Exception as e:
            logger.debug("Close control failed: %s", e)
        return closed

    async def capture(self, name: str) -> Optional[str]:
        return await self.recorder.capture(self.page, name)

    async def delay(self, bounds: tuple[float, float] | None = None):
        low, high = bounds or self.settings.action_delay
        await self._sleep(self._rng.uniform(low, high))
